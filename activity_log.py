"""
Activity log and timing utilities for Driver Dolphin
=====================================================
Append-only operation log (filter / copy / clear / export) plus the timing
decorator used to record how long scans and workflows take.
"""

import functools
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional


# =============================================================================
# ACTIVITY LOG
# =============================================================================

class LogLevel(Enum):
    INFO = "Info"
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"


@dataclass
class LogEntry:
    """Single line of the activity log"""
    timestamp: datetime
    level: LogLevel
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


_ERROR_PREFIXES = ("error", "failed", "fatal")
_WARNING_PREFIXES = ("warning", "skipped", "cancelled")
_SUCCESS_MARKERS = ("completed successfully", "successfully", "success")


def classify(message: str) -> LogLevel:
    """Guess the level of a free-form backend message"""
    lowered = message.strip().lower()
    if lowered.startswith(_ERROR_PREFIXES):
        return LogLevel.ERROR
    if lowered.startswith(_WARNING_PREFIXES):
        return LogLevel.WARNING
    if any(marker in lowered for marker in _SUCCESS_MARKERS):
        return LogLevel.SUCCESS
    return LogLevel.INFO


class ActivityLog:
    """Thread-safe, append-only log of everything the backend reports"""

    def __init__(self, log_file: Optional[Path] = None, max_entries: int = 5000):
        self.log_file = log_file
        self.max_entries = max_entries
        self._entries: List[LogEntry] = []
        self._listeners: List[Callable[[LogEntry], None]] = []
        self._lock = threading.Lock()

    def append(self, message: str, level: Optional[LogLevel] = None) -> LogEntry:
        entry = LogEntry(datetime.now(), level or classify(message), message)
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.max_entries:
                self._entries.pop(0)
            listeners = list(self._listeners)
        self._write_file(entry)
        for listener in listeners:
            listener(entry)
        return entry

    def _write_file(self, entry: LogEntry):
        if not self.log_file:
            return
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(f"{entry.timestamp.isoformat(timespec='seconds')} {entry.level.value.upper():7} {entry.message}\n")
        except OSError as e:
            print(f"Failed to write activity log: {e}")

    def add_listener(self, listener: Callable[[LogEntry], None]):
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[LogEntry], None]):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def entries(self, level: Optional[LogLevel] = None) -> List[LogEntry]:
        """All entries, or only those of one level"""
        with self._lock:
            entries = list(self._entries)
        if level is None:
            return entries
        return [e for e in entries if e.level == level]

    def as_text(self, level: Optional[LogLevel] = None) -> str:
        return "\n".join(e.format() for e in self.entries(level))

    def clear(self):
        """Clear the in-memory view; the on-disk log is never truncated"""
        with self._lock:
            self._entries.clear()

    def export(self, path: Path, level: Optional[LogLevel] = None):
        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.as_text(level))


# =============================================================================
# TIMING INSTRUMENTATION
# =============================================================================

@dataclass
class TimingResult:
    """Result of a timed operation"""
    operation: str
    duration_ms: float
    timestamp: str
    success: bool = True
    error: Optional[str] = None


class PerfLogger:
    """Keeps the last timing results and forwards them to a sink (console by default)"""

    def __init__(self, max_results: int = 100):
        self.enabled = True
        self.results: List[TimingResult] = []
        self.max_results = max_results
        self.sink: Optional[Callable[[str], None]] = None
        self._lock = threading.Lock()

    def log(self, result: TimingResult):
        if not self.enabled:
            return

        with self._lock:
            self.results.append(result)
            if len(self.results) > self.max_results:
                self.results.pop(0)

        status = "OK" if result.success else f"FAIL: {result.error}"
        line = f"[PERF] {result.operation}: {result.duration_ms:.1f}ms [{status}]"
        if self.sink:
            self.sink(line)
        else:
            print(line)

    def get_summary(self) -> Dict[str, Dict]:
        """Count / total / max duration per operation"""
        summary: Dict[str, Dict] = {}
        with self._lock:
            results = list(self.results)
        for result in results:
            s = summary.setdefault(result.operation, {'count': 0, 'total_ms': 0.0, 'max_ms': 0.0, 'failures': 0})
            s['count'] += 1
            s['total_ms'] += result.duration_ms
            s['max_ms'] = max(s['max_ms'], result.duration_ms)
            if not result.success:
                s['failures'] += 1
        return summary

    def clear(self):
        with self._lock:
            self.results.clear()


# Global perf logger instance
perf_logger = PerfLogger()


def _record(operation: str, start: float, error: Optional[str]):
    perf_logger.log(TimingResult(
        operation=operation,
        duration_ms=(time.perf_counter() - start) * 1000,
        timestamp=datetime.now().isoformat(),
        success=error is None,
        error=error,
    ))


def timed(operation_name: Optional[str] = None):
    """Decorator to time function execution"""
    def decorator(func: Callable) -> Callable:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            error = None
            try:
                return func(*args, **kwargs)
            except Exception as e:
                error = str(e)
                raise
            finally:
                _record(op_name, start, error)

        return wrapper
    return decorator


class TimingContext:
    """Context manager for timing code blocks"""

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self.start_time = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _record(self.operation_name, self.start_time, str(exc_val) if exc_val else None)
        return False
