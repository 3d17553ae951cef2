"""
Driver Dolphin - Shell command runner
Runs OS tools as child processes and streams their output to registered listeners
"""

import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional

from os_commands import Command

_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if hasattr(subprocess, 'CREATE_NO_WINDOW') else 0


class StreamKind(Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class CommandListener:
    """Receives the events of commands run through a ShellRunner.

    Each run produces one on_start, any number of on_output calls and exactly
    one on_end. Subclasses override the hooks they care about.
    """

    def on_start(self, command: Command) -> None:
        pass

    def on_output(self, text: str, stream: StreamKind) -> None:
        pass

    def on_end(self, exit_code: Optional[int]) -> None:
        pass


class CallbackListener(CommandListener):
    """Forwards command events to a plain log callback"""

    def __init__(self, callback: Callable[[str], None]):
        self.callback = callback

    def on_start(self, command: Command) -> None:
        self.callback(command.description or command.display())

    def on_output(self, text: str, stream: StreamKind) -> None:
        if not text.strip():
            return
        if stream == StreamKind.STDERR:
            self.callback(f"ERROR: {text}")
        else:
            self.callback(text)

    def on_end(self, exit_code: Optional[int]) -> None:
        if exit_code is None:
            self.callback("ERROR: Command did not report an exit code")
        else:
            self.callback(f"Command finished with exit code {exit_code}")


@dataclass
class CommandResult:
    """Fully buffered result of a command"""
    stdout: str
    stderr: str
    exit_code: Optional[int]
    spawn_error: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _normalize_exit_code(code: Optional[int]) -> Optional[int]:
    # Negative codes mean the process was killed by a signal (POSIX)
    if code is None or code < 0:
        return None
    return code


class ShellRunner:
    """Executes Command objects, one child process per call"""

    def __init__(self):
        self._listeners: List[CommandListener] = []
        self._lock = threading.Lock()

    @contextmanager
    def listen(self, listener: CommandListener) -> Iterator[CommandListener]:
        """Register a listener for the duration of the with-block"""
        with self._lock:
            self._listeners.append(listener)
        try:
            yield listener
        finally:
            with self._lock:
                self._listeners.remove(listener)

    def _emit(self, hook: str, *args) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            getattr(listener, hook)(*args)

    def _pump(self, stream, kind: StreamKind) -> None:
        try:
            for line in stream:
                self._emit("on_output", line.rstrip("\r\n"), kind)
        finally:
            stream.close()

    def run(self, command: Command, listener: Optional[CommandListener] = None) -> Optional[int]:
        """Run a command, streaming its output line by line. Returns the exit code."""
        if listener is not None:
            with self.listen(listener):
                return self.run(command)

        self._emit("on_start", command)
        try:
            process = subprocess.Popen(
                command.argv(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding=command.encoding,
                errors="replace",
                creationflags=_CREATION_FLAGS,
            )
        except OSError as e:
            self._emit("on_output", f"Failed to start {command.program}: {e}", StreamKind.STDERR)
            self._emit("on_end", None)
            return None

        stderr_thread = threading.Thread(
            target=self._pump, args=(process.stderr, StreamKind.STDERR), daemon=True
        )
        stderr_thread.start()
        self._pump(process.stdout, StreamKind.STDOUT)
        stderr_thread.join()

        exit_code = _normalize_exit_code(process.wait())
        self._emit("on_end", exit_code)
        return exit_code

    def capture(self, command: Command) -> CommandResult:
        """Run a command and buffer all of its output"""
        try:
            result = subprocess.run(
                command.argv(),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding=command.encoding,
                errors="replace",
                creationflags=_CREATION_FLAGS,
            )
        except OSError as e:
            message = f"Failed to start {command.program}: {e}"
            return CommandResult(stdout="", stderr=message, exit_code=None, spawn_error=message)

        return CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            exit_code=_normalize_exit_code(result.returncode),
        )
