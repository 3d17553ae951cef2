"""
Driver Dolphin - Shared data model
Driver records, parse results, scan results and the error types used by the backend
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


# =============================================================================
# ERRORS
# =============================================================================

class DriverDolphinError(Exception):
    """Base class for backend errors"""


class PermissionDeniedError(DriverDolphinError):
    """Raised when an operation needs administrator rights the process lacks"""


class OperationBusyError(DriverDolphinError):
    """Raised when a workflow is started while another one is still running"""


class CommandFailedError(DriverDolphinError):
    """An OS tool whose output we need exited with an error"""

    def __init__(self, description: str, exit_code: Optional[int], stderr: str = ""):
        self.description = description
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[0] if stderr.strip() else f"exit code {exit_code}"
        super().__init__(f"{description} failed: {detail}")


# =============================================================================
# DRIVER RECORDS
# =============================================================================

@dataclass
class BackupProvenance:
    """Where and when a backed-up driver package came from (driver_details.txt)"""
    backup_date: str = ""
    backup_os: str = ""
    backup_os_build: str = ""
    inf_file: str = ""
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass
class DriverRecord:
    """One driver definition, installed on the system or found in a backup folder"""
    original_name: str
    provider: str = ""
    class_name: str = ""
    version: str = ""
    published_name: str = ""
    full_inf_path: str = ""
    driver_date: str = ""
    signer: str = ""
    provenance: Optional[BackupProvenance] = None

    @property
    def display_name(self) -> str:
        return f"{self.provider or 'Unknown'} - {self.class_name or self.original_name}"

    @property
    def match_key(self) -> Tuple[str, str]:
        """Key used to decide whether a backup driver is already installed"""
        return (self.original_name.strip().lower(), self.version.strip())

    @property
    def is_complete(self) -> bool:
        return bool(self.provider and (self.class_name or self.original_name) and self.version)


# =============================================================================
# PARSE RESULTS
# =============================================================================

class ParseErrorKind(Enum):
    """Why a single input could not be turned into a DriverRecord"""
    MISSING_VERSION_SECTION = "missing_version_section"
    MISSING_REQUIRED_FIELDS = "missing_required_fields"
    FILE_READ_ERROR = "file_read_error"
    JSON_DECODE_ERROR = "json_decode_error"


@dataclass
class ParseOk:
    record: DriverRecord


@dataclass
class ParseError:
    path: str
    message: str
    kind: ParseErrorKind


ParseResult = Union[ParseOk, ParseError]


class ScanStatus(Enum):
    OK = "ok"
    EMPTY = "empty"
    IO_FAILURE = "io_failure"


@dataclass
class ScanResult:
    """Outcome of scanning a backup folder.

    ``errors`` holds human readable messages, one per failed file plus any
    folder level notice. ``failures`` keeps the structured per-file errors.
    """
    drivers: List[DriverRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    failures: List[ParseError] = field(default_factory=list)
    status: ScanStatus = ScanStatus.OK

    @property
    def is_empty(self) -> bool:
        return self.status == ScanStatus.EMPTY

    @property
    def had_io_failure(self) -> bool:
        return self.status == ScanStatus.IO_FAILURE


# =============================================================================
# RECONCILIATION
# =============================================================================

class ReconcileChoice(Enum):
    """User answer when a backup driver is already installed with the same version"""
    INSTALL = "install"
    SKIP = "skip"
    INSTALL_ALL = "install_all"
    CANCEL = "cancel"


@dataclass
class ReconcilePlan:
    """Ordered list of .inf paths to install for one restore run"""
    install_paths: List[str] = field(default_factory=list)
    skipped: List[DriverRecord] = field(default_factory=list)
    duplicates: List[DriverRecord] = field(default_factory=list)
    cancelled: bool = False
