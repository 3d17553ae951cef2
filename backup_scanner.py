"""
Driver Dolphin - Backup folder scanner
Finds driver packages (.inf files) under a backup folder and reads their metadata
"""

import os
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from activity_log import timed
from driver_models import BackupProvenance, ParseError, ParseOk, ParseResult, ScanResult, ScanStatus
from inf_parser import parse_inf_file, parse_scan_transport
from os_commands import scan_inf_folder
from shell_runner import ShellRunner

SIDECAR_NAME = "driver_details.txt"

_SIDECAR_FIELDS = {
    'backupdate': 'backup_date',
    'backupos': 'backup_os',
    'backuposbuild': 'backup_os_build',
    'inffile': 'inf_file',
}


# =============================================================================
# SIDECAR METADATA
# =============================================================================

def parse_sidecar(text: str) -> BackupProvenance:
    """Parse the `Key: value` lines of a driver_details.txt file"""
    provenance = BackupProvenance()
    for line in text.splitlines():
        key, sep, value = line.partition(':')
        key = key.strip()
        if not sep or len(key) < 2 or not key.isidentifier():
            continue
        value = value.strip()
        attr = _SIDECAR_FIELDS.get(key.lower())
        if attr:
            setattr(provenance, attr, value)
        else:
            provenance.extra[key] = value
    return provenance


def read_sidecar(folder: str) -> Optional[BackupProvenance]:
    """Provenance stored next to a driver package, or None if there is none"""
    path = os.path.join(folder, SIDECAR_NAME)
    if not os.path.isfile(path):
        return None
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        return parse_sidecar(f.read())


def format_sidecar(inf_file: str, os_name: str, os_build: str,
                   backup_date: Optional[datetime] = None) -> str:
    backup_date = backup_date or datetime.now()
    return (
        f"BackupDate: {backup_date.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"BackupOS: {os_name}\n"
        f"BackupOSBuild: {os_build}\n"
        f"INFFile: {inf_file}\n"
        "\n"
        "To restore this driver manually, open an administrator command prompt\n"
        "in this folder and run:\n"
        f"    pnputil /add-driver \"{inf_file}\" /install\n"
    )


def write_sidecar(folder: str, inf_file: str, os_name: str, os_build: str,
                  backup_date: Optional[datetime] = None) -> str:
    path = os.path.join(folder, SIDECAR_NAME)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(format_sidecar(inf_file, os_name, os_build, backup_date))
    return path


# =============================================================================
# SCANNER
# =============================================================================

def no_inf_files_message(root: str) -> str:
    return f"Scan complete: No .inf files found or processed in directory: {root}"


class BackupFolderScanner:
    """Scans a backup folder for driver packages"""

    def __init__(self, runner: Optional[ShellRunner] = None, callback: Callable[[str], None] = None):
        self.runner = runner or ShellRunner()
        self.callback = callback

    def log(self, message: str):
        if self.callback:
            self.callback(message)

    def find_inf_files(self, root: str, walk_errors: Optional[List[str]] = None) -> List[str]:
        """Every .inf file below root, sorted. Directories named *.inf are ignored.

        Subdirectories that cannot be read are reported into walk_errors.
        """
        found = []

        def on_error(error: OSError):
            message = f"Failed to read directory '{error.filename}': {error.strerror or error}"
            self.log(message)
            if walk_errors is not None:
                walk_errors.append(message)

        for dirpath, _dirnames, filenames in os.walk(root, onerror=on_error):
            for name in filenames:
                path = os.path.join(dirpath, name)
                if name.lower().endswith('.inf') and os.path.isfile(path):
                    found.append(path)
        return sorted(found)

    def _check_root(self, root: str) -> Optional[str]:
        if not os.path.isdir(root):
            return f"Failed to read directory '{root}': directory does not exist"
        try:
            os.listdir(root)
        except OSError as e:
            return f"Failed to read directory '{root}': {e.strerror or e}"
        return None

    def _provenance_for(self, inf_path: str, cache: Dict[str, Optional[BackupProvenance]]):
        folder = os.path.dirname(inf_path)
        if folder not in cache:
            try:
                cache[folder] = read_sidecar(folder)
            except OSError as e:
                self.log(f"Warning: could not read {SIDECAR_NAME} in {folder}: {e}")
                cache[folder] = None
        return cache[folder]

    def _collect(self, root: str, results: Iterable[ParseResult], walk_errors: Iterable[str] = ()) -> ScanResult:
        walk_errors = list(walk_errors)
        scan = ScanResult(errors=list(walk_errors))
        sidecars: Dict[str, Optional[BackupProvenance]] = {}

        for result in results:
            if isinstance(result, ParseOk):
                record = result.record
                if record.full_inf_path:
                    record.provenance = self._provenance_for(record.full_inf_path, sidecars)
                scan.drivers.append(record)
            else:
                name = os.path.basename(result.path.replace('\\', '/')) or result.path
                first_line = result.message.splitlines()[0] if result.message else ""
                message = f"Failed to parse INF '{name}': {first_line}"
                self.log(message)
                scan.errors.append(message)
                scan.failures.append(result)

        if not scan.drivers and walk_errors:
            # Part of the tree was unreadable, so an empty result proves nothing
            scan.status = ScanStatus.IO_FAILURE
        elif not scan.drivers and not scan.failures:
            scan.status = ScanStatus.EMPTY
            scan.errors.append(no_inf_files_message(root))

        self.log(f"Found {len(scan.drivers)} driver packages in {root}"
                 + (f" ({len(scan.failures)} could not be read)" if scan.failures else ""))
        return scan

    @timed("scan_backup_folder")
    def scan(self, root: str) -> ScanResult:
        """Parse every .inf file below root; one bad file never fails the scan"""
        self.log(f"Scanning backup folder {root}...")
        problem = self._check_root(root)
        if problem:
            self.log(problem)
            return ScanResult(errors=[problem], status=ScanStatus.IO_FAILURE)

        walk_errors: List[str] = []
        inf_files = self.find_inf_files(root, walk_errors)
        return self._collect(root, (parse_inf_file(path) for path in inf_files), walk_errors)

    @timed("scan_backup_folder_powershell")
    def scan_with_powershell(self, root: str) -> ScanResult:
        """Same as scan() but lets PowerShell walk and parse the folder"""
        self.log(f"Scanning backup folder {root} with PowerShell...")
        result = self.runner.capture(scan_inf_folder(root))

        if result.exit_code != 0:
            detail = f"Stderr: {result.stderr.strip()}" if result.stderr.strip() else f"Exit code: {result.exit_code}"
            message = f"PowerShell execution failed. {detail}"
            self.log(message)
            return ScanResult(errors=[message], status=ScanStatus.IO_FAILURE)

        prefix_errors = []
        if result.stderr.strip():
            prefix_errors.append(f"PowerShell process wrote to stderr: {result.stderr.strip()}")

        if result.stdout.strip() in ("", "[]"):
            scan = ScanResult(errors=prefix_errors + [no_inf_files_message(root)], status=ScanStatus.EMPTY)
            return scan

        parsed = parse_scan_transport(result.stdout)
        decode_failures = [r for r in parsed if isinstance(r, ParseError) and r.path == "scan output"]
        if decode_failures:
            message = decode_failures[0].message
            self.log(message)
            return ScanResult(errors=prefix_errors + [message], failures=decode_failures,
                              status=ScanStatus.IO_FAILURE)

        scan = self._collect(root, parsed)
        scan.errors[:0] = prefix_errors
        return scan

    def scan_folder(self, root: str, backend: str = "native") -> ScanResult:
        if backend == "powershell":
            return self.scan_with_powershell(root)
        return self.scan(root)
