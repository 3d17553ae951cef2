"""
Driver Dolphin - Backup & Restore Backend
Contains the workflows (full/selective backup and restore), system probes and
the operation state machine the UI drives
"""

import ctypes
import os
import platform
import shutil
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import os_commands
from activity_log import TimingContext
from backup_scanner import SIDECAR_NAME, BackupFolderScanner, write_sidecar
from driver_models import (
    CommandFailedError, DriverDolphinError, DriverRecord, OperationBusyError,
    PermissionDeniedError, ScanResult, ScanStatus,
)
from inf_parser import decode_json_records, parse_pnputil_enum, parse_windows_driver_json
from restore_reconciler import ReconcilePrompt, RestoreReconciler
from shell_runner import CallbackListener, ShellRunner

# pnputil: ERROR_SUCCESS_REBOOT_REQUIRED
EXIT_REBOOT_REQUIRED = 3010
SUCCESS_EXIT_CODES = (0, EXIT_REBOOT_REQUIRED)


class SystemTools:
    """Read-only probes of the running Windows installation"""

    def __init__(self, runner: ShellRunner, callback: Callable[[str], None] = None):
        self.runner = runner
        self.callback = callback

    def log(self, message: str):
        if self.callback:
            self.callback(message)

    def has_admin_rights(self) -> bool:
        """True when elevated; asks the shell API first, then `net session`"""
        if is_admin():
            return True
        return self.runner.capture(os_commands.net_session()).ok

    def system_restore_enabled(self) -> bool:
        return self.runner.capture(os_commands.get_computer_restore_point()).ok

    def create_restore_point(self, description: str) -> bool:
        command = os_commands.checkpoint_computer(description)
        return self.runner.run(command, CallbackListener(self.log)) == 0

    def get_os_info(self) -> Dict[str, str]:
        """Product name and build number, used in driver_details.txt"""
        result = self.runner.capture(os_commands.get_os_info())
        items, _ = decode_json_records(result.stdout) if result.ok else ([], None)
        if items:
            return {
                'OsProductName': str(items[0].get('OsProductName') or 'Unknown'),
                'OsBuildNumber': str(items[0].get('OsBuildNumber') or 'Unknown'),
            }
        return {
            'OsProductName': f"{platform.system()} {platform.release()}".strip() or 'Unknown',
            'OsBuildNumber': platform.version() or 'Unknown',
        }

    def list_installed_drivers(self) -> List[DriverRecord]:
        """Installed third-party driver packages from `pnputil /enum-drivers`"""
        command = os_commands.pnputil_enum_drivers()
        result = self.runner.capture(command)
        if not result.ok:
            raise CommandFailedError(command.description, result.exit_code, result.stderr or result.stdout)
        drivers = parse_pnputil_enum(result.stdout)
        self.log(f"Found {len(drivers)} installed driver packages")
        return drivers

    def list_installed_packages(self) -> List[DriverRecord]:
        """Installed packages with their DriverStore paths (Get-WindowsDriver)"""
        command = os_commands.get_windows_driver()
        result = self.runner.capture(command)
        if not result.ok:
            raise CommandFailedError(command.description, result.exit_code, result.stderr)
        drivers, error = parse_windows_driver_json(result.stdout)
        if error:
            raise DriverDolphinError(error.message)
        self.log(f"Found {len(drivers)} installed driver packages")
        return drivers


# =============================================================================
# OPERATION SEQUENCER
# =============================================================================

class OperationState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    AWAITING_RECONCILIATION = "awaiting_reconciliation"
    EXECUTING = "executing"


class Workflow(Enum):
    FULL_BACKUP = "Full backup"
    SELECTIVE_BACKUP = "Selective backup"
    FULL_RESTORE = "Full restore"
    SELECTIVE_RESTORE = "Selective restore"
    SCAN_BACKUP = "Backup folder scan"
    LIST_INSTALLED = "Installed driver scan"


@dataclass
class OperationResult:
    """Outcome of one workflow run"""
    workflow: Workflow
    success: bool
    message: str = ""
    exit_code: Optional[int] = None
    installed_paths: List[str] = field(default_factory=list)
    skipped: List[DriverRecord] = field(default_factory=list)
    drivers: List[DriverRecord] = field(default_factory=list)
    scan: Optional[ScanResult] = None
    cancelled: bool = False
    reboot_required: bool = False


class OperationSequencer:
    """Runs one driver workflow at a time: IDLE -> SCANNING -> (AWAITING_RECONCILIATION) -> EXECUTING -> IDLE"""

    def __init__(self, runner: Optional[ShellRunner] = None, callback: Callable[[str], None] = None,
                 create_restore_point: bool = True, scan_backend: str = "native",
                 admin_check: Optional[Callable[[], bool]] = None,
                 state_callback: Optional[Callable[[OperationState], None]] = None):
        self.runner = runner or ShellRunner()
        self.callback = callback
        self.create_restore_point = create_restore_point
        self.scan_backend = scan_backend
        self.state_callback = state_callback
        self.tools = SystemTools(self.runner, callback=self.log)
        self.scanner = BackupFolderScanner(self.runner, callback=self.log)
        self.admin_check = admin_check or self.tools.has_admin_rights
        self._state = OperationState.IDLE
        self._lock = threading.Lock()

    def log(self, message: str):
        if self.callback:
            self.callback(message)

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state != OperationState.IDLE

    def _set_state(self, state: OperationState):
        self._state = state
        if self.state_callback:
            self.state_callback(state)

    def _execute(self, workflow: Workflow, body: Callable[[], OperationResult]) -> OperationResult:
        with self._lock:
            if self._state != OperationState.IDLE:
                raise OperationBusyError(f"Cannot start {workflow.value.lower()}: another operation is running")
            self._set_state(OperationState.SCANNING)

        self.log(f"{workflow.value} started")
        try:
            with TimingContext(workflow.name.lower()):
                result = body()
        except (DriverDolphinError, OSError) as e:
            result = OperationResult(workflow, success=False, message=f"Error: {e}")
        finally:
            self._set_state(OperationState.IDLE)

        if result.message:
            self.log(result.message)
        return result

    def _require_admin(self, action: str):
        if not self.admin_check():
            raise PermissionDeniedError(f"Administrator rights are required to {action}")

    def _run(self, command: os_commands.Command) -> Optional[int]:
        return self.runner.run(command, CallbackListener(self.log))

    def _maybe_restore_point(self, label: str):
        if not self.create_restore_point:
            return
        if not self.tools.system_restore_enabled():
            self.log("Warning: System Restore is disabled, continuing without a restore point")
            return
        if not self.tools.create_restore_point(f"Driver Dolphin - before {label}"):
            self.log("Warning: restore point could not be created, continuing")

    # -------------------------------------------------------------------------
    # Read-only workflows
    # -------------------------------------------------------------------------

    def scan_backup_folder(self, root: str) -> OperationResult:
        def body():
            scan = self.scanner.scan_folder(root, self.scan_backend)
            if scan.status == ScanStatus.IO_FAILURE:
                return OperationResult(Workflow.SCAN_BACKUP, False, scan.errors[0] if scan.errors else "Scan failed",
                                       scan=scan)
            return OperationResult(Workflow.SCAN_BACKUP, True, f"{len(scan.drivers)} driver package(s) found",
                                   drivers=scan.drivers, scan=scan)
        return self._execute(Workflow.SCAN_BACKUP, body)

    def list_installed_drivers(self) -> OperationResult:
        def body():
            drivers = self.tools.list_installed_packages()
            return OperationResult(Workflow.LIST_INSTALLED, True, f"{len(drivers)} installed driver package(s)",
                                   drivers=drivers)
        return self._execute(Workflow.LIST_INSTALLED, body)

    # -------------------------------------------------------------------------
    # Backup
    # -------------------------------------------------------------------------

    def _write_sidecars(self, root: str, os_info: Dict[str, str], existing: Iterable[str] = ()) -> int:
        """Write driver_details.txt into the package folders of this export.

        Top-level entries listed in existing predate the export and are left
        alone, as is any folder that already carries a sidecar.
        """
        existing = set(existing)
        written = 0
        for dirpath, dirnames, filenames in os.walk(root):
            if dirpath == root:
                dirnames[:] = [d for d in dirnames if d not in existing]
            if SIDECAR_NAME in filenames:
                continue
            infs = sorted(name for name in filenames if name.lower().endswith('.inf'))
            if not infs:
                continue
            write_sidecar(dirpath, infs[0], os_info['OsProductName'], os_info['OsBuildNumber'])
            written += 1
        return written

    def full_backup(self, destination: str) -> OperationResult:
        """Export every third-party driver with DISM"""
        def body():
            self._require_admin("back up drivers")
            os.makedirs(destination, exist_ok=True)
            existing = os.listdir(destination)
            if existing:
                self.log(f"Warning: {destination} is not empty, {len(existing)} existing item(s) are left unchanged")
            os_info = self.tools.get_os_info()

            self._set_state(OperationState.EXECUTING)
            exit_code = self._run(os_commands.dism_export_drivers(destination))
            if exit_code != 0:
                return OperationResult(Workflow.FULL_BACKUP, False, f"Error: driver export failed (exit code {exit_code})",
                                       exit_code=exit_code)

            packages = self._write_sidecars(destination, os_info, existing)
            return OperationResult(Workflow.FULL_BACKUP, True,
                                   f"Backup completed successfully: {packages} driver package(s) in {destination}",
                                   exit_code=exit_code)
        return self._execute(Workflow.FULL_BACKUP, body)

    def selective_backup(self, drivers: List[DriverRecord], destination: str) -> OperationResult:
        """Copy the DriverStore folders of the chosen drivers into destination"""
        def body():
            self._require_admin("back up drivers")
            os.makedirs(destination, exist_ok=True)
            os_info = self.tools.get_os_info()

            self._set_state(OperationState.EXECUTING)
            copied, failed = [], []
            for record in drivers:
                if not record.full_inf_path:
                    self.log(f"Skipped {record.original_name}: no DriverStore path known")
                    failed.append(record)
                    continue
                source = os.path.dirname(record.full_inf_path)
                target = os.path.join(destination, os.path.basename(source))
                self.log(f"Copying {record.display_name} ({record.original_name}) to {target}")
                try:
                    shutil.copytree(source, target, dirs_exist_ok=True)
                    write_sidecar(target, record.original_name, os_info['OsProductName'], os_info['OsBuildNumber'])
                except OSError as e:
                    self.log(f"Failed to copy {record.original_name}: {e}")
                    failed.append(record)
                    continue
                copied.append(target)

            if failed:
                return OperationResult(Workflow.SELECTIVE_BACKUP, False,
                                       f"Error: {len(failed)} of {len(drivers)} driver(s) could not be backed up",
                                       exit_code=1, installed_paths=copied, skipped=failed)
            return OperationResult(Workflow.SELECTIVE_BACKUP, True,
                                   f"Backup completed successfully: {len(copied)} driver(s) in {destination}",
                                   exit_code=0, installed_paths=copied)
        return self._execute(Workflow.SELECTIVE_BACKUP, body)

    # -------------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------------

    def full_restore(self, folder: str) -> OperationResult:
        """Install every driver package below folder with one pnputil call"""
        def body():
            self._require_admin("restore drivers")
            if not os.path.isdir(folder):
                return OperationResult(Workflow.FULL_RESTORE, False, f"Error: backup folder not found: {folder}")
            self._maybe_restore_point("full driver restore")

            self._set_state(OperationState.EXECUTING)
            exit_code = self._run(os_commands.pnputil_add_driver(os.path.join(folder, "*.inf"), subdirs=True))
            if exit_code not in SUCCESS_EXIT_CODES:
                return OperationResult(Workflow.FULL_RESTORE, False,
                                       f"Error: driver restore failed (exit code {exit_code})", exit_code=exit_code)
            return OperationResult(Workflow.FULL_RESTORE, True, "Restore completed successfully",
                                   exit_code=exit_code, reboot_required=exit_code == EXIT_REBOOT_REQUIRED)
        return self._execute(Workflow.FULL_RESTORE, body)

    def selective_restore(self, drivers: List[DriverRecord], prompt: ReconcilePrompt) -> OperationResult:
        """Reconcile the selection against installed drivers, then install one by one"""
        def body():
            self._require_admin("restore drivers")
            installed = self.tools.list_installed_drivers()

            self._set_state(OperationState.AWAITING_RECONCILIATION)
            plan = RestoreReconciler(installed, prompt, callback=self.log).reconcile(drivers)
            if plan.cancelled:
                return OperationResult(Workflow.SELECTIVE_RESTORE, False,
                                       "Cancelled: restore aborted, no drivers were installed",
                                       skipped=plan.skipped, cancelled=True)
            if not plan.install_paths:
                return OperationResult(Workflow.SELECTIVE_RESTORE, True, "Nothing to install",
                                       exit_code=0, skipped=plan.skipped)

            self._maybe_restore_point("selective driver restore")
            self._set_state(OperationState.EXECUTING)
            installed_paths = []
            exit_code: Optional[int] = 0
            reboot = False
            for index, inf_path in enumerate(plan.install_paths, 1):
                self.log(f"[{index}/{len(plan.install_paths)}] {inf_path}")
                code = self._run(os_commands.pnputil_add_driver(inf_path))
                if code in SUCCESS_EXIT_CODES:
                    installed_paths.append(inf_path)
                    reboot = reboot or code == EXIT_REBOOT_REQUIRED
                else:
                    exit_code = code

            if exit_code != 0:
                return OperationResult(Workflow.SELECTIVE_RESTORE, False,
                                       f"Error: {len(plan.install_paths) - len(installed_paths)} of "
                                       f"{len(plan.install_paths)} driver(s) failed to install",
                                       exit_code=exit_code, installed_paths=installed_paths,
                                       skipped=plan.skipped, reboot_required=reboot)
            return OperationResult(Workflow.SELECTIVE_RESTORE, True,
                                   f"Restore completed successfully: {len(installed_paths)} driver(s) installed",
                                   exit_code=0, installed_paths=installed_paths,
                                   skipped=plan.skipped, reboot_required=reboot)
        return self._execute(Workflow.SELECTIVE_RESTORE, body)


def is_folder_empty(path: str) -> bool:
    """True when path does not exist yet or has no entries"""
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None
    except FileNotFoundError:
        return True


def is_admin() -> bool:
    """Check if running with admin privileges"""
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False


def run_as_admin():
    """Relaunch the application with admin privileges"""
    if not is_admin():
        ctypes.windll.shell32.ShellExecuteW(
            None, "runas", sys.executable, " ".join(sys.argv), None, 1
        )
        sys.exit()
