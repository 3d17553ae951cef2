"""
Driver Dolphin - Restore reconciliation
Decides, per selected backup driver, whether it gets installed
"""

from typing import Callable, Dict, Iterable, List, Optional, Tuple

from driver_models import DriverRecord, ReconcileChoice, ReconcilePlan

# prompt(backup_record, installed_record) -> choice
ReconcilePrompt = Callable[[DriverRecord, DriverRecord], ReconcileChoice]


def index_installed(installed: Iterable[DriverRecord]) -> Dict[Tuple[str, str], DriverRecord]:
    """Installed drivers keyed by (original name, version); first occurrence wins"""
    index: Dict[Tuple[str, str], DriverRecord] = {}
    for record in installed:
        index.setdefault(record.match_key, record)
    return index


class RestoreReconciler:
    """Compares a backup selection against the drivers already installed.

    A driver with no installed twin is always installed. When the same .inf
    name and version is already present the prompt decides: install anyway,
    skip, install every remaining duplicate, or cancel the whole restore.
    """

    def __init__(self, installed: Iterable[DriverRecord], prompt: ReconcilePrompt,
                 callback: Callable[[str], None] = None):
        self.installed = index_installed(installed)
        self.prompt = prompt
        self.callback = callback

    def log(self, message: str):
        if self.callback:
            self.callback(message)

    def find_installed(self, record: DriverRecord) -> Optional[DriverRecord]:
        return self.installed.get(record.match_key)

    def reconcile(self, selected: List[DriverRecord]) -> ReconcilePlan:
        plan = ReconcilePlan()
        install_all = False

        for record in selected:
            match = self.find_installed(record)
            if match is None:
                plan.install_paths.append(record.full_inf_path)
                continue

            plan.duplicates.append(record)
            if install_all:
                self.log(f"{record.original_name} {record.version} is already installed, reinstalling (install all)")
                plan.install_paths.append(record.full_inf_path)
                continue

            choice = self.prompt(record, match)
            if choice == ReconcileChoice.CANCEL:
                self.log("Cancelled: restore aborted by user, nothing will be installed")
                return ReconcilePlan(skipped=plan.skipped, duplicates=plan.duplicates, cancelled=True)
            if choice == ReconcileChoice.SKIP:
                self.log(f"Skipped {record.original_name} {record.version} (already installed)")
                plan.skipped.append(record)
                continue
            if choice == ReconcileChoice.INSTALL_ALL:
                install_all = True
            plan.install_paths.append(record.full_inf_path)

        self.log(f"{len(plan.install_paths)} driver(s) to install, {len(plan.skipped)} skipped")
        return plan
