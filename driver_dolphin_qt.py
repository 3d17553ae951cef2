"""
Driver Dolphin - PyQt6 UI
Desktop front end for backing up and restoring third-party Windows drivers
"""

import sys
from pathlib import Path
from typing import List, Tuple

from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QTabWidget, QTableWidget, QTableWidgetItem, QPushButton, QLabel,
    QTextEdit, QProgressBar, QMessageBox, QHeaderView, QFrame, QLineEdit,
    QComboBox, QFileDialog, QCheckBox
)
from PyQt6.QtCore import Qt, QThread, QObject, pyqtSignal, QTimer
from PyQt6.QtGui import QFont, QColor

from activity_log import ActivityLog, LogEntry, LogLevel, perf_logger
from app_settings import AppSettings
from driver_backup import (
    OperationResult, OperationSequencer, OperationState, Workflow, is_admin, is_folder_empty, run_as_admin,
)
from driver_models import DriverRecord, ReconcileChoice


# Dracula Theme - Background #282a36, Current Line #44475a, Foreground #f8f8f2
# Comment #6272a4, Cyan #8be9fd, Green #50fa7b, Orange #ffb86c, Red #ff5555

DARK_STYLE = """
QMainWindow {
    background: #282a36;
}
QWidget {
    background: transparent;
    color: #f8f8f2;
    font-family: 'Segoe UI Variable', 'Segoe UI', sans-serif;
    font-size: 10pt;
}
QTabWidget::pane {
    border: none;
    background: #282a36;
}
QTabBar::tab {
    background: #282a36;
    color: #6272a4;
    padding: 12px 24px;
    border: none;
    border-bottom: 2px solid transparent;
    font-weight: 500;
    min-width: 80px;
}
QTabBar::tab:selected {
    color: #ff79c6;
    border-bottom: 2px solid #ff79c6;
}
QPushButton {
    background: #44475a;
    color: #f8f8f2;
    border: 1px solid #6272a4;
    padding: 8px 18px;
    border-radius: 6px;
    font-weight: 600;
}
QPushButton:hover {
    background: #6272a4;
    border-color: #bd93f9;
}
QPushButton:disabled {
    background: #21222c;
    color: #44475a;
    border-color: #44475a;
}
QPushButton#accentButton {
    background: #bd93f9;
    color: #282a36;
    border: none;
}
QPushButton#dangerButton {
    border-color: #ff5555;
    color: #ff5555;
}
QLineEdit, QComboBox {
    background: #21222c;
    border: 1px solid #44475a;
    border-radius: 6px;
    padding: 6px;
}
QTableWidget {
    background-color: #21222c;
    alternate-background-color: #282a36;
    gridline-color: transparent;
    border: 1px solid #44475a;
    border-radius: 8px;
    selection-background-color: #44475a;
}
QHeaderView::section {
    background: #282a36;
    color: #6272a4;
    border: none;
    padding: 8px;
    font-weight: 600;
}
QFrame#toolbarFrame {
    background: #21222c;
    border: 1px solid #44475a;
    border-radius: 8px;
}
QProgressBar {
    background: #21222c;
    border: none;
    border-radius: 4px;
    height: 6px;
}
QProgressBar::chunk {
    background: #bd93f9;
    border-radius: 4px;
}
"""

LEVEL_COLORS = {
    LogLevel.INFO: "#f8f8f2",
    LogLevel.SUCCESS: "#50fa7b",
    LogLevel.WARNING: "#ffb86c",
    LogLevel.ERROR: "#ff5555",
}


class WorkerThread(QThread):
    """Generic worker thread for background operations"""
    finished = pyqtSignal(object)
    error = pyqtSignal(str)

    def __init__(self, func, *args, **kwargs):
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def run(self):
        try:
            result = self.func(*self.args, **self.kwargs)
            self.finished.emit(result)
        except Exception as e:
            self.error.emit(str(e))


class ReconcilePromptBridge(QObject):
    """Asks the user about already-installed drivers from a worker thread.

    The worker calls the bridge like a plain function; the question is shown
    on the GUI thread and the worker blocks until it is answered.
    """
    ask = pyqtSignal(object, object)

    def __init__(self, parent_widget: QWidget):
        super().__init__()
        self.parent_widget = parent_widget
        self._answer = ReconcileChoice.CANCEL
        self.ask.connect(self._show_dialog, Qt.ConnectionType.BlockingQueuedConnection)

    def __call__(self, backup: DriverRecord, installed: DriverRecord) -> ReconcileChoice:
        self.ask.emit(backup, installed)
        return self._answer

    def _show_dialog(self, backup: DriverRecord, installed: DriverRecord):
        box = QMessageBox(self.parent_widget)
        box.setIcon(QMessageBox.Icon.Question)
        box.setWindowTitle("Driver Already Installed")
        box.setText(
            f"{backup.display_name}\n\n"
            f"{backup.original_name} version {backup.version} is already installed"
            + (f" as {installed.published_name}" if installed.published_name else "") + ".\n\n"
            "Install it again?"
        )
        buttons = {
            box.addButton("Install Anyway", QMessageBox.ButtonRole.AcceptRole): ReconcileChoice.INSTALL,
            box.addButton("Skip", QMessageBox.ButtonRole.RejectRole): ReconcileChoice.SKIP,
            box.addButton("Install All Duplicates", QMessageBox.ButtonRole.ActionRole): ReconcileChoice.INSTALL_ALL,
            box.addButton("Cancel Restore", QMessageBox.ButtonRole.DestructiveRole): ReconcileChoice.CANCEL,
        }
        box.exec()
        self._answer = buttons.get(box.clickedButton(), ReconcileChoice.CANCEL)


class DriverDolphinApp(QMainWindow):
    """Main application window"""

    log_signal = pyqtSignal(object)
    state_signal = pyqtSignal(object)

    def __init__(self, settings: AppSettings = None):
        super().__init__()

        self.settings = settings or AppSettings()
        self.activity_log = ActivityLog(self.settings.log_file if self.settings.get("log_to_file") else None)
        self.activity_log.add_listener(self.log_signal.emit)
        perf_logger.sink = self.activity_log.append

        self.sequencer = OperationSequencer(
            callback=self.activity_log.append,
            create_restore_point=self.settings.get("create_restore_point", True),
            scan_backend=self.settings.get("scan_backend", "native"),
            state_callback=self.state_signal.emit,
        )
        self.prompt_bridge = ReconcilePromptBridge(self)

        # Data storage
        self.installed_drivers: List[DriverRecord] = []
        self.backup_drivers: List[DriverRecord] = []
        self.worker = None
        self.admin_worker = None
        self.action_buttons: List[QPushButton] = []

        self.setWindowTitle("Driver Dolphin")
        self.setMinimumSize(900, 640)
        bounds = self.settings.get("window_bounds") or {}
        self.resize(bounds.get("width", 1100), bounds.get("height", 760))
        self.setup_ui()

        self.log_signal.connect(self._append_log)
        self.state_signal.connect(self._on_state_changed)

        QTimer.singleShot(300, self.check_environment)

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------

    def setup_ui(self):
        central = QWidget()
        layout = QVBoxLayout(central)
        layout.setContentsMargins(16, 16, 16, 8)
        layout.setSpacing(12)

        header = QHBoxLayout()
        title = QLabel("Driver Dolphin")
        title.setFont(QFont("Segoe UI", 18, QFont.Weight.Bold))
        title.setStyleSheet("color: #bd93f9;")
        header.addWidget(title)
        header.addStretch()
        self.admin_label = QLabel("")
        header.addWidget(self.admin_label)
        layout.addLayout(header)

        self.tabs = QTabWidget()
        self.create_backup_tab()
        self.create_restore_tab()
        self.create_log_tab()
        layout.addWidget(self.tabs)

        status = QHBoxLayout()
        self.status_label = QLabel("Ready")
        self.status_label.setStyleSheet("color: #6272a4;")
        status.addWidget(self.status_label)
        status.addStretch()
        self.progress_bar = QProgressBar()
        self.progress_bar.setFixedWidth(200)
        self.progress_bar.setTextVisible(False)
        self.progress_bar.setVisible(False)
        status.addWidget(self.progress_bar)
        layout.addLayout(status)

        self.setCentralWidget(central)

    def create_toolbar_frame(self) -> QFrame:
        frame = QFrame()
        frame.setObjectName("toolbarFrame")
        return frame

    def create_action_button(self, text: str, slot, object_name: str = "") -> QPushButton:
        button = QPushButton(text)
        if object_name:
            button.setObjectName(object_name)
        button.clicked.connect(slot)
        self.action_buttons.append(button)
        return button

    def create_folder_row(self, label: str, setting_key: str) -> Tuple[QHBoxLayout, QLineEdit]:
        row = QHBoxLayout()
        row.addWidget(QLabel(label))
        edit = QLineEdit(self.settings.get(setting_key, ""))
        edit.setReadOnly(True)
        row.addWidget(edit, 1)
        browse = self.create_action_button("Browse...", lambda: self.choose_folder(edit, setting_key))
        row.addWidget(browse)
        return row, edit

    def create_table(self, headers: List[str]) -> QTableWidget:
        table = QTableWidget(0, len(headers))
        table.setHorizontalHeaderLabels(headers)
        table.setAlternatingRowColors(True)
        table.verticalHeader().setVisible(False)
        table.setSelectionBehavior(QTableWidget.SelectionBehavior.SelectRows)
        table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Interactive)
        table.horizontalHeader().setStretchLastSection(True)
        return table

    def create_backup_tab(self):
        tab = QWidget()
        layout = QVBoxLayout(tab)
        layout.setContentsMargins(12, 12, 12, 12)

        frame = self.create_toolbar_frame()
        frame_layout = QVBoxLayout(frame)
        row, self.backup_path_edit = self.create_folder_row("Full backup folder:", "backup_path")
        frame_layout.addLayout(row)
        row, self.selective_backup_edit = self.create_folder_row("Selected drivers folder:", "selective_backup_path")
        frame_layout.addLayout(row)

        buttons = QHBoxLayout()
        buttons.addWidget(self.create_action_button("Full Backup", self.run_full_backup, "accentButton"))
        buttons.addWidget(self.create_action_button("Load Installed Drivers", self.load_installed_drivers))
        buttons.addWidget(self.create_action_button("Back Up Selected", self.run_selective_backup))
        buttons.addStretch()
        self.installed_count_label = QLabel("")
        buttons.addWidget(self.installed_count_label)
        frame_layout.addLayout(buttons)
        layout.addWidget(frame)

        self.installed_table = self.create_table(
            ["", "Provider", "Class", "INF", "Version", "Date", "Published Name"]
        )
        layout.addWidget(self.installed_table)
        self.tabs.addTab(tab, "Backup")

    def create_restore_tab(self):
        tab = QWidget()
        layout = QVBoxLayout(tab)
        layout.setContentsMargins(12, 12, 12, 12)

        frame = self.create_toolbar_frame()
        frame_layout = QVBoxLayout(frame)
        row, self.restore_path_edit = self.create_folder_row("Backup folder:", "restore_path")
        frame_layout.addLayout(row)

        buttons = QHBoxLayout()
        buttons.addWidget(self.create_action_button("Scan Folder", self.scan_backup_folder))
        buttons.addWidget(self.create_action_button("Restore Selected", self.run_selective_restore, "accentButton"))
        buttons.addWidget(self.create_action_button("Full Restore", self.run_full_restore, "dangerButton"))
        self.restore_point_check = QCheckBox("Create restore point first")
        self.restore_point_check.setChecked(bool(self.settings.get("create_restore_point", True)))
        self.restore_point_check.toggled.connect(self.on_restore_point_toggled)
        buttons.addWidget(self.restore_point_check)
        buttons.addStretch()
        self.backup_count_label = QLabel("")
        buttons.addWidget(self.backup_count_label)
        frame_layout.addLayout(buttons)
        layout.addWidget(frame)

        self.backup_table = self.create_table(
            ["", "Provider", "Class", "INF", "Version", "Backed Up On", "Source OS", "Path"]
        )
        layout.addWidget(self.backup_table)
        self.tabs.addTab(tab, "Restore")

    def create_log_tab(self):
        tab = QWidget()
        layout = QVBoxLayout(tab)
        layout.setContentsMargins(12, 12, 12, 12)

        toolbar_frame = self.create_toolbar_frame()
        toolbar = QHBoxLayout(toolbar_frame)
        toolbar.setContentsMargins(12, 8, 12, 8)

        clear_btn = QPushButton("Clear Log")
        clear_btn.clicked.connect(self.clear_log)
        toolbar.addWidget(clear_btn)

        copy_btn = QPushButton("Copy")
        copy_btn.clicked.connect(self.copy_log)
        toolbar.addWidget(copy_btn)

        export_btn = QPushButton("Export")
        export_btn.clicked.connect(self.export_log)
        toolbar.addWidget(export_btn)

        toolbar.addStretch()
        level_label = QLabel("Filter:")
        level_label.setStyleSheet("color: #6272a4;")
        toolbar.addWidget(level_label)

        self.log_filter = QComboBox()
        self.log_filter.addItem("All", None)
        for level in LogLevel:
            self.log_filter.addItem(level.value, level)
        self.log_filter.currentIndexChanged.connect(self.refresh_log_view)
        toolbar.addWidget(self.log_filter)
        layout.addWidget(toolbar_frame)

        self.log_text = QTextEdit()
        self.log_text.setReadOnly(True)
        self.log_text.setFont(QFont("Cascadia Code", 10))
        layout.addWidget(self.log_text)

        self.tabs.addTab(tab, "Log")

    # -------------------------------------------------------------------------
    # Log
    # -------------------------------------------------------------------------

    def _render_entry(self, entry: LogEntry):
        color = LEVEL_COLORS.get(entry.level, "#f8f8f2")
        self.log_text.setTextColor(QColor(color))
        self.log_text.append(entry.format())

    def _append_log(self, entry: LogEntry):
        """Append entry to log view (must be called from main thread)"""
        level = self.log_filter.currentData()
        if level is None or entry.level == level:
            self._render_entry(entry)

    def refresh_log_view(self):
        self.log_text.clear()
        for entry in self.activity_log.entries(self.log_filter.currentData()):
            self._render_entry(entry)

    def clear_log(self):
        self.activity_log.clear()
        self.log_text.clear()

    def copy_log(self):
        QApplication.clipboard().setText(self.activity_log.as_text(self.log_filter.currentData()))
        self.set_status("Log copied to clipboard")

    def export_log(self):
        filename, _ = QFileDialog.getSaveFileName(
            self, "Export Log", "driver_dolphin_log.txt", "Text Files (*.txt)"
        )
        if filename:
            try:
                self.activity_log.export(Path(filename), self.log_filter.currentData())
            except OSError as e:
                QMessageBox.critical(self, "Export Failed", str(e))
                return
            self.set_status(f"Log exported to {filename}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def set_status(self, message: str, show_progress: bool = False):
        self.status_label.setText(message)
        self.progress_bar.setVisible(show_progress)
        if show_progress:
            self.progress_bar.setRange(0, 0)  # Indeterminate

    def set_busy(self, busy: bool):
        for button in self.action_buttons:
            button.setEnabled(not busy)

    def _on_state_changed(self, state: OperationState):
        labels = {
            OperationState.IDLE: "Ready",
            OperationState.SCANNING: "Scanning...",
            OperationState.AWAITING_RECONCILIATION: "Waiting for your decision...",
            OperationState.EXECUTING: "Working...",
        }
        self.set_status(labels[state], state != OperationState.IDLE)

    def choose_folder(self, edit: QLineEdit, setting_key: str):
        folder = QFileDialog.getExistingDirectory(self, "Select Folder", edit.text())
        if folder:
            edit.setText(folder)
            self.settings.set(setting_key, folder)

    def on_restore_point_toggled(self, checked: bool):
        self.sequencer.create_restore_point = checked
        self.settings.set("create_restore_point", checked)

    def require_folder(self, edit: QLineEdit, what: str) -> str:
        folder = edit.text().strip()
        if not folder:
            QMessageBox.warning(self, "Folder Required", f"Please choose a {what} first.")
        return folder

    def start_worker(self, func, *args):
        self.set_busy(True)
        self.worker = WorkerThread(func, *args)
        self.worker.finished.connect(self.on_operation_finished)
        self.worker.error.connect(self.on_worker_error)
        self.worker.start()

    def checked_rows(self, table: QTableWidget, records: List[DriverRecord]) -> List[DriverRecord]:
        selected = []
        for row in range(table.rowCount()):
            item = table.item(row, 0)
            if item is not None and item.checkState() == Qt.CheckState.Checked:
                selected.append(records[row])
        return selected

    def fill_table(self, table: QTableWidget, rows: List[List[str]]):
        table.setRowCount(0)
        for values in rows:
            row = table.rowCount()
            table.insertRow(row)
            check = QTableWidgetItem()
            check.setFlags(Qt.ItemFlag.ItemIsUserCheckable | Qt.ItemFlag.ItemIsEnabled)
            check.setCheckState(Qt.CheckState.Unchecked)
            table.setItem(row, 0, check)
            for column, value in enumerate(values, 1):
                table.setItem(row, column, QTableWidgetItem(value))
        table.resizeColumnsToContents()

    # -------------------------------------------------------------------------
    # Workflows
    # -------------------------------------------------------------------------

    def check_environment(self):
        # has_admin_rights may shell out to `net session`
        self.admin_worker = WorkerThread(self.sequencer.tools.has_admin_rights)
        self.admin_worker.finished.connect(self.on_admin_checked)
        self.admin_worker.error.connect(self.on_worker_error)
        self.admin_worker.start()

    def on_admin_checked(self, elevated: bool):
        if elevated:
            self.admin_label.setText("Administrator")
            self.admin_label.setStyleSheet("color: #50fa7b;")
        else:
            self.admin_label.setText("Not elevated: backup and restore need administrator rights")
            self.admin_label.setStyleSheet("color: #ffb86c;")
            self.activity_log.append("Warning: running without administrator rights", LogLevel.WARNING)

    def run_full_backup(self):
        folder = self.require_folder(self.backup_path_edit, "backup folder")
        if not folder:
            return
        if not is_folder_empty(folder):
            reply = QMessageBox.question(
                self,
                "Folder Not Empty",
                f"{folder} already contains files.\n\n"
                "Existing driver packages are kept as they are. Back up into this folder anyway?",
                QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
            )
            if reply != QMessageBox.StandardButton.Yes:
                return
        self.start_worker(self.sequencer.full_backup, folder)

    def load_installed_drivers(self):
        self.start_worker(self.sequencer.list_installed_drivers)

    def run_selective_backup(self):
        selected = self.checked_rows(self.installed_table, self.installed_drivers)
        if not selected:
            QMessageBox.information(self, "Nothing Selected", "Tick the drivers you want to back up.")
            return
        folder = self.require_folder(self.selective_backup_edit, "destination folder")
        if folder:
            self.start_worker(self.sequencer.selective_backup, selected, folder)

    def scan_backup_folder(self):
        folder = self.require_folder(self.restore_path_edit, "backup folder")
        if folder:
            self.start_worker(self.sequencer.scan_backup_folder, folder)

    def run_selective_restore(self):
        selected = self.checked_rows(self.backup_table, self.backup_drivers)
        if not selected:
            QMessageBox.information(self, "Nothing Selected", "Tick the drivers you want to restore.")
            return
        self.start_worker(self.sequencer.selective_restore, selected, self.prompt_bridge)

    def run_full_restore(self):
        folder = self.require_folder(self.restore_path_edit, "backup folder")
        if not folder:
            return
        reply = QMessageBox.question(
            self,
            "Full Restore",
            f"Install every driver package found in\n{folder}?",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
        )
        if reply == QMessageBox.StandardButton.Yes:
            self.start_worker(self.sequencer.full_restore, folder)

    def on_worker_error(self, message: str):
        self.set_busy(False)
        self.activity_log.append(f"Error: {message}", LogLevel.ERROR)
        QMessageBox.critical(self, "Error", message)

    def on_operation_finished(self, result: OperationResult):
        self.set_busy(False)

        if result.workflow == Workflow.LIST_INSTALLED and result.success:
            self.installed_drivers = result.drivers
            self.fill_table(self.installed_table, [
                [d.provider, d.class_name, d.original_name, d.version, d.driver_date, d.published_name]
                for d in result.drivers
            ])
            self.installed_count_label.setText(f"{len(result.drivers)} drivers")
            self.set_status(result.message)
            return

        if result.workflow == Workflow.SCAN_BACKUP and result.scan is not None:
            self.backup_drivers = result.drivers
            self.fill_table(self.backup_table, [
                [d.provider, d.class_name, d.original_name, d.version,
                 d.provenance.backup_date if d.provenance else "",
                 d.provenance.backup_os if d.provenance else "",
                 d.full_inf_path]
                for d in result.drivers
            ])
            self.backup_count_label.setText(f"{len(result.drivers)} drivers")
            if not result.success:
                QMessageBox.critical(self, "Scan Failed", result.message)
            elif result.scan.is_empty:
                QMessageBox.information(self, "No Drivers", result.scan.errors[-1])
            elif result.scan.failures:
                QMessageBox.warning(self, "Scan Finished With Errors",
                                    f"{len(result.scan.failures)} file(s) could not be read. See the Log tab.")
            self.set_status(result.message)
            return

        if result.cancelled:
            QMessageBox.information(self, result.workflow.value, result.message)
        elif result.success:
            message = result.message
            if result.reboot_required:
                message += "\n\nRestart the computer to finish installing the drivers."
            QMessageBox.information(self, result.workflow.value, message)
        else:
            QMessageBox.critical(self, result.workflow.value, result.message)
        self.set_status(result.message)

    def closeEvent(self, event):
        self.settings.settings["is_maximized"] = self.isMaximized()
        if not self.isMaximized():
            self.settings.settings["window_bounds"] = {"width": self.width(), "height": self.height()}
        self.settings.save()
        super().closeEvent(event)


def main():
    app = QApplication(sys.argv)
    app.setStyle("Fusion")
    app.setStyleSheet(DARK_STYLE)

    if not is_admin():
        reply = QMessageBox.question(
            None,
            "Administrator Required",
            "Backing up and restoring drivers requires administrator privileges.\n\n"
            "Would you like to restart as administrator?",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No
        )
        if reply == QMessageBox.StandardButton.Yes:
            run_as_admin()

    window = DriverDolphinApp()
    if window.settings.get("is_maximized"):
        window.showMaximized()
    else:
        window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
