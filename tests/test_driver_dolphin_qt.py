import os
import threading

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
QtWidgets = pytest.importorskip("PyQt6.QtWidgets")

from activity_log import perf_logger
from app_settings import AppSettings
from driver_dolphin_qt import DriverDolphinApp


@pytest.fixture
def window(tmp_path):
    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication([])
    win = DriverDolphinApp(AppSettings(config_dir=tmp_path))
    yield win
    if win.admin_worker is not None:
        win.admin_worker.wait(5000)
    win.close()
    perf_logger.sink = None
    app.processEvents()


def test_admin_probe_runs_off_the_gui_thread(window):
    seen = []

    def has_admin_rights():
        seen.append(threading.current_thread() is threading.main_thread())
        return False

    window.sequencer.tools.has_admin_rights = has_admin_rights
    window.check_environment()
    assert window.admin_worker.wait(5000)
    QtWidgets.QApplication.processEvents()

    assert seen == [False]
    assert window.admin_label.text().startswith("Not elevated")
