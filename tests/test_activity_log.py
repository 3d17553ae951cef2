import pytest

from activity_log import ActivityLog, LogLevel, TimingContext, classify, perf_logger, timed


@pytest.fixture(autouse=True)
def quiet_perf_logger():
    lines = []
    perf_logger.sink = lines.append
    perf_logger.clear()
    yield lines
    perf_logger.sink = None
    perf_logger.clear()


@pytest.mark.parametrize("message, level", [
    ("Error: driver export failed (exit code 50)", LogLevel.ERROR),
    ("Failed to parse INF 'x.inf': Could not find [Version] section.", LogLevel.ERROR),
    ("Warning: System Restore is disabled", LogLevel.WARNING),
    ("Cancelled: restore aborted, no drivers were installed", LogLevel.WARNING),
    ("Backup completed successfully: 3 driver package(s)", LogLevel.SUCCESS),
    ("Installing D:\\backup\\acme.inf", LogLevel.INFO),
])
def test_classify(message, level):
    assert classify(message) == level


def test_append_filter_and_listeners():
    log = ActivityLog()
    received = []
    log.add_listener(received.append)
    log.append("Scanning D:\\backup")
    log.append("Error: boom")
    log.remove_listener(received.append)
    log.append("Warning: late")

    assert [e.message for e in received] == ["Scanning D:\\backup", "Error: boom"]
    assert [e.message for e in log.entries(LogLevel.ERROR)] == ["Error: boom"]
    assert len(log.entries()) == 3
    assert log.as_text(LogLevel.WARNING).endswith("] Warning: late")


def test_explicit_level_overrides_classification():
    entry = ActivityLog().append("all good", LogLevel.SUCCESS)
    assert entry.level == LogLevel.SUCCESS


def test_max_entries_drops_oldest():
    log = ActivityLog(max_entries=2)
    for i in range(3):
        log.append(f"line {i}")
    assert [e.message for e in log.entries()] == ["line 1", "line 2"]


def test_clear_keeps_file_and_export(tmp_path):
    log_file = tmp_path / "logs" / "activity.log"
    log = ActivityLog(log_file=log_file)
    log.append("Error: first")
    log.append("second")
    log.clear()
    log.append("third")

    on_disk = log_file.read_text(encoding="utf-8").splitlines()
    assert len(on_disk) == 3
    assert "ERROR" in on_disk[0]

    export = tmp_path / "export.txt"
    log.export(export)
    assert export.read_text(encoding="utf-8").endswith("] third")


def test_timed_records_success_and_failure(quiet_perf_logger):
    @timed("unit.work")
    def work(fail=False):
        if fail:
            raise ValueError("nope")
        return 42

    assert work() == 42
    with pytest.raises(ValueError):
        work(fail=True)
    with TimingContext("unit.block"):
        pass

    summary = perf_logger.get_summary()
    assert summary["unit.work"]["count"] == 2
    assert summary["unit.work"]["failures"] == 1
    assert summary["unit.block"]["count"] == 1
    assert quiet_perf_logger[1].startswith("[PERF] unit.work")
    assert "FAIL: nope" in quiet_perf_logger[1]
