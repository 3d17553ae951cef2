import json
import os
from datetime import datetime

import pytest

from conftest import inf_text, write_inf
from backup_scanner import (
    SIDECAR_NAME, BackupFolderScanner, format_sidecar, parse_sidecar, read_sidecar, write_sidecar,
)
from driver_models import ParseErrorKind, ScanStatus
from shell_runner import CommandResult


def test_empty_folder_is_informational_not_error(tmp_path):
    result = BackupFolderScanner().scan(str(tmp_path))
    assert result.drivers == []
    assert result.status == ScanStatus.EMPTY
    assert result.is_empty and not result.had_io_failure
    assert len(result.errors) == 1
    assert "No .inf files found" in result.errors[0]


def test_missing_root_is_recoverable_io_failure(tmp_path):
    result = BackupFolderScanner().scan(str(tmp_path / "nope"))
    assert result.drivers == []
    assert result.had_io_failure
    assert result.errors[0].startswith("Failed to read directory")


@pytest.fixture
def locked_dirs(monkeypatch):
    """Make os.scandir fail for every directory named 'locked'"""
    real_scandir = os.scandir

    def scandir(path="."):
        if os.path.basename(os.fspath(path)) == "locked":
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)


def test_unreadable_subfolder_is_not_reported_as_empty(tmp_path, locked_dirs):
    write_inf(tmp_path / "locked" / "pkg", "acme.inf", inf_text())
    result = BackupFolderScanner().scan(str(tmp_path))

    assert result.status == ScanStatus.IO_FAILURE
    assert not result.is_empty
    assert result.drivers == []
    assert result.errors[0].startswith("Failed to read directory")
    assert "locked" in result.errors[0]
    assert not any("No .inf files found" in e for e in result.errors)


def test_unreadable_subfolder_keeps_partial_results(tmp_path, locked_dirs):
    write_inf(tmp_path / "locked", "hidden.inf", inf_text())
    write_inf(tmp_path / "open", "visible.inf", inf_text())
    result = BackupFolderScanner().scan(str(tmp_path))

    assert result.status == ScanStatus.OK
    assert [d.original_name for d in result.drivers] == ["visible.inf"]
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Failed to read directory")


def test_partial_results_with_malformed_files(tmp_path):
    for i in range(3):
        write_inf(tmp_path / f"good{i}", f"good{i}.inf", inf_text(driver_ver=f"01/01/2020,1.0.0.{i}"))
    write_inf(tmp_path / "bad1", "noversion.inf", "[Strings]\nA=1\n")
    write_inf(tmp_path / "bad2", "noprovider.inf", inf_text(provider=None))

    messages = []
    result = BackupFolderScanner(callback=messages.append).scan(str(tmp_path))

    assert len(result.drivers) == 3
    assert len(result.errors) == 2
    assert len(result.failures) == 2
    assert result.status == ScanStatus.OK
    assert {f.kind for f in result.failures} == {
        ParseErrorKind.MISSING_VERSION_SECTION, ParseErrorKind.MISSING_REQUIRED_FIELDS,
    }
    assert any("Failed to parse INF 'noversion.inf'" in m for m in messages)


def test_only_malformed_files_is_not_reported_as_empty(tmp_path):
    write_inf(tmp_path, "bad.inf", "nothing here")
    result = BackupFolderScanner().scan(str(tmp_path))
    assert result.status == ScanStatus.OK
    assert result.drivers == []
    assert len(result.errors) == 1


def test_directories_named_like_inf_are_ignored(tmp_path):
    (tmp_path / "looks.inf").mkdir()
    write_inf(tmp_path / "pkg", "REAL.INF", inf_text())
    scanner = BackupFolderScanner()
    found = scanner.find_inf_files(str(tmp_path))
    assert [p.rsplit("/", 1)[-1].rsplit("\\", 1)[-1] for p in found] == ["REAL.INF"]
    assert len(scanner.scan(str(tmp_path)).drivers) == 1


def test_sidecar_provenance_is_attached(tmp_path):
    write_inf(tmp_path / "with", "with.inf", inf_text())
    write_sidecar(str(tmp_path / "with"), "with.inf", "Windows 11 Pro", "22631", datetime(2024, 3, 1, 9, 30))
    write_inf(tmp_path / "without", "without.inf", inf_text())

    result = BackupFolderScanner().scan(str(tmp_path))
    by_name = {d.original_name: d for d in result.drivers}
    provenance = by_name["with.inf"].provenance
    assert provenance.backup_os == "Windows 11 Pro"
    assert provenance.backup_os_build == "22631"
    assert provenance.backup_date == "2024-03-01 09:30:00"
    assert provenance.inf_file == "with.inf"
    assert by_name["without.inf"].provenance is None


def test_parse_sidecar_keeps_unknown_keys_and_ignores_prose():
    text = (
        "BackupDate: 2024-03-01 09:30:00\n"
        "BackupOS: Windows 10 Home\n"
        "Vendor: Acme\n"
        "To restore this driver manually, run:\n"
        "C:\\Drivers\\acme.inf\n"
    )
    provenance = parse_sidecar(text)
    assert provenance.backup_date == "2024-03-01 09:30:00"
    assert provenance.backup_os == "Windows 10 Home"
    assert provenance.extra == {"Vendor": "Acme"}


def test_format_sidecar_contains_manual_restore_instructions():
    text = format_sidecar("acme.inf", "Windows 11", "22000", datetime(2024, 1, 2, 3, 4, 5))
    assert "BackupDate: 2024-01-02 03:04:05" in text
    assert 'pnputil /add-driver "acme.inf" /install' in text


def test_read_sidecar_absent_returns_none(tmp_path):
    assert read_sidecar(str(tmp_path)) is None
    assert not (tmp_path / SIDECAR_NAME).exists()


def test_scan_with_powershell_decodes_transport(tmp_path, fake_runner):
    payload = json.dumps({
        "provider": "Acme", "className": "Net", "version": "1.2.3.4",
        "originalName": "acme.inf", "fullInfPath": str(tmp_path / "acme.inf"),
    })
    fake_runner.captures["$RootPath"] = CommandResult(payload, "", 0)
    result = BackupFolderScanner(fake_runner).scan_folder(str(tmp_path), backend="powershell")
    assert result.status == ScanStatus.OK
    assert [d.version for d in result.drivers] == ["1.2.3.4"]


def test_scan_with_powershell_empty_and_failure(tmp_path, fake_runner):
    scanner = BackupFolderScanner(fake_runner)

    fake_runner.captures["$RootPath"] = CommandResult("[]", "", 0)
    assert scanner.scan_with_powershell(str(tmp_path)).is_empty

    fake_runner.captures["$RootPath"] = CommandResult("", "Access is denied", 1)
    failed = scanner.scan_with_powershell(str(tmp_path))
    assert failed.had_io_failure
    assert "Access is denied" in failed.errors[0]

    fake_runner.captures["$RootPath"] = CommandResult("{broken", "", 0)
    garbled = scanner.scan_with_powershell(str(tmp_path))
    assert garbled.had_io_failure
    assert garbled.failures[0].kind == ParseErrorKind.JSON_DECODE_ERROR


def test_driver_ver_without_comma_scans_the_same_with_both_backends(tmp_path, fake_runner):
    inf = write_inf(tmp_path / "pkg", "acme.inf", inf_text(driver_ver="10/21/2022 3.1.2.0 ; build"))
    native = BackupFolderScanner().scan(str(tmp_path))

    fake_runner.captures["$RootPath"] = CommandResult(json.dumps([{
        "provider": "Acme Corp", "className": "Net", "driverDate": "10/21/2022", "version": "3.1.2.0",
        "originalName": "acme.inf", "fullInfPath": str(inf),
    }]), "", 0)
    shell = BackupFolderScanner(fake_runner).scan_with_powershell(str(tmp_path))

    assert native.errors == shell.errors == []
    expected = [("acme.inf", "10/21/2022", "3.1.2.0")]
    assert [(d.original_name, d.driver_date, d.version) for d in native.drivers] == expected
    assert [(d.original_name, d.driver_date, d.version) for d in shell.drivers] == expected
