#!/usr/bin/env python3
"""
Build script for Driver Dolphin
Creates a single windowed executable using PyInstaller
"""

import subprocess
import sys
from pathlib import Path

# Configuration
APP_NAME = "DriverDolphin"
VERSION = "1.0.0"
MAIN_SCRIPT = "driver_dolphin_qt.py"
ICON_FILE = None  # Set to "appicon.ico" if you have one

BACKEND_MODULES = [
    "activity_log", "app_settings", "backup_scanner", "driver_backup",
    "driver_models", "inf_parser", "os_commands", "restore_reconciler", "shell_runner",
]


def build_command() -> list:
    cmd = [
        sys.executable, "-m", "PyInstaller",
        "--name", APP_NAME,
        "--onefile",
        "--windowed",
        "--clean",
        "--noconfirm",

        "--hidden-import", "PyQt6.QtCore",
        "--hidden-import", "PyQt6.QtWidgets",
        "--hidden-import", "PyQt6.QtGui",

        "--exclude-module", "tkinter",
        "--exclude-module", "pytest",

        # pnputil / dism need an elevated process
        "--uac-admin",
    ]
    for module in BACKEND_MODULES:
        cmd.extend(["--hidden-import", module])

    if ICON_FILE and Path(ICON_FILE).exists():
        cmd.extend(["--icon", ICON_FILE])

    cmd.append(MAIN_SCRIPT)
    return cmd


def build():
    print(f"Building {APP_NAME} v{VERSION}...")
    print("=" * 50)

    cmd = build_command()
    print(f"Command: {' '.join(cmd)}")
    print()

    result = subprocess.run(cmd, cwd=Path(__file__).parent)

    if result.returncode == 0:
        exe_path = Path(__file__).parent / "dist" / f"{APP_NAME}.exe"
        print()
        print("=" * 50)
        print("BUILD SUCCESSFUL")
        print(f"   Executable: {exe_path}")
        if exe_path.exists():
            print(f"   Size: {exe_path.stat().st_size / 1024 / 1024:.1f} MB")
        print("   Run it as Administrator to back up or restore drivers.")
        print("=" * 50)
    else:
        print()
        print("BUILD FAILED - check the PyInstaller output above.")
        sys.exit(1)


if __name__ == "__main__":
    build()
