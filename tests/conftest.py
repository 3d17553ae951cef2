import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from os_commands import Command
from shell_runner import CommandResult


def inf_text(provider: str = "Acme Corp", class_name: str = "Net",
             driver_ver: str = "10/21/2022,3.1.2.0", strings: str = "") -> str:
    lines = ["; test driver", "[Version]", 'Signature="$WINDOWS NT$"']
    if class_name is not None:
        lines.append(f"Class={class_name}")
    lines.append("ClassGuid={4d36e972-e325-11ce-bfc1-08002be10318}")
    if provider is not None:
        lines.append(f"Provider={provider}")
    if driver_ver is not None:
        lines.append(f"DriverVer={driver_ver}")
    lines += ["", "[Manufacturer]", "%Vendor%=Models,NTamd64", ""]
    if strings:
        lines += ["[Strings]", strings]
    return "\r\n".join(lines) + "\r\n"


def write_inf(folder: Path, name: str, text: str, encoding: str = "utf-8") -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / name
    path.write_text(text, encoding=encoding)
    return path


class FakeRunner:
    """Stands in for ShellRunner: records commands and replays canned results"""

    def __init__(self):
        self.run_calls: List[Command] = []
        self.capture_calls: List[Command] = []
        self.captures: Dict[str, CommandResult] = {
            "net session": CommandResult("", "", 0),
            "Get-ComputerRestorePoint": CommandResult("", "", 0),
            "Get-CimInstance": CommandResult(
                json.dumps({"OsProductName": "Windows 11 Pro", "OsBuildNumber": "22631"}), "", 0
            ),
            "pnputil /enum-drivers": CommandResult("", "", 0),
        }
        self.exit_code_for: Callable[[Command], Optional[int]] = lambda command: 0
        self.on_run: Callable[[Command], None] = lambda command: None

    @staticmethod
    def key(command: Command) -> str:
        if command.script:
            return command.script.split()[0]
        return " ".join(command.argv()[:2])

    def run(self, command: Command, listener=None) -> Optional[int]:
        self.run_calls.append(command)
        if listener is not None:
            listener.on_start(command)
        self.on_run(command)
        code = self.exit_code_for(command)
        if listener is not None:
            listener.on_end(code)
        return code

    def capture(self, command: Command) -> CommandResult:
        self.capture_calls.append(command)
        return self.captures.get(self.key(command), CommandResult("", "not scripted", 1))

    def runs_of(self, key: str) -> List[Command]:
        return [c for c in self.run_calls if self.key(c) == key]


@pytest.fixture
def fake_runner():
    return FakeRunner()
