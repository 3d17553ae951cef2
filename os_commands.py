"""
Driver Dolphin - OS command builders
Every external tool invocation is built here as an argv list. Values embedded in
PowerShell scripts go through ps_quote(); nothing is passed through a shell.
"""

import base64
import subprocess
import sys
from dataclasses import dataclass
from typing import List, Tuple

# Console tools (pnputil, dism, net) write in the OEM code page
CONSOLE_ENCODING = "oem" if sys.platform == "win32" else "utf-8"

POWERSHELL_PREFIX = [
    "powershell", "-NoProfile", "-NonInteractive", "-WindowStyle", "Hidden",
    "-ExecutionPolicy", "Bypass",
]

# Scripts force UTF-8 so output decodes the same way on every locale
_UTF8_PREAMBLE = "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8\n"

_PS_QUOTE_CHARS = "'‘’‚‛"


@dataclass(frozen=True)
class Command:
    """An external program invocation"""
    program: str
    args: Tuple[str, ...] = ()
    description: str = ""
    encoding: str = CONSOLE_ENCODING
    script: str = ""

    def argv(self) -> List[str]:
        return [self.program, *self.args]

    def display(self) -> str:
        """Human readable command line for the log"""
        if self.script:
            first_line = next((l.strip() for l in self.script.splitlines() if l.strip()), "")
            return f"powershell: {first_line}"
        return subprocess.list2cmdline(self.argv())


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal"""
    quoted = []
    for ch in str(value):
        quoted.append(ch)
        if ch in _PS_QUOTE_CHARS:
            quoted.append(ch)
    return "'" + "".join(quoted) + "'"


def powershell(script: str, description: str = "") -> Command:
    """Run a PowerShell script passed as -EncodedCommand (UTF-16LE base64)"""
    full_script = _UTF8_PREAMBLE + script
    encoded = base64.b64encode(full_script.encode("utf-16-le")).decode("ascii")
    return Command(
        program=POWERSHELL_PREFIX[0],
        args=tuple(POWERSHELL_PREFIX[1:]) + ("-EncodedCommand", encoded),
        description=description,
        encoding="utf-8",
        script=script,
    )


# =============================================================================
# DRIVER STORE TOOLS
# =============================================================================

def dism_export_drivers(destination: str) -> Command:
    return Command(
        program="dism",
        args=("/online", "/export-driver", f"/destination:{destination}"),
        description=f"Exporting all third-party drivers to {destination}",
    )


def pnputil_enum_drivers() -> Command:
    return Command(
        program="pnputil",
        args=("/enum-drivers",),
        description="Listing installed driver packages",
    )


def pnputil_add_driver(inf_path: str, subdirs: bool = False) -> Command:
    args = ["/add-driver", inf_path]
    if subdirs:
        args.append("/subdirs")
    args.append("/install")
    return Command(
        program="pnputil",
        args=tuple(args),
        description=f"Installing {inf_path}",
    )


def get_windows_driver() -> Command:
    script = (
        "Get-WindowsDriver -Online -ErrorAction Stop | "
        "Select-Object Driver, OriginalFileName, ProviderName, ClassName, Version, "
        "@{n='Date';e={ if ($_.Date) { $_.Date.ToString('yyyy-MM-dd') } else { '' } }} | "
        "ConvertTo-Json -Compress"
    )
    return powershell(script, "Reading installed third-party drivers")


# =============================================================================
# SYSTEM PROBES
# =============================================================================

def net_session() -> Command:
    """Succeeds only when the caller is elevated"""
    return Command(program="net", args=("session",), description="Checking administrator rights")


def get_computer_restore_point() -> Command:
    return powershell(
        "Get-ComputerRestorePoint -ErrorAction Stop | Out-Null",
        "Checking System Restore availability",
    )


def checkpoint_computer(description: str) -> Command:
    script = (
        f"Checkpoint-Computer -Description {ps_quote(description)} "
        "-RestorePointType 'MODIFY_SETTINGS' -ErrorAction Stop"
    )
    return powershell(script, f"Creating restore point '{description}'")


def get_os_info() -> Command:
    script = (
        "Get-CimInstance Win32_OperatingSystem | "
        "Select-Object @{n='OsProductName';e={$_.Caption}}, @{n='OsBuildNumber';e={$_.BuildNumber}} | "
        "ConvertTo-Json -Compress"
    )
    return powershell(script, "Reading operating system version")


_SCAN_INF_SCRIPT = r"""
$RootPath = __ROOT__

function Get-InfValue([string]$raw) {
    $value = $raw.Trim()
    if ($value.StartsWith('"')) {
        $sb = New-Object System.Text.StringBuilder
        $i = 1
        while ($i -lt $value.Length) {
            $ch = $value[$i]
            if ($ch -eq '"') {
                if ($i + 1 -ge $value.Length -or $value[$i + 1] -ne '"') { break }
                $i++
            }
            [void]$sb.Append($ch)
            $i++
        }
        return $sb.ToString()
    }
    return $value.Split(';')[0].Trim().Trim('"')
}

function Split-DriverVer([string]$value) {
    $value = $value.Trim()
    $comma = $value.LastIndexOf(',')
    if ($comma -ge 0) {
        return @($value.Substring(0, $comma).Trim(), $value.Substring($comma + 1).Trim())
    }
    if ($value -match '^(.*?)\s*(\d+(?:\.\d+)+)\s*$') {
        return @($Matches[1].Trim(), $Matches[2])
    }
    return @('', $value)
}

try {
    $infFiles = Get-ChildItem -LiteralPath $RootPath -Recurse -Filter *.inf -ErrorAction Stop | Where-Object { -not $_.PSIsContainer }
} catch {
    Write-Error "Failed to read directory '$RootPath': $($_.Exception.Message)"
    exit 1
}
$results = @()
foreach ($infFile in $infFiles) {
    $infPath = $infFile.FullName
    try {
        $content = Get-Content -LiteralPath $infPath -Raw -ErrorAction Stop
        $strings = @{}
        if ($content -match '(?msi)^\s*\[Strings\]\s*\r?\n(.*?)(?:\r?\n\s*\[|\z)') {
            foreach ($line in ($Matches[1] -split '\r?\n')) {
                if ($line -match '^\s*([^;=\s]+)\s*=\s*(.*)$') {
                    $strings[$Matches[1].Trim()] = Get-InfValue $Matches[2]
                }
            }
        }
        if ($content -match '(?msi)^\s*\[Version\]\s*\r?\n(.*?)(?:\r?\n\s*\[|\z)') {
            $props = @{ provider = ''; className = ''; version = ''; driverDate = ''; originalName = $infFile.Name; fullInfPath = $infPath }
            foreach ($line in ($Matches[1] -split '\r?\n')) {
                if ($line -match '^\s*Provider\s*=\s*(.*)$') {
                    $val = Get-InfValue $Matches[1]
                    if ($val.Length -gt 2 -and $val.StartsWith('%') -and $val.EndsWith('%')) {
                        $key = $val.Substring(1, $val.Length - 2)
                        if ($strings.ContainsKey($key)) { $val = $strings[$key] } else { $val = $key }
                    }
                    $props.provider = $val
                } elseif ($line -match '^\s*Class\s*=\s*(.*)$') {
                    $props.className = Get-InfValue $Matches[1]
                } elseif ($line -match '^\s*DriverVer\s*=\s*(.*)$') {
                    $parts = Split-DriverVer (Get-InfValue $Matches[1])
                    $props.driverDate = $parts[0]
                    $props.version = $parts[1]
                }
            }
            if ($props.provider -and $props.version) {
                $results += New-Object psobject -Property $props
            } else {
                $missing = @()
                if (-not $props.provider) { $missing += 'Provider' }
                if (-not $props.version) { $missing += 'DriverVer' }
                $results += New-Object psobject -Property @{ isError = $true; infPath = $infPath; message = 'Skipped: Missing required properties (' + ($missing -join ', ') + ')' }
            }
        } else {
            $results += New-Object psobject -Property @{ isError = $true; infPath = $infPath; message = 'Could not find [Version] section.' }
        }
    } catch {
        $results += New-Object psobject -Property @{ isError = $true; infPath = $infPath; message = $_.Exception.Message }
    }
}
$results | ConvertTo-Json -Compress
"""


def scan_inf_folder(root: str) -> Command:
    """PowerShell walk of a backup folder that emits the JSON scan transport"""
    script = _SCAN_INF_SCRIPT.replace("__ROOT__", ps_quote(root))
    return powershell(script, f"Scanning {root} for driver packages")
