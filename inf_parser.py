"""
Driver Dolphin - INF and driver list parsing
Turns .inf files, `pnputil /enum-drivers` output and PowerShell JSON into DriverRecords.
Nothing in here raises for bad input: failures come back as ParseError values.
"""

import codecs
import json
import re
from typing import Dict, List, Optional, Tuple

from driver_models import DriverRecord, ParseError, ParseErrorKind, ParseOk, ParseResult

_SECTION_HEADER = re.compile(r'^\s*\[([^\]]+)\]')
_KEY_VALUE = re.compile(r'^\s*([^;=\s]+)\s*=\s*(.*)$')
_TRAILING_VERSION = re.compile(r'(\d+(?:\.\d+)+)\s*$')
_PNPUTIL_FIELD = re.compile(r'^\s*([^:]+?)\s*:\s*(.*?)\s*$')

_PNPUTIL_FIELDS = {
    'original name': 'original_name',
    'provider name': 'provider',
    'class name': 'class_name',
    'signer name': 'signer',
}

MISSING_VERSION_MESSAGE = "Could not find [Version] section."


def _leaf(path: str) -> str:
    """File name of a Windows or POSIX path"""
    return re.split(r'[\\/]', path.rstrip('\\/'))[-1]


def _text(item: dict, key: str) -> str:
    value = item.get(key)
    return "" if value is None else str(value).strip()


# =============================================================================
# .INF FILES
# =============================================================================

def read_inf_text(path: str) -> str:
    """Read an .inf file, detecting UTF-16 / UTF-8 and falling back to ANSI"""
    with open(path, 'rb') as f:
        raw = f.read()

    if raw.startswith(codecs.BOM_UTF16_LE) or raw.startswith(codecs.BOM_UTF16_BE):
        return raw.decode('utf-16')
    if raw.startswith(codecs.BOM_UTF8):
        return raw[len(codecs.BOM_UTF8):].decode('utf-8', errors='replace')
    if len(raw) >= 2 and raw[0] != 0 and raw[1] == 0:
        return raw.decode('utf-16-le', errors='replace')
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError:
        return raw.decode('cp1252', errors='replace')


def extract_section(text: str, name: str) -> Optional[List[str]]:
    """Body lines of every [name] section (case-insensitive), or None if absent"""
    wanted = name.lower()
    found = False
    inside = False
    lines: List[str] = []

    for line in text.splitlines():
        header = _SECTION_HEADER.match(line)
        if header:
            inside = header.group(1).strip().lower() == wanted
            found = found or inside
            continue
        if inside:
            lines.append(line)

    return lines if found else None


def clean_value(raw: str) -> str:
    """Strip quotes and a trailing ; comment from an INF value.

    Inside a quoted value a doubled quote ("") stands for one literal quote.
    """
    value = raw.strip()
    if value.startswith('"'):
        chars = []
        i = 1
        while i < len(value):
            ch = value[i]
            if ch == '"':
                if value[i + 1:i + 2] != '"':
                    break
                i += 1
            chars.append(ch)
            i += 1
        return "".join(chars)
    return value.split(';', 1)[0].strip().strip('"')


def parse_string_table(lines: List[str]) -> Dict[str, str]:
    """Build the token -> literal map of a [Strings] section (keys lowercased)"""
    strings = {}
    for line in lines:
        match = _KEY_VALUE.match(line)
        if match:
            strings[match.group(1).strip().lower()] = clean_value(match.group(2))
    return strings


def resolve_token(value: str, strings: Dict[str, str]) -> str:
    """Resolve %token% through the string table, keeping the bare token if unknown"""
    if len(value) > 2 and value.startswith('%') and value.endswith('%'):
        token = value[1:-1]
        return strings.get(token.lower(), token)
    return value


def parse_driver_ver(value: str) -> Tuple[str, str]:
    """Split a DriverVer value into (date, version)"""
    value = value.strip()
    if ',' in value:
        date, _, version = value.rpartition(',')
        return date.strip(), version.strip()

    match = _TRAILING_VERSION.search(value)
    if match:
        return value[:match.start()].strip(), match.group(1)
    return "", value


def parse_inf_text(text: str, inf_path: str, strict: bool = True) -> ParseResult:
    """Parse the [Version] section of an .inf file.

    With ``strict`` a record without Provider or DriverVer is reported as a
    MISSING_REQUIRED_FIELDS error instead of being returned half-filled.
    """
    version_lines = extract_section(text, "Version")
    if version_lines is None:
        return ParseError(inf_path, MISSING_VERSION_MESSAGE, ParseErrorKind.MISSING_VERSION_SECTION)

    strings = parse_string_table(extract_section(text, "Strings") or [])
    record = DriverRecord(original_name=_leaf(inf_path), full_inf_path=inf_path)

    for line in version_lines:
        match = _KEY_VALUE.match(line)
        if not match:
            continue
        key = match.group(1).lower()
        value = clean_value(match.group(2))
        if key == 'provider':
            record.provider = resolve_token(value, strings)
        elif key == 'class':
            record.class_name = value
        elif key == 'driverver':
            record.driver_date, record.version = parse_driver_ver(value)

    if strict:
        missing = []
        if not record.provider:
            missing.append("Provider")
        if not record.version:
            missing.append("DriverVer")
        if missing:
            return ParseError(
                inf_path,
                f"Skipped: Missing required properties ({', '.join(missing)})",
                ParseErrorKind.MISSING_REQUIRED_FIELDS,
            )

    return ParseOk(record)


def parse_inf_file(path: str, strict: bool = True) -> ParseResult:
    """Read and parse one .inf file; read failures stay scoped to this file"""
    try:
        text = read_inf_text(path)
    except (OSError, UnicodeError) as e:
        return ParseError(path, str(e), ParseErrorKind.FILE_READ_ERROR)
    return parse_inf_text(text, path, strict=strict)


# =============================================================================
# PNPUTIL
# =============================================================================

def _split_date_version(value: str) -> Tuple[str, str]:
    parts = value.split()
    if not parts:
        return "", ""
    if len(parts) == 1:
        return "", parts[0]
    return parts[0], parts[-1]


def parse_pnputil_enum(text: str) -> List[DriverRecord]:
    """Parse `pnputil /enum-drivers` output into installed driver records"""
    records = []
    current: Optional[dict] = None

    def flush():
        if current and current.get('original_name'):
            records.append(DriverRecord(**current))

    for line in text.splitlines():
        match = _PNPUTIL_FIELD.match(line)
        if not match:
            continue
        key = match.group(1).lower()
        value = match.group(2)

        if key == 'published name':
            flush()
            current = {'original_name': '', 'published_name': value}
        elif current is None:
            continue
        elif key in _PNPUTIL_FIELDS:
            current[_PNPUTIL_FIELDS[key]] = value
        elif key in ('driver version', 'driver date and version'):
            current['driver_date'], current['version'] = _split_date_version(value)

    flush()
    return records


# =============================================================================
# POWERSHELL JSON
# =============================================================================

def decode_json_records(text: str, source: str = "<powershell>") -> Tuple[List[dict], Optional[ParseError]]:
    """Decode PowerShell ConvertTo-Json output into a list of objects.

    ConvertTo-Json collapses one-element arrays into a bare object and prints
    nothing for an empty pipeline; both are normalized to a list here.
    """
    stripped = text.strip()
    if not stripped:
        return [], None
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        return [], ParseError(source, f"Error parsing JSON output: {e}", ParseErrorKind.JSON_DECODE_ERROR)

    if data is None:
        return [], None
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return [], ParseError(
            source, f"Unexpected JSON value of type {type(data).__name__}", ParseErrorKind.JSON_DECODE_ERROR
        )
    return [item for item in data if isinstance(item, dict)], None


def parse_windows_driver_json(text: str) -> Tuple[List[DriverRecord], Optional[ParseError]]:
    """Map `Get-WindowsDriver -Online` objects to installed driver records"""
    items, error = decode_json_records(text, "Get-WindowsDriver")
    records = []
    for item in items:
        inf_path = _text(item, 'OriginalFileName')
        if not inf_path:
            continue
        records.append(DriverRecord(
            original_name=_leaf(inf_path),
            provider=_text(item, 'ProviderName'),
            class_name=_text(item, 'ClassName'),
            version=_text(item, 'Version'),
            published_name=_text(item, 'Driver'),
            full_inf_path=inf_path,
            driver_date=_text(item, 'Date'),
        ))
    return records, error


def _transport_error_kind(message: str) -> ParseErrorKind:
    if message.startswith(MISSING_VERSION_MESSAGE.rstrip('.')):
        return ParseErrorKind.MISSING_VERSION_SECTION
    if message.startswith("Skipped: Missing required"):
        return ParseErrorKind.MISSING_REQUIRED_FIELDS
    return ParseErrorKind.FILE_READ_ERROR


def parse_scan_transport(text: str) -> List[ParseResult]:
    """Decode the JSON emitted by the PowerShell folder scan.

    Each object is either an error ({isError, infPath, message}) or a
    flattened driver (provider, className, version, originalName, fullInfPath).
    """
    items, error = decode_json_records(text, "scan output")
    if error:
        return [error]

    results: List[ParseResult] = []
    for item in items:
        if item.get('isError'):
            message = _text(item, 'message') or "Unknown error"
            results.append(ParseError(_text(item, 'infPath'), message, _transport_error_kind(message)))
            continue
        inf_path = _text(item, 'fullInfPath')
        results.append(ParseOk(DriverRecord(
            original_name=_text(item, 'originalName') or _leaf(inf_path),
            provider=_text(item, 'provider'),
            class_name=_text(item, 'className'),
            version=_text(item, 'version'),
            full_inf_path=inf_path,
            driver_date=_text(item, 'driverDate'),
        )))
    return results
