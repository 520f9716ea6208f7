"""Parse 'smartctl -a' output."""
import re
from typing import List, Optional

from pvestore.models.disk import UNKNOWN, SmartInfo

_MODEL = re.compile(r"^(Device Model|Model Number|Product):\s*(.+)$", re.M)
_ROTATION = re.compile(r"^Rotation Rate:\s*(.+)$", re.M)
_HEALTH = re.compile(
    r"^(SMART overall-health self-assessment test result|SMART Health Status):\s*(.+)$", re.M
)


def _leading_number(text: str) -> Optional[str]:
    match = re.search(r"\d+", text.replace(",", ""))
    return match.group(0) if match else None


def _attribute_row(line: str) -> Optional[List[str]]:
    """Columns of an ATA attribute table row (ID NAME FLAG VALUE WORST THRESH TYPE UPDATED WHEN RAW...)."""
    columns = line.split()
    if len(columns) >= 10 and columns[0].isdigit():
        return columns
    return None


def _find_line(output: str, *needles: str) -> Optional[str]:
    for line in output.splitlines():
        if any(needle in line for needle in needles):
            return line.strip()
    return None


def parse_rotation(output: str) -> str:
    """Return 'SSD', the literal rotation rate ('7200 rpm') or 'unknown'."""
    match = _ROTATION.search(output or "")
    if not match:
        return UNKNOWN
    value = match.group(1).strip()
    if "solid state" in value.lower():
        return "SSD"
    return value


def _temperature(output: str) -> str:
    for line in output.splitlines():
        stripped = line.strip()
        if "Temperature_Celsius" in stripped or "Airflow_Temperature_Cel" in stripped:
            row = _attribute_row(stripped)
            if row and _leading_number(row[9]):
                return f"{_leading_number(row[9])}C"
        elif stripped.startswith(("Current Drive Temperature:", "Temperature:")):
            value = _leading_number(stripped.split(":", 1)[1])
            if value:
                return f"{value}C"
    return UNKNOWN


def _power_on_hours(output: str) -> str:
    line = _find_line(output, "Power_On_Hours", "Power On Hours")
    if not line:
        return UNKNOWN
    row = _attribute_row(line)
    value = _leading_number(row[9]) if row else _leading_number(line.split(":", 1)[-1])
    return f"{value}h" if value else UNKNOWN


def _life_remaining(output: str) -> str:
    line = _find_line(output, "Percent_Lifetime_Remain", "Media_Wearout_Indicator", "Percentage Used")
    if not line:
        return UNKNOWN
    if "Percentage Used" in line:
        used = _leading_number(line.split(":", 1)[-1])
        return f"{max(0, 100 - int(used))}%" if used else UNKNOWN
    row = _attribute_row(line)
    value = row[3] if row and row[3].isdigit() else None
    return f"{int(value)}%" if value else UNKNOWN


def parse_smartctl(output: str) -> SmartInfo:
    """Extract model, rotation and health fields; missing fields stay 'unknown'."""
    info = SmartInfo()
    if not output:
        return info

    model = _MODEL.search(output)
    if model:
        info.model = model.group(2).strip()

    info.rotation = parse_rotation(output)

    health = _HEALTH.search(output)
    if health:
        verdict = health.group(2).lower()
        info.health = "OK" if ("pass" in verdict or verdict.strip() == "ok") else "WARN"

    info.temperature = _temperature(output)
    info.power_on_hours = _power_on_hours(output)
    info.life_remaining = _life_remaining(output)
    return info
