"""Parse LVM report output (pvs/vgs/lvs with --separator '|')."""
from typing import List

from pvestore.core.errors import ParseError
from pvestore.models.volume import LogicalVolume, PhysicalVolume, VolumeGroup

SEPARATOR = "|"

PVS_ARGS = ["pvs", "--noheadings", "--separator", SEPARATOR, "-o", "pv_name,vg_name"]
VGS_ARGS = ["vgs", "--noheadings", "--separator", SEPARATOR, "--units", "b", "--nosuffix",
            "-o", "vg_name,vg_size,vg_free"]
LVS_ARGS = ["lvs", "--noheadings", "--separator", SEPARATOR, "--units", "b", "--nosuffix",
            "-o", "lv_name,vg_name,lv_attr,lv_size"]


def _rows(output: str, source: str, min_columns: int) -> List[List[str]]:
    rows = []
    for line in output.splitlines():
        if not line.strip():
            continue
        columns = [c.strip() for c in line.strip().split(SEPARATOR)]
        if len(columns) < min_columns:
            raise ParseError(source, f"expected {min_columns} columns in {line.strip()!r}")
        rows.append(columns)
    return rows


def _bytes(value: str, source: str) -> int:
    try:
        return int(float(value))
    except ValueError:
        raise ParseError(source, f"bad size {value!r}")


def parse_pvs(output: str) -> List[PhysicalVolume]:
    return [PhysicalVolume(device=row[0], vg_name=row[1]) for row in _rows(output, "pvs output", 2)]


def parse_vgs(output: str) -> List[VolumeGroup]:
    return [
        VolumeGroup(name=row[0], size_bytes=_bytes(row[1], "vgs output"),
                    free_bytes=_bytes(row[2], "vgs output"))
        for row in _rows(output, "vgs output", 3)
    ]


def parse_lvs(output: str) -> List[LogicalVolume]:
    return [
        LogicalVolume(name=row[0], vg_name=row[1], attr=row[2],
                      size_bytes=_bytes(row[3], "lvs output"))
        for row in _rows(output, "lvs output", 4)
    ]
