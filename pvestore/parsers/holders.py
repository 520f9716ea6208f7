"""Parse md RAID and ZFS membership output."""
import re
from typing import List

_MD_LINE = re.compile(r"^(md\d+)\s*:")


def parse_mdstat(text: str) -> List[str]:
    """Array names (md0, md127) from /proc/mdstat."""
    return [m.group(1) for m in (_MD_LINE.match(line) for line in text.splitlines()) if m]


def parse_mdadm_detail(output: str) -> List[str]:
    """Member devices from 'mdadm --detail' (last column of device rows)."""
    members = []
    for line in output.splitlines():
        columns = line.split()
        if columns and columns[-1].startswith("/dev/") and columns[0].isdigit():
            members.append(columns[-1])
    return members


def parse_zpool_list(output: str) -> List[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_zpool_vdevs(output: str) -> List[str]:
    """Device paths from 'zpool status -P' config section."""
    vdevs = []
    for line in output.splitlines():
        columns = line.split()
        if columns and columns[0].startswith("/dev/"):
            vdevs.append(columns[0])
    return vdevs
