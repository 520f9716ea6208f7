"""Parse 'pvesm list' tables."""
from typing import List

from pvestore.core.errors import ParseError
from pvestore.models.storage import ContentEntry


def parse_pvesm_list(output: str) -> List[ContentEntry]:
    """Volumes from 'pvesm list <storage>'.

    Columns: Volid Format Type Size [VMID]

    Raises:
        ParseError: For rows with missing columns or a non-numeric size
    """
    entries = []
    lines = output.splitlines()
    if lines and lines[0].split()[:1] == ["Volid"]:
        lines = lines[1:]
    for line in lines:
        columns = line.split()
        if not columns:
            continue
        if len(columns) < 4:
            raise ParseError("pvesm list output", f"expected at least 4 columns in {line.strip()!r}")
        try:
            size = int(columns[3])
        except ValueError:
            raise ParseError("pvesm list output", f"bad size {columns[3]!r}")
        entries.append(ContentEntry(
            volid=columns[0],
            format=columns[1],
            type=columns[2],
            size_bytes=size,
            vmid=columns[4] if len(columns) > 4 else None,
        ))
    return entries
