"""Parse and edit /etc/pve/storage.cfg.

The file is a sequence of blocks::

    dir: HDD-2A
    	path /mnt/disks/HDD-2A
    	content images,iso
    	nodes pve2
    	shared 0

Each block starts with '<type>: <id>' at column 0, holds indented
'key value' lines and ends at a blank line (or the next header).
"""
import re
from typing import Dict, List, Optional

from pvestore.core.errors import ParseError
from pvestore.models.storage import StorageUnit

_HEADER = re.compile(r"^([A-Za-z][A-Za-z0-9_-]*):\s*(\S+)\s*$")
_TRUE_VALUES = ("1", "true", "yes", "on")


def _unit_from_block(storage_type: str, storage_id: str, props: Dict[str, str]) -> StorageUnit:
    nodes = [n.strip() for n in props.get("nodes", "").split(",") if n.strip()]
    return StorageUnit(
        id=storage_id,
        type=storage_type,
        path=props.get("path"),
        vgname=props.get("vgname"),
        thinpool=props.get("thinpool"),
        server=props.get("server"),
        export=props.get("export"),
        nodes=nodes,
        shared=props.get("shared", "0").lower() in _TRUE_VALUES,
        options=dict(props),
    )


def parse_storage_cfg(text: str) -> List[StorageUnit]:
    """Parse storage.cfg text into StorageUnit objects (file order preserved).

    Raises:
        ParseError: For property lines outside a block or malformed headers
    """
    units: List[StorageUnit] = []
    current: Optional[tuple] = None
    props: Dict[str, str] = {}

    def flush():
        if current is not None:
            units.append(_unit_from_block(current[0], current[1], props))

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if line.startswith("#"):
            continue
        if not line:
            flush()
            current, props = None, {}
            continue
        if not raw_line[0].isspace():
            match = _HEADER.match(line)
            if not match:
                raise ParseError("storage.cfg", f"line {lineno}: malformed block header {line!r}")
            flush()
            current, props = (match.group(1), match.group(2)), {}
            continue
        if current is None:
            raise ParseError("storage.cfg", f"line {lineno}: property outside of a storage block")
        parts = line.split(None, 1)
        props[parts[0]] = parts[1].strip() if len(parts) == 2 else "1"

    flush()
    return units


def rename_storage_block(text: str, old_id: str, new_id: str,
                         updates: Optional[Dict[str, str]] = None) -> str:
    """Return text with block old_id renamed to new_id.

    Only the header and the properties named in updates are rewritten;
    every other line is kept byte for byte.

    Raises:
        ParseError: If no block named old_id exists
    """
    updates = dict(updates or {})
    lines = text.splitlines(keepends=True)
    in_block = False
    found = False
    result = []

    for raw_line in lines:
        stripped = raw_line.strip()
        if raw_line[:1] and not raw_line[0].isspace() and stripped and not stripped.startswith("#"):
            match = _HEADER.match(stripped)
            in_block = bool(match and match.group(2) == old_id)
            if in_block:
                found = True
                newline = "\n" if raw_line.endswith("\n") else ""
                raw_line = f"{match.group(1)}: {new_id}{newline}"
        elif not stripped:
            in_block = False
        elif in_block:
            parts = stripped.split(None, 1)
            if parts[0] in updates:
                indent = raw_line[: len(raw_line) - len(raw_line.lstrip())]
                newline = "\n" if raw_line.endswith("\n") else ""
                raw_line = f"{indent}{parts[0]} {updates[parts[0]]}{newline}"
        result.append(raw_line)

    if not found:
        raise ParseError("storage.cfg", f"no storage block named '{old_id}'")
    return "".join(result)
