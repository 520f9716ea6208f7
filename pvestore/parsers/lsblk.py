"""Parse 'lsblk -J -b' output into Disk models."""
import json
from typing import Any, Dict, List, Optional

from pvestore.core.errors import ParseError
from pvestore.models.disk import UNKNOWN, Disk, Partition

LSBLK_COLUMNS = "NAME,PATH,SIZE,TYPE,ROTA,RO,MODEL,SERIAL,STATE,FSTYPE,LABEL,PARTLABEL,UUID,MOUNTPOINT"


def _flag(value: Any) -> Optional[bool]:
    # lsblk reports booleans as true/false in newer releases and "0"/"1" in older ones
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true"):
        return True
    if text in ("0", "false"):
        return False
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _mounts(device: Dict[str, Any]) -> List[str]:
    mounts = device.get("mountpoints")
    if mounts is None:
        single = device.get("mountpoint")
        mounts = [single] if single else []
    return [m for m in mounts if m]


def _descendant_mounts(device: Dict[str, Any]) -> List[str]:
    """Mounts of everything stacked on a device: LVM volumes, md arrays, crypt mappings."""
    mounts = []
    for child in device.get("children") or []:
        mounts.extend(_mounts(child))
        mounts.extend(_descendant_mounts(child))
    return mounts


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _device_path(device: Dict[str, Any]) -> str:
    return device.get("path") or f"/dev/{device['name']}"


def _collect_partitions(device: Dict[str, Any]) -> List[Partition]:
    partitions = []
    for child in device.get("children") or []:
        if child.get("type") != "part":
            continue
        partitions.append(Partition(
            device=_device_path(child),
            fstype=_text(child.get("fstype")),
            label=_text(child.get("label")),
            partlabel=_text(child.get("partlabel")),
            uuid=_text(child.get("uuid")),
            mountpoints=_unique(_mounts(child) + _descendant_mounts(child)),
        ))
    return partitions


def _disk_mounts(device: Dict[str, Any]) -> List[str]:
    # Partition mounts are kept on the partitions; anything stacked directly on
    # the disk (no partition table) counts as the disk's own mount
    mounts = _mounts(device)
    for child in device.get("children") or []:
        if child.get("type") != "part":
            mounts.extend(_mounts(child))
            mounts.extend(_descendant_mounts(child))
    return _unique(mounts)


def parse_lsblk(output: str) -> List[Disk]:
    """Parse lsblk JSON into whole-disk models, partitions attached.

    Raises:
        ParseError: If the output is not lsblk JSON
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ParseError("lsblk output", str(e))
    if not isinstance(data, dict) or "blockdevices" not in data:
        raise ParseError("lsblk output", "missing 'blockdevices'")

    disks = []
    for device in data["blockdevices"]:
        if device.get("type") != "disk":
            continue
        try:
            size = int(device.get("size") or 0)
        except (TypeError, ValueError):
            raise ParseError("lsblk output", f"bad size for {device.get('name')}: {device.get('size')!r}")
        disks.append(Disk(
            device=_device_path(device),
            size_bytes=size,
            model=_text(device.get("model")) or UNKNOWN,
            serial=_text(device.get("serial")) or UNKNOWN,
            rotational=_flag(device.get("rota")),
            read_only=bool(_flag(device.get("ro"))),
            state=_text(device.get("state")),
            mountpoints=_disk_mounts(device),
            partitions=_collect_partitions(device),
        ))
    return disks
