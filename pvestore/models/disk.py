"""Physical disk models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

UNKNOWN = "unknown"


def human_size(size_bytes: int) -> str:
    """Binary-prefixed size as lsblk prints it, e.g. 3.6T."""
    size = float(size_bytes)
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}P"


class DiskKind(Enum):
    """Media classification used for naming."""
    HDD = "HDD"
    SSD = "SSD"
    UNKNOWN = "unknown"


@dataclass
class SmartInfo:
    """Best-effort health data read from smartctl."""
    model: str = UNKNOWN
    rotation: str = UNKNOWN      # "SSD", "7200 rpm" or unknown
    health: str = UNKNOWN        # OK / WARN / unknown
    temperature: str = UNKNOWN   # "34C"
    power_on_hours: str = UNKNOWN
    life_remaining: str = UNKNOWN


@dataclass
class Partition:
    """A partition on a disk as reported by lsblk."""
    device: str
    fstype: Optional[str] = None
    label: Optional[str] = None       # filesystem label
    partlabel: Optional[str] = None   # GPT partition name
    uuid: Optional[str] = None
    mountpoints: List[str] = field(default_factory=list)

    @property
    def name_label(self) -> Optional[str]:
        """GPT name first, then filesystem label."""
        return self.partlabel or self.label


@dataclass
class Disk:
    """Represents a whole disk in the system."""
    device: str               # /dev/sdb
    size_bytes: int
    model: str = UNKNOWN
    serial: str = UNKNOWN
    rotational: Optional[bool] = None  # kernel flag, None if not reported
    read_only: bool = False
    state: Optional[str] = None
    mountpoints: List[str] = field(default_factory=list)
    partitions: List[Partition] = field(default_factory=list)
    kind: DiskKind = DiskKind.UNKNOWN
    smart: SmartInfo = field(default_factory=SmartInfo)

    @property
    def name(self) -> str:
        return self.device.rsplit("/", 1)[-1]

    @property
    def size_human(self) -> str:
        return human_size(self.size_bytes)

    @property
    def first_partition(self) -> Optional[Partition]:
        return self.partitions[0] if self.partitions else None

    @property
    def current_label(self) -> Optional[str]:
        part = self.first_partition
        return part.name_label if part else None

    def all_mountpoints(self) -> List[str]:
        mounts = list(self.mountpoints)
        for part in self.partitions:
            mounts.extend(part.mountpoints)
        return mounts

    def owns(self, device: str) -> bool:
        """True if device is this disk or one of its partitions."""
        return device == self.device or any(p.device == device for p in self.partitions)


def predicted_partition(disk_device: str, number: int = 1) -> str:
    """Kernel naming for partition N of a disk (/dev/sdb1, /dev/nvme0n1p1)."""
    if disk_device[-1:].isdigit():
        return f"{disk_device}p{number}"
    return f"{disk_device}{number}"
