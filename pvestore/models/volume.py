"""LVM and other disk holder structures."""
from dataclasses import dataclass, field
from typing import List


@dataclass
class PhysicalVolume:
    device: str
    vg_name: str = ""


@dataclass
class VolumeGroup:
    name: str
    size_bytes: int
    free_bytes: int = 0


@dataclass
class LogicalVolume:
    name: str
    vg_name: str
    attr: str = ""
    size_bytes: int = 0

    @property
    def is_thin_pool(self) -> bool:
        return self.attr.startswith("t")

    @property
    def full_name(self) -> str:
        return f"{self.vg_name}/{self.name}"


@dataclass
class MdArray:
    """Linux software RAID array."""
    name: str
    members: List[str] = field(default_factory=list)

    @property
    def device(self) -> str:
        return f"/dev/{self.name}"


@dataclass
class ZfsPool:
    name: str
    vdevs: List[str] = field(default_factory=list)
