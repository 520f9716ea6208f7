"""Proxmox storage registry models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from pvestore.core.errors import ConfigurationError


class Backend(Enum):
    """Storage types pvestore can create, valued by their storage.cfg type."""
    DIR = "dir"
    LVM = "lvm"
    LVM_THIN = "lvmthin"
    NFS = "nfs"

    @classmethod
    def from_cli(cls, value: str) -> "Backend":
        aliases = {
            "dir": cls.DIR,
            "lvm": cls.LVM,
            "lvm-thin": cls.LVM_THIN,
            "lvmthin": cls.LVM_THIN,
            "nfs": cls.NFS,
        }
        try:
            return aliases[value.strip().lower()]
        except (KeyError, AttributeError):
            raise ConfigurationError(
                f"Unknown storage type '{value}' (expected dir, lvm, lvm-thin or nfs)"
            )

    @property
    def cli_name(self) -> str:
        return "lvm-thin" if self is Backend.LVM_THIN else self.value


@dataclass
class StorageUnit:
    """One block of /etc/pve/storage.cfg."""
    id: str
    type: str
    path: Optional[str] = None
    vgname: Optional[str] = None
    thinpool: Optional[str] = None
    server: Optional[str] = None
    export: Optional[str] = None
    nodes: List[str] = field(default_factory=list)
    shared: bool = False
    options: Dict[str, str] = field(default_factory=dict)

    @property
    def backend(self) -> Optional[Backend]:
        try:
            return Backend(self.type)
        except ValueError:
            return None

    def is_node_local(self, node: str) -> bool:
        """Not shared, and this node is in the unit's nodes list (an empty list never matches)."""
        return bool(self.nodes) and node in self.nodes and not self.shared

    @property
    def location(self) -> str:
        if self.type == Backend.NFS.value and self.server:
            return f"{self.server}:{self.export or ''}"
        if self.type == Backend.LVM_THIN.value and self.vgname:
            return f"{self.vgname}/{self.thinpool or ''}"
        return self.path or self.vgname or "-"


@dataclass
class ContentEntry:
    """A volume listed by 'pvesm list <storage>'."""
    volid: str
    format: str
    type: str
    size_bytes: int
    vmid: Optional[str] = None


@dataclass
class GuestReference:
    """A guest config line that points at a storage."""
    guest_type: str   # qemu or lxc
    vmid: str
    key: str          # scsi0, rootfs, mp0, ...
    value: str
