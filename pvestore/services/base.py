"""Abstract host capabilities used by the provisioning and teardown engines.

The engines never run commands themselves. They talk to four capabilities:
DiskInspector (read-only disk discovery), VolumeManager (LVM, md and ZFS),
FilesystemFormatter (partitions, filesystems, mounts) and StorageRegistry
(the Proxmox storage configuration). Real implementations drive host
commands through a CommandRunner; tests substitute in-memory fakes.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from pvestore.models.disk import Disk, DiskKind, SmartInfo
from pvestore.models.storage import ContentEntry, GuestReference, StorageUnit
from pvestore.models.volume import (
    LogicalVolume,
    MdArray,
    PhysicalVolume,
    VolumeGroup,
    ZfsPool,
)
from pvestore.parsers.fstab import FstabEntry


class DiskInspector(ABC):
    """Read-only view of the host's block devices."""

    @abstractmethod
    def list_disks(self, include_system: bool = False) -> List[Disk]:
        """Return whole disks with partitions and media kind filled in.

        Args:
            include_system: Also return the disk holding the root filesystem
        """
        pass

    @abstractmethod
    def get_disk(self, device: str) -> Optional[Disk]:
        """Re-read a single disk, or None if it no longer exists."""
        pass

    @abstractmethod
    def classify(self, disk: Disk) -> DiskKind:
        pass

    @abstractmethod
    def smart_info(self, device: str) -> SmartInfo:
        pass

    @abstractmethod
    def resolve_system_disk(self) -> str:
        """Return the whole-disk device backing the root filesystem.

        Raises:
            ConfigurationError: If root cannot be traced to a disk
        """
        pass

    @abstractmethod
    def parent_disk(self, device: str) -> Optional[str]:
        """Walk up from a partition, LV or mapper device to its whole disk."""
        pass

    @abstractmethod
    def mount_source(self, path: str) -> Optional[str]:
        """Source device of the filesystem containing path."""
        pass

    @abstractmethod
    def normalize_device(self, value: str) -> str:
        pass

    @abstractmethod
    def validate_device(self, device: str) -> None:
        """Check a device named by the operator is a usable, healthy disk.

        Raises:
            SafetyError: If the device is missing, not a disk, read-only or unreadable
        """
        pass

    @abstractmethod
    def existing_labels(self) -> Set[str]:
        """Partition and filesystem labels present on any disk."""
        pass


class VolumeManager(ABC):
    """LVM plus the md and ZFS holders that can claim a disk."""

    @property
    @abstractmethod
    def simulating(self) -> bool:
        pass

    @abstractmethod
    def list_physical_volumes(self) -> List[PhysicalVolume]:
        pass

    @abstractmethod
    def list_volume_groups(self) -> List[VolumeGroup]:
        pass

    @abstractmethod
    def list_logical_volumes(self, vg_name: Optional[str] = None) -> List[LogicalVolume]:
        pass

    def volume_group_size(self, vg_name: str) -> Optional[int]:
        for vg in self.list_volume_groups():
            if vg.name == vg_name:
                return vg.size_bytes
        return None

    def volume_group_exists(self, vg_name: str) -> bool:
        return any(vg.name == vg_name for vg in self.list_volume_groups())

    @abstractmethod
    def create_physical_volume(self, device: str) -> None:
        pass

    @abstractmethod
    def create_volume_group(self, vg_name: str, device: str) -> None:
        pass

    @abstractmethod
    def create_thin_pool(self, vg_name: str, pool_name: str, size_bytes: int) -> None:
        pass

    @abstractmethod
    def remove_logical_volume(self, vg_name: str, lv_name: str) -> None:
        pass

    @abstractmethod
    def deactivate_volume_group(self, vg_name: str) -> None:
        pass

    @abstractmethod
    def remove_volume_group(self, vg_name: str) -> None:
        pass

    @abstractmethod
    def remove_physical_volume(self, device: str) -> None:
        pass

    @abstractmethod
    def rename_volume_group(self, old_name: str, new_name: str) -> None:
        pass

    @abstractmethod
    def rename_logical_volume(self, vg_name: str, old_name: str, new_name: str) -> None:
        pass

    @abstractmethod
    def extend_logical_volume(self, lv_path: str) -> None:
        """Grow an LV into all free extents of its group."""
        pass

    @abstractmethod
    def list_md_arrays(self) -> List[MdArray]:
        pass

    @abstractmethod
    def stop_md_array(self, array: MdArray) -> None:
        pass

    @abstractmethod
    def zero_md_superblock(self, device: str) -> None:
        pass

    @abstractmethod
    def list_zfs_pools(self) -> List[ZfsPool]:
        pass

    @abstractmethod
    def destroy_zfs_pool(self, pool_name: str) -> None:
        pass


class FilesystemFormatter(ABC):
    """Partition tables, ext4 filesystems, mount points and the mount table."""

    @property
    @abstractmethod
    def simulating(self) -> bool:
        pass

    # Partition table

    @abstractmethod
    def wipe_signatures(self, device: str) -> None:
        pass

    @abstractmethod
    def zap_partition_table(self, device: str) -> None:
        pass

    @abstractmethod
    def create_partition(self, device: str, label: str, type_code: str) -> None:
        """Create one partition spanning the disk with a GPT name."""
        pass

    @abstractmethod
    def refresh_partitions(self, device: str) -> None:
        """Ask the kernel to re-read the partition table (best effort)."""
        pass

    @abstractmethod
    def remove_partition_mappings(self, device: str) -> None:
        """Drop stale kernel partition mappings (best effort)."""
        pass

    @abstractmethod
    def settle(self) -> None:
        """Wait for udev to finish processing events (best effort)."""
        pass

    @abstractmethod
    def wait_for_partition(self, device: str) -> str:
        """Return the first partition of device once the kernel shows it.

        Raises:
            StepError: If no partition appears
        """
        pass

    @abstractmethod
    def set_partition_name(self, device: str, label: str) -> None:
        pass

    # Filesystems

    @abstractmethod
    def format_ext4(self, partition: str, label: str, quick: bool = True) -> None:
        pass

    @abstractmethod
    def filesystem_uuid(self, partition: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_filesystem_label(self, partition: str, label: str) -> None:
        pass

    @abstractmethod
    def grow_filesystem(self, device: str) -> None:
        pass

    # Mounts

    @abstractmethod
    def is_mounted(self, path: str) -> bool:
        pass

    @abstractmethod
    def mount(self, path: str) -> None:
        """Mount path using its mount table entry."""
        pass

    @abstractmethod
    def unmount(self, path: str) -> None:
        pass

    @abstractmethod
    def ensure_mount_dir(self, path: str) -> None:
        pass

    @abstractmethod
    def remove_mount_dir(self, path: str) -> None:
        """Remove a mount point directory below the managed root.

        Raises:
            SafetyError: If path is outside the managed root
        """
        pass

    @abstractmethod
    def move_mount_dir(self, old_path: str, new_path: str) -> None:
        pass

    @abstractmethod
    def leftover_mount_dirs(self) -> List[str]:
        """Directories currently present below the managed root."""
        pass

    # Mount table

    @abstractmethod
    def mount_entries(self) -> List[FstabEntry]:
        pass

    @abstractmethod
    def check_mount_table_writable(self) -> None:
        """Raises ConfigurationError if the mount table cannot be written."""
        pass

    @abstractmethod
    def ensure_mount_entry(self, entry: FstabEntry) -> bool:
        """Add entry unless an identical source/mountpoint pair exists.

        Stale entries for the same mount point are replaced.

        Returns:
            True if the mount table changed
        """
        pass

    @abstractmethod
    def remove_mount_entries(self, mountpoint: str) -> int:
        """Remove entries for one mount point; returns how many were removed."""
        pass

    @abstractmethod
    def remove_mount_entries_under_root(self, keep: Iterable[str] = ()) -> int:
        """Remove every entry whose mount point is below the managed root, except keep."""
        pass

    # Network

    @abstractmethod
    def check_nfs_export(self, server: str, export: str) -> Optional[bool]:
        """True/False if the server answered, None if it could not be asked."""
        pass


class StorageRegistry(ABC):
    """The Proxmox storage registry of this node."""

    @abstractmethod
    def units(self) -> List[StorageUnit]:
        pass

    def get(self, storage_id: str) -> Optional[StorageUnit]:
        for unit in self.units():
            if unit.id == storage_id:
                return unit
        return None

    def exists(self, storage_id: str) -> bool:
        return self.get(storage_id) is not None

    @abstractmethod
    def add_filesystem_unit(self, storage_id: str, path: str) -> bool:
        """Register directory storage; returns False if it already exists."""
        pass

    @abstractmethod
    def add_thick_volume_unit(self, storage_id: str, vg_name: str) -> bool:
        pass

    @abstractmethod
    def add_thin_volume_unit(self, storage_id: str, vg_name: str, pool_name: str) -> bool:
        pass

    @abstractmethod
    def add_network_unit(
        self,
        storage_id: str,
        server: str,
        export: str,
        path: str,
        options: Optional[str] = None,
    ) -> bool:
        pass

    @abstractmethod
    def remove(self, storage_id: str) -> None:
        pass

    @abstractmethod
    def rename(self, old_id: str, new_id: str, updates: Optional[dict] = None) -> None:
        """Rename a unit in place, keeping a backup of the registry file."""
        pass

    @abstractmethod
    def list_content(self, storage_id: str) -> List[ContentEntry]:
        pass

    @abstractmethod
    def guest_references(self, storage_id: str) -> List[GuestReference]:
        pass


@dataclass
class HostServices:
    """The four capabilities an engine needs, bundled for injection."""
    inspector: DiskInspector
    volumes: VolumeManager
    filesystem: FilesystemFormatter
    registry: StorageRegistry
