"""Thick LVM storage: one volume group per disk."""
from typing import Optional

from pvestore.backends.base import ProvisionResult, StorageBackend
from pvestore.models.disk import Disk
from pvestore.models.label import StorageLabel
from pvestore.models.storage import Backend


class ThickVolumeBackend(StorageBackend):
    """Volume group named after the label; Proxmox allocates LVs on demand."""

    backend = Backend.LVM
    partition_type = "8E00"

    def create_volume_group(self, disk: Disk, label: StorageLabel) -> None:
        partition = self.prepare_disk(disk, label)
        self.host.volumes.create_physical_volume(partition)
        self.host.volumes.create_volume_group(str(label), partition)

    def provision(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        self.create_volume_group(disk, label)
        return self._register(label, healed=False)

    def heal(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        self.require_volume_group(disk, label)
        return self._register(label, healed=True)

    def require_volume_group(self, disk: Optional[Disk], label: StorageLabel) -> None:
        if not self.host.volumes.volume_group_exists(str(label)):
            raise self.missing(f"Healing {label}: volume group {label} not found", disk)

    def _register(self, label: StorageLabel, healed: bool) -> ProvisionResult:
        registered = self.host.registry.add_thick_volume_unit(str(label), str(label))
        return ProvisionResult(str(label), self.backend, str(label), healed=healed, registered=registered)
