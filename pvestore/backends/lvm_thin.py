"""LVM-thin storage: volume group plus a thin pool sized from it."""
from typing import Optional

from pvestore.backends.base import ProvisionResult
from pvestore.backends.lvm import ThickVolumeBackend
from pvestore.core.errors import ThinPoolTooSmallError
from pvestore.core.logger import get_logger
from pvestore.models.disk import Disk
from pvestore.models.label import StorageLabel
from pvestore.models.storage import Backend

logger = get_logger(__name__)


def thin_pool_size(vg_name: str, vg_size_bytes: int, percent: int, minimum_bytes: int) -> int:
    """Bytes to give the thin pool.

    Raises:
        ThinPoolTooSmallError: If the volume group is below minimum_bytes
    """
    if vg_size_bytes < minimum_bytes:
        raise ThinPoolTooSmallError(vg_name, vg_size_bytes, minimum_bytes)
    return vg_size_bytes * percent // 100


class ThinVolumeBackend(ThickVolumeBackend):
    backend = Backend.LVM_THIN

    def provision(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        self.create_volume_group(disk, label)
        self.create_pool(disk, label)
        return self._register_thin(label, healed=False)

    def heal(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        self.require_volume_group(disk, label)
        pools = {lv.name for lv in self.host.volumes.list_logical_volumes(str(label)) if lv.is_thin_pool}
        if label.thin_pool_name not in pools:
            logger.warning(f"Thin pool {label}/{label.thin_pool_name} missing; creating it")
            self.create_pool(disk, label)
        return self._register_thin(label, healed=True)

    def create_pool(self, disk: Optional[Disk], label: StorageLabel) -> None:
        vg_name = str(label)
        size = self.host.volumes.volume_group_size(vg_name)
        if size is None:
            if not self.simulating or disk is None:
                raise self.missing(f"Reading size of volume group {vg_name}", disk)
            # the VG only exists on paper in simulation
            size = disk.size_bytes
        pool_bytes = thin_pool_size(vg_name, size, self.settings.thin_pool_percent,
                                    self.settings.thin_pool_min_vg_bytes)
        self.host.volumes.create_thin_pool(vg_name, label.thin_pool_name, pool_bytes)

    def _register_thin(self, label: StorageLabel, healed: bool) -> ProvisionResult:
        registered = self.host.registry.add_thin_volume_unit(str(label), str(label), label.thin_pool_name)
        return ProvisionResult(str(label), self.backend, f"{label}/{label.thin_pool_name}",
                               healed=healed, registered=registered)
