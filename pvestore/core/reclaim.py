"""Give the installer's thin pool space back to the root filesystem."""
from dataclasses import dataclass, field
from typing import List

from pvestore.core.config import RunConfig
from pvestore.core.logger import get_logger
from pvestore.services.base import HostServices

logger = get_logger(__name__)

# Below this, free extents are rounding noise rather than reclaimable space
MIN_FREE_BYTES = 1024 * 1024


@dataclass
class ReclaimReport:
    removed_storage: bool = False
    removed_volumes: List[str] = field(default_factory=list)
    extended_root: bool = False


class SystemDiskReclaimer:
    """Removes local-lvm and pve/data, then grows pve/root into the free space.

    Every step checks current state first, so a second run only logs that
    the work is already done.
    """

    def __init__(self, config: RunConfig, host: HostServices):
        self.config = config
        self.settings = config.settings
        self.host = host

    def pending(self) -> bool:
        """True while the installer storage or its thin pool volumes still exist."""
        if self.host.registry.exists(self.settings.default_thin_storage):
            return True
        pool = self.settings.default_thin_pool
        present = {lv.name for lv in self.host.volumes.list_logical_volumes(self.settings.system_vg)}
        return bool(present & {pool, f"{pool}_tmeta", f"{pool}_tdata"})

    def run(self) -> ReclaimReport:
        report = ReclaimReport()
        storage_id = self.settings.default_thin_storage
        vg = self.settings.system_vg
        pool = self.settings.default_thin_pool

        if self.host.registry.exists(storage_id):
            self.host.registry.remove(storage_id)
            report.removed_storage = True
        else:
            logger.info(f"Storage '{storage_id}' not present (already removed)")

        for lv_name in (pool, f"{pool}_tmeta", f"{pool}_tdata"):
            present = {lv.name: lv for lv in self.host.volumes.list_logical_volumes(vg)}
            if lv_name in present:
                self.host.volumes.remove_logical_volume(vg, lv_name)
                report.removed_volumes.append(present[lv_name].full_name)
            else:
                logger.info(f"Logical volume {vg}/{lv_name} not present (already removed)")

        groups = {g.name: g for g in self.host.volumes.list_volume_groups()}
        if vg not in groups:
            logger.info(f"Volume group {vg} not present; nothing to extend")
            return report
        if groups[vg].free_bytes > MIN_FREE_BYTES or (self.config.whatif and report.removed_volumes):
            self.host.volumes.extend_logical_volume(self.settings.root_lv)
            self.host.filesystem.grow_filesystem(self.settings.root_lv)
            report.extended_root = True
        else:
            logger.info(f"{self.settings.root_lv} already uses all space in {vg}")
        return report
