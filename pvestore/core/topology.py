"""Which disks back which registry units."""
from typing import Dict, List, Optional, Set

from pvestore.core.config import StorageSettings
from pvestore.models.disk import Disk
from pvestore.models.storage import Backend, StorageUnit
from pvestore.services.base import HostServices


class StorageTopology:
    """Snapshot of disks, registry units and PVs with lookups between them."""

    def __init__(self, host: HostServices, settings: StorageSettings, disks: List[Disk]):
        self.host = host
        self.settings = settings
        self.disks = disks
        self.units = host.registry.units()
        self._pvs = host.volumes.list_physical_volumes()
        self._unit_disks: Dict[str, Set[str]] = {}
        for unit in self.units:
            self._unit_disks[unit.id] = self._resolve_unit(unit)

    def _disk_of(self, device: str) -> Optional[str]:
        for disk in self.disks:
            if disk.owns(device):
                return disk.device
        return self.host.inspector.parent_disk(device)

    def _resolve_unit(self, unit: StorageUnit) -> Set[str]:
        devices = {d.device for d in self.disks if d.current_label == unit.id}
        backend = unit.backend
        if backend in (Backend.LVM, Backend.LVM_THIN) and unit.vgname:
            for pv in self._pvs:
                if pv.vg_name == unit.vgname:
                    disk = self._disk_of(pv.device)
                    if disk:
                        devices.add(disk)
        elif unit.path and backend is not Backend.NFS:
            source = self.host.inspector.mount_source(unit.path)
            if source and source.startswith("/dev/"):
                disk = self._disk_of(source)
                if disk:
                    devices.add(disk)
        return devices

    def disks_for_unit(self, storage_id: str) -> Set[str]:
        return set(self._unit_disks.get(storage_id, set()))

    def unit_for_disk(self, disk: Disk) -> Optional[str]:
        for unit in self.units:
            if disk.device in self._unit_disks.get(unit.id, ()):
                return unit.id
        return None

    def find_disk(self, device: str) -> Optional[Disk]:
        for disk in self.disks:
            if disk.device == device:
                return disk
        return None
