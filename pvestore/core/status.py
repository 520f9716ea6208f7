"""Read-only status and usage reports."""
from dataclasses import dataclass, field
from typing import List, Optional

from pvestore.core.config import RunConfig
from pvestore.core.errors import ConfigurationError
from pvestore.core.topology import StorageTopology
from pvestore.models.disk import UNKNOWN, Disk, DiskKind, SmartInfo
from pvestore.models.storage import ContentEntry, GuestReference, StorageUnit
from pvestore.services.base import HostServices


@dataclass
class DiskStatus:
    disk: Disk
    media: str
    storage: str
    system: bool = False
    smart: Optional[SmartInfo] = None


@dataclass
class UnitStatus:
    unit: StorageUnit
    devices: List[str]
    size: str
    location: str


@dataclass
class StatusReport:
    disks: List[DiskStatus] = field(default_factory=list)
    units: List[UnitStatus] = field(default_factory=list)


@dataclass
class UsageReport:
    unit: StorageUnit
    content: List[ContentEntry]
    guests: List[GuestReference]


def media_text(disk: Disk, smart: Optional[SmartInfo]) -> str:
    """SMART rotation rate when known, otherwise the classification."""
    if smart and smart.rotation != UNKNOWN:
        return smart.rotation
    if disk.kind is DiskKind.UNKNOWN:
        return UNKNOWN
    return disk.kind.value


class StatusReporter:
    def __init__(self, config: RunConfig, host: HostServices):
        self.config = config
        self.settings = config.settings
        self.host = host

    def build(self, extended: bool = False) -> StatusReport:
        inspector = self.host.inspector
        disks = inspector.list_disks(include_system=True)
        system_disk = inspector.resolve_system_disk()
        topology = StorageTopology(self.host, self.settings, disks)

        report = StatusReport()
        for disk in disks:
            smart = inspector.smart_info(disk.device)
            report.disks.append(DiskStatus(
                disk=disk,
                media=media_text(disk, smart),
                storage=topology.unit_for_disk(disk) or "-",
                system=disk.device == system_disk,
                smart=smart if extended else None,
            ))

        for unit in topology.units:
            if unit.id in self.settings.protected_storage:
                continue
            devices = sorted(topology.disks_for_unit(unit.id))
            backing = [topology.find_disk(d) for d in devices]
            size = ", ".join(d.size_human for d in backing if d) or "-"
            report.units.append(UnitStatus(unit, devices, size, unit.location))
        return report

    def usage(self, storage_id: str) -> UsageReport:
        """Content and guest references of one unit.

        Raises:
            ConfigurationError: If the unit does not exist
        """
        unit = self.host.registry.get(storage_id)
        if unit is None:
            raise ConfigurationError(f"Storage '{storage_id}' does not exist")
        return UsageReport(
            unit=unit,
            content=self.host.registry.list_content(storage_id),
            guests=self.host.registry.guest_references(storage_id),
        )
