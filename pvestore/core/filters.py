"""--only filters: device paths or storage names."""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pvestore.core.config import Mode
from pvestore.core.errors import SafetyError
from pvestore.core.logger import get_logger
from pvestore.core.safety import SafetyGate
from pvestore.models.disk import Disk
from pvestore.models.label import NAME_FILTER_PATTERN
from pvestore.services.base import DiskInspector, StorageRegistry

logger = get_logger(__name__)


class FilterKind(Enum):
    DEVICE = "device"
    NAME = "name"


@dataclass(frozen=True)
class Filter:
    raw: str
    kind: FilterKind
    value: str


class FilterEngine:
    """Matches disks and registry units against the operator's --only values.

    A value shaped like a storage name (HDD-2A) matches the registry ID of the
    unit on a disk or the disk's partition label. Anything else is a device
    path, compared after normalization. No filters match everything.
    """

    def __init__(self, filters: Iterable[Filter] = ()):
        self.filters: Tuple[Filter, ...] = tuple(filters)

    @classmethod
    def from_values(cls, values: Iterable[str], inspector: DiskInspector) -> "FilterEngine":
        filters = []
        for raw in values:
            value = raw.strip()
            if NAME_FILTER_PATTERN.match(value):
                filters.append(Filter(raw, FilterKind.NAME, value))
            else:
                filters.append(Filter(raw, FilterKind.DEVICE, inspector.normalize_device(value)))
        return cls(filters)

    @property
    def active(self) -> bool:
        return bool(self.filters)

    @property
    def names(self) -> List[str]:
        return [f.value for f in self.filters if f.kind is FilterKind.NAME]

    @property
    def devices(self) -> List[str]:
        return [f.value for f in self.filters if f.kind is FilterKind.DEVICE]

    def matches(self, disk: Optional[Disk], registry_id: Optional[str] = None) -> bool:
        if not self.filters:
            return True
        for f in self.filters:
            if f.kind is FilterKind.NAME:
                if f.value == registry_id:
                    return True
                if disk and f.value in _disk_labels(disk):
                    return True
            elif disk and disk.device == f.value:
                return True
        return False

    def matches_name(self, storage_id: str) -> bool:
        return not self.filters or storage_id in self.names

    def validate(self, mode: Mode, registry: StorageRegistry, inspector: DiskInspector,
                 system_disk: str) -> None:
        """Refuse filters that cannot be honored, before anything is touched.

        Raises:
            SafetyError: For a system-disk device, a name that exists when
                provisioning, a name that does not exist when deprovisioning,
                or a device that fails validation
        """
        for name in self.names:
            exists = registry.exists(name)
            if mode is Mode.PROVISION and exists:
                raise SafetyError(
                    f"Cannot provision over existing storage '{name}'. "
                    f"Run: pvestore deprovision --only {name}"
                )
            if mode is Mode.DEPROVISION and not exists:
                raise SafetyError(f"Cannot deprovision non-existent storage '{name}'")

        for device in self.devices:
            SafetyGate.refuse_system_disk(device, system_disk)
            if inspector.parent_disk(device) == system_disk:
                raise SafetyError(
                    f"Filter device {device} is on the system disk {system_disk}. Refusing to operate."
                )
            inspector.validate_device(device)
        if self.filters:
            logger.info(f"Filters: {' '.join(f.raw for f in self.filters)}")


def _disk_labels(disk: Disk) -> List[str]:
    labels = []
    for part in disk.partitions:
        labels.extend(l for l in (part.partlabel, part.label) if l)
    return labels
