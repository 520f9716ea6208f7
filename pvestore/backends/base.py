"""Abstract base class for storage backends."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from pvestore.core.config import RunConfig
from pvestore.core.errors import StepError
from pvestore.core.logger import get_logger
from pvestore.models.disk import Disk
from pvestore.models.label import StorageLabel
from pvestore.models.storage import Backend
from pvestore.parsers.fstab import FstabEntry
from pvestore.services.base import HostServices

logger = get_logger(__name__)


@dataclass
class ProvisionResult:
    """What a backend left behind for one storage unit."""
    storage_id: str
    backend: Backend
    location: str
    healed: bool = False
    registered: bool = False   # registry entry was added by this run


class StorageBackend(ABC):
    """Turns a disk (or remote export) into a mounted, registered storage unit."""

    backend: Backend
    partition_type: Optional[str] = None

    def __init__(self, host: HostServices, config: RunConfig):
        self.host = host
        self.config = config
        self.settings = config.settings

    @property
    def simulating(self) -> bool:
        return self.config.whatif

    @abstractmethod
    def provision(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        """Build the unit from scratch. The disk has already been released.

        Raises:
            StepError: On the first failing step
        """
        pass

    @abstractmethod
    def heal(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        """Bring mounts and registry in line without touching data.

        Raises:
            StepError: If the on-disk structure needed for healing is missing
        """
        pass

    def prepare_disk(self, disk: Disk, label: StorageLabel) -> str:
        """Wipe, repartition and return the new partition device."""
        fs = self.host.filesystem
        fs.wipe_signatures(disk.device)
        fs.zap_partition_table(disk.device)
        fs.create_partition(disk.device, str(label), self.partition_type)
        fs.refresh_partitions(disk.device)
        fs.settle()
        return fs.wait_for_partition(disk.device)

    def ensure_mounted(self, path: str, entry: FstabEntry) -> None:
        """Mount directory, mount table entry and live mount, each only if missing."""
        fs = self.host.filesystem
        fs.ensure_mount_dir(path)
        fs.check_mount_table_writable()
        fs.ensure_mount_entry(entry)
        if fs.is_mounted(path):
            logger.info(f"{path} already mounted")
        else:
            fs.mount(path)

    def remedy(self, disk: Optional[Disk]) -> Optional[str]:
        if disk is None:
            return None
        return f"pvestore provision --type {self.backend.cli_name} --only {disk.device}"

    def missing(self, what: str, disk: Optional[Disk]) -> StepError:
        return StepError(what, remedy=self.remedy(disk))
