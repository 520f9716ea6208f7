"""Plain ext4 directory storage."""
from typing import Optional

from pvestore.backends.base import ProvisionResult, StorageBackend
from pvestore.core.logger import get_logger
from pvestore.models.disk import Disk
from pvestore.models.label import StorageLabel
from pvestore.models.storage import Backend
from pvestore.parsers.fstab import FstabEntry

logger = get_logger(__name__)


class DirectoryBackend(StorageBackend):
    """ext4 partition mounted under the managed root, registered as 'dir'."""

    backend = Backend.DIR
    partition_type = "8300"

    def provision(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        partition = self.prepare_disk(disk, label)
        self.host.filesystem.format_ext4(partition, str(label), quick=self.config.quick_format)
        return self._attach(disk, label, partition, healed=False)

    def heal(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        part = disk.first_partition
        if part is None:
            raise self.missing(f"Healing {label}: no partition on {disk.device}", disk)
        return self._attach(disk, label, part.device, healed=True)

    def _attach(self, disk: Disk, label: StorageLabel, partition: str, healed: bool) -> ProvisionResult:
        uuid = self.host.filesystem.filesystem_uuid(partition)
        if not uuid:
            if not self.simulating:
                raise self.missing(f"Reading filesystem UUID of {partition}", disk)
            uuid = f"<uuid of {partition}>"

        path = str(self.settings.mount_path(str(label)))
        self.ensure_mounted(path, FstabEntry(
            source=f"UUID={uuid}",
            mountpoint=path,
            fstype="ext4",
            options=self.settings.fstab_options,
            dump="0",
            passno="2",
        ))
        registered = self.host.registry.add_filesystem_unit(str(label), path)
        return ProvisionResult(str(label), self.backend, path, healed=healed, registered=registered)
