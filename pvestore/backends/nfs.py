"""NFS storage mounted under the managed root."""
from typing import Optional

from pvestore.backends.base import ProvisionResult, StorageBackend
from pvestore.core.logger import get_logger
from pvestore.models.disk import Disk
from pvestore.models.label import StorageLabel
from pvestore.models.storage import Backend
from pvestore.parsers.fstab import FstabEntry

logger = get_logger(__name__)


class NetworkBackend(StorageBackend):
    """No local disk; a server:export pair mounted and registered as 'nfs'."""

    backend = Backend.NFS

    def provision(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        self.check_export()
        return self._attach(label, healed=False)

    def heal(self, disk: Optional[Disk], label: StorageLabel) -> ProvisionResult:
        return self._attach(label, healed=True)

    def check_export(self) -> None:
        if self.config.skip_nfs_check:
            logger.info("Skipping NFS export check")
            return
        server, export = self.config.nfs_server, self.config.nfs_export
        visible = self.host.filesystem.check_nfs_export(server, export)
        if visible is False:
            logger.warning(f"Export {export} is not listed by {server}; continuing")
        elif visible:
            logger.info(f"Export {server}:{export} is visible")

    def mount_options(self) -> str:
        extra = self.settings.nfs_fstab_options
        return f"{self.config.nfs_options},{extra}" if self.config.nfs_options else extra

    def _attach(self, label: StorageLabel, healed: bool) -> ProvisionResult:
        server, export = self.config.nfs_server, self.config.nfs_export
        path = str(self.settings.mount_path(str(label)))
        self.ensure_mounted(path, FstabEntry(
            source=f"{server}:{export}",
            mountpoint=path,
            fstype="nfs",
            options=self.mount_options(),
        ))
        registered = self.host.registry.add_network_unit(
            str(label), server, export, path, self.config.nfs_options
        )
        return ProvisionResult(str(label), self.backend, f"{server}:{export}",
                               healed=healed, registered=registered)
