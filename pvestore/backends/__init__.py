"""Storage backends, keyed by the storage.cfg type they register."""
from typing import Dict, Type

from pvestore.backends.base import ProvisionResult, StorageBackend
from pvestore.backends.directory import DirectoryBackend
from pvestore.backends.lvm import ThickVolumeBackend
from pvestore.backends.lvm_thin import ThinVolumeBackend, thin_pool_size
from pvestore.backends.nfs import NetworkBackend
from pvestore.core.config import RunConfig
from pvestore.models.storage import Backend
from pvestore.services.base import HostServices

BACKENDS: Dict[Backend, Type[StorageBackend]] = {
    Backend.DIR: DirectoryBackend,
    Backend.LVM: ThickVolumeBackend,
    Backend.LVM_THIN: ThinVolumeBackend,
    Backend.NFS: NetworkBackend,
}


def get_backend(backend: Backend, host: HostServices, config: RunConfig) -> StorageBackend:
    return BACKENDS[backend](host, config)


__all__ = [
    "BACKENDS",
    "DirectoryBackend",
    "NetworkBackend",
    "ProvisionResult",
    "StorageBackend",
    "ThickVolumeBackend",
    "ThinVolumeBackend",
    "get_backend",
    "thin_pool_size",
]
