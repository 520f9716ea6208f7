"""Host capability interfaces and their command-driven implementations."""
from pvestore.services.base import (
    DiskInspector,
    FilesystemFormatter,
    HostServices,
    StorageRegistry,
    VolumeManager,
)

__all__ = [
    "DiskInspector",
    "FilesystemFormatter",
    "HostServices",
    "StorageRegistry",
    "VolumeManager",
]
