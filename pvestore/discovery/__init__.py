"""Host discovery: block devices, media kind and health."""
from pvestore.discovery.inspector import HostDiskInspector

__all__ = ["HostDiskInspector"]
