"""Data models for pvestore."""
from pvestore.models.disk import Disk, DiskKind, Partition, SmartInfo
from pvestore.models.label import LabelKind, StorageLabel
from pvestore.models.storage import Backend, ContentEntry, GuestReference, StorageUnit
from pvestore.models.volume import LogicalVolume, MdArray, PhysicalVolume, VolumeGroup, ZfsPool

__all__ = [
    'Backend',
    'ContentEntry',
    'Disk',
    'DiskKind',
    'GuestReference',
    'LabelKind',
    'LogicalVolume',
    'MdArray',
    'Partition',
    'PhysicalVolume',
    'SmartInfo',
    'StorageLabel',
    'StorageUnit',
    'VolumeGroup',
    'ZfsPool',
]
