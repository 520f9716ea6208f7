"""Proxmox VE integration."""
from pvestore.services.proxmox.storage import PveStorageRegistry

__all__ = ["PveStorageRegistry"]
