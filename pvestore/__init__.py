"""pvestore - node-local storage provisioning for Proxmox VE hosts."""

__version__ = "0.4.0"
