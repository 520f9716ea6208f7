"""Proxmox storage registry: pvesm for mutations, storage.cfg for reads."""
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pvestore.core.config import StorageSettings
from pvestore.core.errors import ConfigurationError, ParseError, StepError
from pvestore.core.logger import get_logger
from pvestore.core.runner import CommandRunner
from pvestore.models.storage import Backend, ContentEntry, GuestReference, StorageUnit
from pvestore.parsers.pvesm import parse_pvesm_list
from pvestore.parsers.storage_cfg import parse_storage_cfg, rename_storage_block
from pvestore.services.base import StorageRegistry

logger = get_logger(__name__)

GUEST_CONFIG_DIRS = {"qemu": "qemu-server", "lxc": "lxc"}

_CONFIG_LINE = re.compile(r"^([A-Za-z0-9_]+):\s*(.+)$")


class PveStorageRegistry(StorageRegistry):
    """Manages Proxmox storage configuration for one node."""

    def __init__(self, runner: CommandRunner, settings: StorageSettings, node: str):
        self.runner = runner
        self.settings = settings
        self.node = node
        self.storage_cfg_path = settings.storage_cfg_path

    def _read_cfg(self) -> str:
        if not self.storage_cfg_path.exists():
            logger.warning(f"Storage config not found: {self.storage_cfg_path}")
            return ""
        try:
            return self.storage_cfg_path.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self.storage_cfg_path}: {e}")

    def units(self) -> List[StorageUnit]:
        return parse_storage_cfg(self._read_cfg())

    def _add(self, storage_id: str, storage_type: Backend, description: str, args: List[str]) -> bool:
        if self.exists(storage_id):
            logger.info(f"Proxmox storage '{storage_id}' already present")
            return False
        self.runner.run(
            description,
            ["pvesm", "add", storage_type.value, storage_id] + args,
            remedy=f"pvesm add {storage_type.value} {storage_id} " + " ".join(args),
        )
        return True

    def add_filesystem_unit(self, storage_id: str, path: str) -> bool:
        return self._add(storage_id, Backend.DIR, f"Adding Proxmox storage '{storage_id}' at {path}", [
            "--path", path,
            "--content", self.settings.dir_content,
            "--is_mountpoint", "1",
            "--nodes", self.node,
            "--shared", "0",
        ])

    def add_thick_volume_unit(self, storage_id: str, vg_name: str) -> bool:
        return self._add(storage_id, Backend.LVM, f"Adding Proxmox LVM storage '{storage_id}' (VG {vg_name})", [
            "--vgname", vg_name,
            "--content", self.settings.volume_content,
            "--nodes", self.node,
            "--shared", "0",
        ])

    def add_thin_volume_unit(self, storage_id: str, vg_name: str, pool_name: str) -> bool:
        return self._add(
            storage_id, Backend.LVM_THIN,
            f"Adding Proxmox LVM-thin storage '{storage_id}' ({vg_name}/{pool_name})",
            [
                "--vgname", vg_name,
                "--thinpool", pool_name,
                "--content", self.settings.volume_content,
                "--nodes", self.node,
            ],
        )

    def add_network_unit(self, storage_id: str, server: str, export: str, path: str,
                         options: Optional[str] = None) -> bool:
        args = [
            "--server", server,
            "--export", export,
            "--path", path,
            "--content", self.settings.nfs_content,
            "--nodes", self.node,
        ]
        if options:
            args += ["--options", options]
        return self._add(storage_id, Backend.NFS,
                         f"Adding Proxmox NFS storage '{storage_id}' ({server}:{export})", args)

    def remove(self, storage_id: str) -> None:
        self.runner.run(f"Removing Proxmox storage '{storage_id}'", ["pvesm", "remove", storage_id])

    def rename(self, old_id: str, new_id: str, updates: Optional[Dict[str, str]] = None) -> None:
        """Rewrite one block header in storage.cfg after writing a timestamped backup.

        Raises:
            ConfigurationError: If old_id is absent or new_id already exists
        """
        text = self._read_cfg()
        ids = {unit.id for unit in parse_storage_cfg(text)}
        if old_id not in ids:
            raise ConfigurationError(f"Cannot rename non-existent storage '{old_id}'")
        if new_id in ids:
            raise ConfigurationError(f"Storage '{new_id}' already exists")
        try:
            renamed = rename_storage_block(text, old_id, new_id, updates)
        except ParseError as e:
            raise ConfigurationError(str(e))

        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup = self.storage_cfg_path.with_name(f"{self.storage_cfg_path.name}.bak-{stamp}")
        self.runner.apply(f"Backing up {self.storage_cfg_path} to {backup}",
                          lambda: backup.write_text(text))
        self.runner.apply(f"Renaming storage '{old_id}' to '{new_id}' in {self.storage_cfg_path}",
                          lambda: self.storage_cfg_path.write_text(renamed))

    def list_content(self, storage_id: str) -> List[ContentEntry]:
        argv = ["pvesm", "list", storage_id]
        output = self.runner.query(argv)
        if not output.ok:
            raise StepError(f"Listing content of storage '{storage_id}'", argv,
                            output.returncode, output.stderr)
        return parse_pvesm_list(output.stdout)

    def guest_references(self, storage_id: str) -> List[GuestReference]:
        """Guest config lines whose value references '<storage_id>:'."""
        needle = re.compile(rf"(^|[,=\s]){re.escape(storage_id)}:")
        references = []
        for guest_type, subdir in GUEST_CONFIG_DIRS.items():
            config_dir = Path(self.settings.pve_dir) / subdir
            if not config_dir.is_dir():
                continue
            for conf in sorted(config_dir.glob("*.conf")):
                try:
                    lines = conf.read_text().splitlines()
                except OSError as e:
                    logger.warning(f"Cannot read {conf}: {e}")
                    continue
                for line in lines:
                    if line.startswith("["):
                        # snapshot sections repeat the disk lines
                        break
                    match = _CONFIG_LINE.match(line.strip())
                    if match and needle.search(match.group(2)):
                        references.append(GuestReference(guest_type, conf.stem, match.group(1),
                                                          match.group(2)))
        return references
