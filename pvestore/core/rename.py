"""Rename a storage unit together with its on-disk identity."""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from pvestore.core.config import RunConfig
from pvestore.core.errors import ConfigurationError, SafetyError
from pvestore.core.labels import existing_names
from pvestore.core.logger import get_logger
from pvestore.core.topology import StorageTopology
from pvestore.models.disk import Disk
from pvestore.models.label import StorageLabel
from pvestore.models.storage import Backend, GuestReference, StorageUnit
from pvestore.parsers.fstab import FstabEntry
from pvestore.services.base import HostServices

logger = get_logger(__name__)


def parse_rename_request(value: str) -> Tuple[str, str]:
    """Split 'OLD:NEW'.

    Raises:
        ConfigurationError: If either side is missing
    """
    old, sep, new = (value or "").partition(":")
    old, new = old.strip(), new.strip()
    if not sep or not old or not new:
        raise ConfigurationError(f"Rename expects OLD:NEW (e.g. HDD-2A:HDD-2C), got '{value}'")
    if old == new:
        raise ConfigurationError(f"Old and new names are both '{old}'")
    return old, new


@dataclass
class RenamePlan:
    unit: StorageUnit
    new_id: str
    disks: List[Disk] = field(default_factory=list)
    guests: List[GuestReference] = field(default_factory=list)


class RenameEngine:
    """Renames registry unit, partition name, filesystem label, VG and mount point."""

    def __init__(self, config: RunConfig, host: HostServices, system_disk: str):
        self.config = config
        self.settings = config.settings
        self.host = host
        self.system_disk = system_disk

    def plan(self, old_id: str, new_id: str) -> RenamePlan:
        """Check the request and gather what the rename will touch.

        Raises:
            ConfigurationError: Unknown old name, taken or malformed new name
            SafetyError: If the unit is shared, foreign or on the system disk
        """
        unit = self.host.registry.get(old_id)
        if unit is None:
            raise ConfigurationError(f"Cannot rename non-existent storage '{old_id}'")
        if self.host.registry.exists(new_id):
            raise ConfigurationError(f"Storage '{new_id}' already exists")
        try:
            new_label = StorageLabel.parse(new_id)
        except ValueError as e:
            raise ConfigurationError(str(e))
        if StorageLabel.is_label(old_id):
            old_label = StorageLabel.parse(old_id)
            if not new_label.matches(old_label.kind, old_label.node_digit):
                raise ConfigurationError(
                    f"'{new_id}' must keep the kind and node of '{old_id}' "
                    f"({old_label.kind.value}-{old_label.node_digit}X)"
                )
        if new_id in existing_names(self.host):
            raise ConfigurationError(f"Name '{new_id}' is already used by a disk label or volume group")
        if unit.id in self.settings.protected_storage:
            raise SafetyError(f"Storage '{old_id}' is protected")
        if not unit.is_node_local(self.config.node_name):
            raise SafetyError(f"Storage '{old_id}' is shared or not assigned to {self.config.node_name}")

        topology = StorageTopology(self.host, self.settings,
                                   self.host.inspector.list_disks(include_system=True))
        devices = topology.disks_for_unit(old_id)
        if self.system_disk in devices:
            raise SafetyError(f"Storage '{old_id}' lives on the system disk. Refusing to rename.")
        disks = [d for d in (topology.find_disk(dev) for dev in sorted(devices)) if d]
        return RenamePlan(unit, new_id, disks, self.host.registry.guest_references(old_id))

    def run(self, plan: RenamePlan) -> None:
        unit, new_id = plan.unit, plan.new_id
        if plan.guests:
            logger.warning(
                f"{len(plan.guests)} guest config line(s) reference '{unit.id}:' and must be "
                f"updated to '{new_id}:' by hand"
            )
        backend = unit.backend
        if backend is Backend.DIR:
            self._rename_directory(plan)
        elif backend in (Backend.LVM, Backend.LVM_THIN):
            self._rename_volume_group(plan)
        elif backend is Backend.NFS:
            self._rename_mount_only(plan)
        else:
            self.host.registry.rename(unit.id, new_id)
        logger.info(f"Renamed storage '{unit.id}' to '{new_id}'")

    def _relabel_partitions(self, plan: RenamePlan, filesystem: bool) -> None:
        fs = self.host.filesystem
        for disk in plan.disks:
            part = disk.first_partition
            if part is None or part.name_label != plan.unit.id:
                continue
            fs.set_partition_name(disk.device, plan.new_id)
            if filesystem:
                fs.set_filesystem_label(part.device, plan.new_id)

    def _move_mount(self, old_path: str, new_path: str) -> None:
        fs = self.host.filesystem
        entries = [e for e in fs.mount_entries() if e.mountpoint == old_path]
        fs.check_mount_table_writable()
        if fs.is_mounted(old_path):
            fs.unmount(old_path)
        fs.move_mount_dir(old_path, new_path)
        for entry in entries:
            fs.ensure_mount_entry(FstabEntry(entry.source, new_path, entry.fstype,
                                             entry.options, entry.dump, entry.passno))
        fs.remove_mount_entries(old_path)

    def _new_path(self, unit: StorageUnit, new_id: str) -> Optional[str]:
        if unit.path and self.settings.is_managed_path(unit.path):
            return str(self.settings.mount_path(new_id))
        return unit.path

    def _rename_directory(self, plan: RenamePlan) -> None:
        unit = plan.unit
        new_path = self._new_path(unit, plan.new_id)
        if unit.path and new_path != unit.path:
            self._move_mount(unit.path, new_path)
        self._relabel_partitions(plan, filesystem=True)
        self.host.registry.rename(unit.id, plan.new_id, {"path": new_path} if new_path else None)
        if new_path and new_path != unit.path:
            self.host.filesystem.mount(new_path)

    def _rename_volume_group(self, plan: RenamePlan) -> None:
        unit = plan.unit
        updates = {}
        if unit.vgname == unit.id:
            self.host.volumes.rename_volume_group(unit.id, plan.new_id)
            updates["vgname"] = plan.new_id
            # The pool name carries the letter; detection looks for the new one
            pool = StorageLabel.parse(plan.new_id).thin_pool_name
            if unit.backend is Backend.LVM_THIN and unit.thinpool and unit.thinpool != pool:
                self.host.volumes.rename_logical_volume(plan.new_id, unit.thinpool, pool)
                updates["thinpool"] = pool
        self._relabel_partitions(plan, filesystem=False)
        self.host.registry.rename(unit.id, plan.new_id, updates)

    def _rename_mount_only(self, plan: RenamePlan) -> None:
        unit = plan.unit
        new_path = self._new_path(unit, plan.new_id)
        if unit.path and new_path != unit.path:
            self._move_mount(unit.path, new_path)
        self.host.registry.rename(unit.id, plan.new_id, {"path": new_path} if new_path else None)
        if new_path and new_path != unit.path:
            self.host.filesystem.mount(new_path)
