"""Deprovisioning: registry units, holder structures, then raw disks.

Order per run:
1. remove node-local registry units with their mounts and mount table lines
2. dismantle volume groups, md arrays and ZFS pools whose members all sit
   on targeted, non-system disks; a structure that also spans an untargeted
   disk is reported and left intact
3. wipe every targeted disk that has no mount outside the managed root
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pvestore.core.config import RunConfig
from pvestore.core.filters import FilterEngine
from pvestore.core.logger import get_logger
from pvestore.core.topology import StorageTopology
from pvestore.models.disk import Disk
from pvestore.models.storage import StorageUnit
from pvestore.services.base import HostServices

logger = get_logger(__name__)


@dataclass
class TeardownPlan:
    units: List[StorageUnit] = field(default_factory=list)
    skipped_units: List[Tuple[str, str]] = field(default_factory=list)
    wipe: List[Disk] = field(default_factory=list)
    keep: List[Tuple[Disk, str]] = field(default_factory=list)


@dataclass
class TeardownReport:
    removed_units: List[str] = field(default_factory=list)
    removed_structures: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    wiped_disks: List[str] = field(default_factory=list)
    skipped_disks: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class TeardownEngine:
    """Tears managed storage back down to raw disks."""

    def __init__(self, config: RunConfig, host: HostServices, system_disk: str,
                 filters: Optional[FilterEngine] = None):
        self.config = config
        self.settings = config.settings
        self.host = host
        self.system_disk = system_disk
        self.filters = filters or FilterEngine()
        self._topology: Optional[StorageTopology] = None
        self._plan: Optional[TeardownPlan] = None
        # targeted disks that belong to a structure left intact, never wiped
        self._held: Dict[str, str] = {}

    @property
    def topology(self) -> StorageTopology:
        if self._topology is None:
            disks = [d for d in self.host.inspector.list_disks() if d.device != self.system_disk]
            self._topology = StorageTopology(self.host, self.settings, disks)
        return self._topology

    # -----------------------------
    #  Planning
    # -----------------------------
    def _unit_selected(self, unit: StorageUnit) -> bool:
        if not self.filters.active:
            return True
        if self.filters.matches_name(unit.id):
            return True
        return any(
            self.filters.matches(self.topology.find_disk(d), unit.id)
            for d in self.topology.disks_for_unit(unit.id)
            if self.topology.find_disk(d)
        )

    def _unit_skip_reason(self, unit: StorageUnit, targets: Set[str]) -> Optional[str]:
        if unit.id in self.settings.protected_storage:
            return "protected"
        if unit.shared:
            return "shared"
        if not unit.is_node_local(self.config.node_name):
            return f"not assigned to {self.config.node_name}"
        backing = self.topology.disks_for_unit(unit.id)
        if self.system_disk in backing:
            return "on system disk"
        untargeted = sorted(backing - targets)
        if untargeted:
            return f"spans untargeted disk(s) {', '.join(untargeted)}"
        return None

    def plan(self) -> TeardownPlan:
        if self._plan is not None:
            return self._plan
        plan = TeardownPlan()
        for disk in self.topology.disks:
            if not self.filters.matches(disk, self.topology.unit_for_disk(disk)):
                continue
            outside = self._mounts_outside_root(disk)
            if outside:
                plan.keep.append((disk, f"mounted at {', '.join(outside)}"))
            else:
                plan.wipe.append(disk)

        targets = {d.device for d in plan.wipe} | {d.device for d, _ in plan.keep}
        for unit in self.topology.units:
            if not self._unit_selected(unit):
                continue
            reason = self._unit_skip_reason(unit, targets)
            if reason:
                logger.info(f"Skipping storage '{unit.id}' ({reason})")
                plan.skipped_units.append((unit.id, reason))
                self._keep_backing_disks(plan, unit, reason)
                continue
            plan.units.append(unit)
        self._plan = plan
        return plan

    def _keep_backing_disks(self, plan: TeardownPlan, unit: StorageUnit, reason: str) -> None:
        """Disks under a unit that stays registered are not wiped either."""
        backing = self.topology.disks_for_unit(unit.id)
        for disk in [d for d in plan.wipe if d.device in backing]:
            plan.wipe.remove(disk)
            plan.keep.append((disk, f"backs storage '{unit.id}' ({reason})"))

    def _mounts_outside_root(self, disk: Disk) -> List[str]:
        return [m for m in disk.all_mountpoints() if not self.settings.is_managed_path(m)]

    def _target_devices(self) -> Set[str]:
        """Disks whose holder structures may be dismantled: the ones being wiped."""
        return {d.device for d in self.plan().wipe}

    # -----------------------------
    #  Execution
    # -----------------------------
    def run(self) -> TeardownReport:
        report = TeardownReport()
        plan = self.plan()
        targets = self._target_devices()

        for unit in plan.units:
            self.remove_unit(unit)
            report.removed_units.append(unit.id)
        report.skipped.extend((f"storage {sid}", reason) for sid, reason in plan.skipped_units)

        self.dismantle_volume_groups(targets, report)
        self.dismantle_md_arrays(targets, report)
        self.dismantle_zfs_pools(targets, report)

        if not self.filters.active:
            self.clean_mount_root()

        for disk in plan.wipe:
            if disk.device in self._held:
                reason = self._held[disk.device]
                logger.warning(f"Skipping wipe of {disk.device}: {reason}")
                report.skipped_disks.append((disk.device, reason))
                continue
            self.wipe_disk(disk, report)
        for disk, reason in plan.keep:
            logger.warning(f"Skipping wipe of {disk.device}: {reason}")
            report.skipped_disks.append((disk.device, reason))
        return report

    def remove_unit(self, unit: StorageUnit) -> None:
        """Registry entry, live mount, mount table lines and mount point directory."""
        fs = self.host.filesystem
        self.host.registry.remove(unit.id)
        if not unit.path:
            return
        if fs.is_mounted(unit.path):
            fs.unmount(unit.path)
        fs.check_mount_table_writable()
        fs.remove_mount_entries(unit.path)
        if self.settings.is_managed_path(unit.path):
            fs.remove_mount_dir(unit.path)
        else:
            logger.info(f"Leaving {unit.path} in place (outside {self.settings.mount_root})")

    def _eligible(self, kind: str, name: str, member_disks: Set[Optional[str]],
                  targets: Set[str], report: TeardownReport) -> bool:
        """Spanning rule shared by VGs, md arrays and ZFS pools."""
        label = f"{kind} {name}"
        if self.system_disk in member_disks:
            logger.info(f"Skipping {label}: has members on the system disk")
            report.skipped.append((label, "on system disk"))
            return False
        if not member_disks & targets:
            logger.debug(f"Skipping {label}: not on a targeted disk")
            return False
        outside = sorted(d or "unknown device" for d in member_disks - targets)
        if outside:
            reason = f"spans untargeted disk(s) {', '.join(outside)}"
            logger.warning(f"Skipping {label}: {reason}; left intact")
            report.skipped.append((label, reason))
            for device in member_disks & targets:
                self._held.setdefault(device, f"member of {label}, which {reason}")
            return False
        return True

    def _member_disks(self, devices: Iterable[str]) -> Set[Optional[str]]:
        disks = set()
        for device in devices:
            owner = next((d.device for d in self.topology.disks if d.owns(device)), None)
            disks.add(owner or self.host.inspector.parent_disk(device))
        return disks

    def dismantle_volume_groups(self, targets: Set[str], report: TeardownReport) -> None:
        volumes = self.host.volumes
        groups: Dict[str, List[str]] = {}
        orphans = []
        for pv in volumes.list_physical_volumes():
            if pv.vg_name:
                groups.setdefault(pv.vg_name, []).append(pv.device)
            else:
                orphans.append(pv.device)

        for vg_name, members in sorted(groups.items()):
            if vg_name == self.settings.system_vg:
                logger.debug(f"Skipping system volume group {vg_name}")
                continue
            if not self._eligible("VG", vg_name, self._member_disks(members), targets, report):
                continue
            for lv in volumes.list_logical_volumes(vg_name):
                if lv.is_thin_pool:
                    volumes.remove_logical_volume(vg_name, lv.name)
            volumes.deactivate_volume_group(vg_name)
            volumes.remove_volume_group(vg_name)
            for device in members:
                volumes.remove_physical_volume(device)
            report.removed_structures.append(f"VG {vg_name}")

        for device in orphans:
            if self._member_disks([device]) <= targets:
                volumes.remove_physical_volume(device)

    def dismantle_md_arrays(self, targets: Set[str], report: TeardownReport) -> None:
        volumes = self.host.volumes
        for array in volumes.list_md_arrays():
            if not self._eligible("md", array.name, self._member_disks(array.members), targets, report):
                continue
            volumes.stop_md_array(array)
            for member in array.members:
                volumes.zero_md_superblock(member)
            report.removed_structures.append(f"md {array.name}")

    def dismantle_zfs_pools(self, targets: Set[str], report: TeardownReport) -> None:
        volumes = self.host.volumes
        for pool in volumes.list_zfs_pools():
            if not self._eligible("zpool", pool.name, self._member_disks(pool.vdevs), targets, report):
                continue
            volumes.destroy_zfs_pool(pool.name)
            report.removed_structures.append(f"zpool {pool.name}")

    def clean_mount_root(self) -> None:
        fs = self.host.filesystem
        in_use = {u.path for u in self.host.registry.units() if u.path}
        fs.check_mount_table_writable()
        fs.remove_mount_entries_under_root(keep=in_use)
        for path in fs.leftover_mount_dirs():
            if path in in_use:
                continue
            if fs.is_mounted(path):
                fs.unmount(path)
            fs.remove_mount_dir(path)

    def wipe_disk(self, disk: Disk, report: TeardownReport) -> None:
        fs = self.host.filesystem
        current = self.host.inspector.get_disk(disk.device) or disk
        outside = self._mounts_outside_root(current)
        if outside:
            reason = f"mounted at {', '.join(outside)}"
            logger.warning(f"Skipping wipe of {disk.device}: {reason}")
            report.skipped_disks.append((disk.device, reason))
            return

        for mountpoint in sorted(current.all_mountpoints(), reverse=True):
            fs.unmount(mountpoint)
        fs.wipe_signatures(disk.device)
        fs.zap_partition_table(disk.device)
        fs.refresh_partitions(disk.device)
        fs.remove_partition_mappings(disk.device)
        fs.settle()
        report.wiped_disks.append(disk.device)

        if fs.simulating:
            return
        after = self.host.inspector.get_disk(disk.device)
        if after and after.partitions:
            message = (f"Partitions still detected on {disk.device} after wipe: "
                       f"{', '.join(p.device for p in after.partitions)}")
            logger.warning(message)
            report.warnings.append(message)
        else:
            logger.info(f"{disk.device} is raw")
