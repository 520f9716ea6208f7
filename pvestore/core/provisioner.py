"""Provisioning: decide per disk whether to heal or destroy-and-provision.

Each targeted disk moves through a small state machine::

    UNCLASSIFIED -> CLASSIFIED -> LABELED_CORRECTLY | UNLABELED -> HEALED | PROVISIONED

with SKIPPED (media kind unknown) and FAILED (a step failed) as the other
terminal states. Transitions are table driven so every path can be tested
without a host.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pvestore.backends import ProvisionResult, StorageBackend, get_backend
from pvestore.core.config import RunConfig
from pvestore.core.errors import PvestoreError, SafetyError, StepError
from pvestore.core.filters import FilterEngine
from pvestore.core.labels import LabelAllocator, existing_names
from pvestore.core.logger import get_logger
from pvestore.core.reclaim import ReclaimReport, SystemDiskReclaimer
from pvestore.models.disk import Disk, DiskKind
from pvestore.models.label import LabelKind, StorageLabel
from pvestore.models.storage import Backend
from pvestore.services.base import HostServices

logger = get_logger(__name__)


class DiskState(Enum):
    UNCLASSIFIED = "unclassified"
    CLASSIFIED = "classified"
    LABELED_CORRECTLY = "labeled"
    UNLABELED = "unlabeled"
    HEALED = "healed"
    PROVISIONED = "provisioned"
    SKIPPED = "skipped"
    FAILED = "failed"


class DiskEvent(Enum):
    CLASSIFIED = "classified"
    UNCLASSIFIABLE = "unclassifiable"
    LABEL_MATCHES = "label-matches"
    LABEL_MISSING = "label-missing"
    HEALED = "healed"
    PROVISIONED = "provisioned"
    STEP_FAILED = "step-failed"


class Action(Enum):
    HEAL = "heal"
    DESTROY = "destroy"


TRANSITIONS: Dict[Tuple[DiskState, DiskEvent], DiskState] = {
    (DiskState.UNCLASSIFIED, DiskEvent.CLASSIFIED): DiskState.CLASSIFIED,
    (DiskState.UNCLASSIFIED, DiskEvent.UNCLASSIFIABLE): DiskState.SKIPPED,
    (DiskState.CLASSIFIED, DiskEvent.LABEL_MATCHES): DiskState.LABELED_CORRECTLY,
    (DiskState.CLASSIFIED, DiskEvent.LABEL_MISSING): DiskState.UNLABELED,
    (DiskState.LABELED_CORRECTLY, DiskEvent.HEALED): DiskState.HEALED,
    (DiskState.LABELED_CORRECTLY, DiskEvent.PROVISIONED): DiskState.PROVISIONED,
    (DiskState.UNLABELED, DiskEvent.PROVISIONED): DiskState.PROVISIONED,
    (DiskState.LABELED_CORRECTLY, DiskEvent.STEP_FAILED): DiskState.FAILED,
    (DiskState.UNLABELED, DiskEvent.STEP_FAILED): DiskState.FAILED,
}

# (state, forced) -> action; forced means --all or an explicit filter selected the disk
DECISIONS: Dict[Tuple[DiskState, bool], Action] = {
    (DiskState.LABELED_CORRECTLY, False): Action.HEAL,
    (DiskState.LABELED_CORRECTLY, True): Action.DESTROY,
    (DiskState.UNLABELED, False): Action.DESTROY,
    (DiskState.UNLABELED, True): Action.DESTROY,
}


@dataclass
class DiskRecord:
    """Progress of one disk through the provisioning state machine."""
    disk: Disk
    state: DiskState = DiskState.UNCLASSIFIED
    kind: DiskKind = DiskKind.UNKNOWN
    label: Optional[StorageLabel] = None
    action: Optional[Action] = None
    on_disk_backend: Optional[Backend] = None
    result: Optional[ProvisionResult] = None
    error: Optional[PvestoreError] = None
    history: List[DiskState] = field(default_factory=list)

    def fire(self, event: DiskEvent) -> DiskState:
        key = (self.state, event)
        if key not in TRANSITIONS:
            raise ValueError(f"{self.disk.device}: no transition from {self.state.value} on {event.value}")
        self.history.append(self.state)
        self.state = TRANSITIONS[key]
        return self.state

    @property
    def plan_text(self) -> str:
        if self.state is DiskState.SKIPPED:
            return "skip (media type unknown)"
        if self.action is Action.HEAL:
            return f"keep ({self.label}), heal"
        current = self.disk.current_label
        prefix = f"wipe {current}" if current else "wipe"
        return f"{prefix} + format -> {self.label}"


@dataclass
class NetworkPlan:
    label: StorageLabel
    healing: bool


@dataclass
class ProvisionReport:
    records: List[DiskRecord] = field(default_factory=list)
    reclaim: Optional[ReclaimReport] = None
    network: Optional[ProvisionResult] = None

    @property
    def failed(self) -> List[DiskRecord]:
        return [r for r in self.records if r.state is DiskState.FAILED]


class ReconciliationEngine:
    """Provisions or heals every targeted disk, one at a time."""

    def __init__(self, config: RunConfig, host: HostServices, system_disk: str,
                 filters: Optional[FilterEngine] = None):
        self.config = config
        self.settings = config.settings
        self.host = host
        self.system_disk = system_disk
        self.filters = filters or FilterEngine()
        self.backend = get_backend(config.backend, host, config)
        self.allocator = LabelAllocator(config.node_digit)
        self._records: Optional[List[DiskRecord]] = None
        self._network_plan: Optional[NetworkPlan] = None

    @property
    def forced(self) -> bool:
        return self.config.all_disks or self.filters.active

    @property
    def destructive(self) -> bool:
        """Whether running the plan can destroy data (and so needs confirmation)."""
        if self.config.backend is Backend.NFS:
            return False
        if any(r.action is Action.DESTROY for r in self.plan()):
            return True
        return not self.filters.active and SystemDiskReclaimer(self.config, self.host).pending()

    # -----------------------------
    #  Planning (read-only)
    # -----------------------------
    def target_disks(self) -> List[Disk]:
        disks = [d for d in self.host.inspector.list_disks() if d.device != self.system_disk]
        return [d for d in disks if self.filters.matches(d)]

    def evaluate(self, disk: Disk) -> DiskRecord:
        """Classify a disk and read its label; decides the action, mutates nothing."""
        record = DiskRecord(disk)
        if disk.kind is DiskKind.UNKNOWN:
            disk.kind = self.host.inspector.classify(disk)
        record.kind = disk.kind
        if record.kind is DiskKind.UNKNOWN:
            record.fire(DiskEvent.UNCLASSIFIABLE)
            return record
        record.fire(DiskEvent.CLASSIFIED)

        current = disk.current_label
        if current and StorageLabel.is_label(current):
            label = StorageLabel.parse(current)
            if label.matches(LabelKind(record.kind.value), self.config.node_digit):
                record.label = label
                record.on_disk_backend = self.detect_backend(disk, label)

        if record.label and record.on_disk_backend:
            record.fire(DiskEvent.LABEL_MATCHES)
        else:
            if record.label:
                logger.info(f"{disk.device} is labeled {record.label} but holds no filesystem or PV")
            record.fire(DiskEvent.LABEL_MISSING)
        record.action = DECISIONS[(record.state, self.forced)]
        return record

    def detect_backend(self, disk: Disk, label: StorageLabel) -> Optional[Backend]:
        part = disk.first_partition
        fstype = (part.fstype or "") if part else ""
        if fstype.startswith("ext"):
            return Backend.DIR
        if fstype == "LVM2_member":
            pools = {lv.name for lv in self.host.volumes.list_logical_volumes(str(label))
                     if lv.is_thin_pool}
            return Backend.LVM_THIN if label.thin_pool_name in pools else Backend.LVM
        return None

    def plan(self) -> List[DiskRecord]:
        """Evaluate every target and assign labels; cached so run() executes this plan.

        Raises:
            LabelExhaustedError: If a disk cannot be given a name
        """
        if self._records is not None:
            return self._records

        records = [self.evaluate(disk) for disk in self.target_disks()]
        for record in records:
            if record.label:
                self.allocator.reserve(record.label)

        taken = existing_names(self.host)
        for record in records:
            if record.action is Action.DESTROY and record.label is None:
                record.label = self.allocator.next_label(LabelKind(record.kind.value), taken)
        self._records = records
        return records

    def plan_network(self) -> NetworkPlan:
        if self._network_plan is not None:
            return self._network_plan
        server, export = self.config.nfs_server, self.config.nfs_export
        for unit in self.host.registry.units():
            if (unit.type == Backend.NFS.value and unit.server == server and unit.export == export
                    and unit.is_node_local(self.config.node_name) and StorageLabel.is_label(unit.id)):
                self._network_plan = NetworkPlan(StorageLabel.parse(unit.id), healing=True)
                return self._network_plan

        taken = existing_names(self.host)
        taken.update(path.rsplit("/", 1)[-1] for path in self.host.filesystem.leftover_mount_dirs())
        label = self.allocator.next_label(LabelKind.NFS, taken)
        self._network_plan = NetworkPlan(label, healing=False)
        return self._network_plan

    # -----------------------------
    #  Execution
    # -----------------------------
    def run(self) -> ProvisionReport:
        if self.config.backend is Backend.NFS:
            return ProvisionReport(network=self.provision_network())

        records = self.plan()
        report = ProvisionReport(records=records)
        if self.filters.active:
            logger.info("Filters given: skipping system disk reclaim")
        else:
            report.reclaim = SystemDiskReclaimer(self.config, self.host).run()

        if not records:
            logger.warning("No disks to provision")
        for record in records:
            self.apply(record)
        return report

    def provision_network(self) -> ProvisionResult:
        plan = self.plan_network()
        if plan.healing:
            logger.info(f"{self.config.nfs_server}:{self.config.nfs_export} already registered "
                        f"as '{plan.label}'; healing")
            return self.backend.heal(None, plan.label)
        return self.backend.provision(None, plan.label)

    def apply(self, record: DiskRecord) -> DiskRecord:
        """Carry out the planned action for one disk; step failures stay with the disk."""
        disk = record.disk
        if record.state is DiskState.SKIPPED:
            logger.warning(f"Skipping {disk.device}: cannot tell HDD from SSD, refusing to guess a name")
            return record

        try:
            if record.action is Action.HEAL:
                record.result = self.heal_backend(record).heal(disk, record.label)
                record.fire(DiskEvent.HEALED)
                logger.info(f"{disk.device}: {record.label} already present, healed")
            else:
                self.release_disk(disk)
                self.replace_conflicting_unit(record.label)
                record.result = self.backend.provision(disk, record.label)
                record.fire(DiskEvent.PROVISIONED)
                logger.info(f"{disk.device}: provisioned {record.label} ({self.backend.backend.value})")
        except (StepError, SafetyError) as e:
            record.error = e
            record.fire(DiskEvent.STEP_FAILED)
            logger.error(f"{disk.device}: {e}")
        return record

    def heal_backend(self, record: DiskRecord) -> StorageBackend:
        found = record.on_disk_backend
        if found is not self.config.backend:
            logger.warning(
                f"{record.disk.device} holds {found.cli_name} storage {record.label}, "
                f"not {self.config.backend.cli_name}; healing as {found.cli_name}. "
                f"To convert run: pvestore provision --type {self.config.backend.cli_name} "
                f"--only {record.disk.device}"
            )
        if found is self.config.backend:
            return self.backend
        return get_backend(found, self.host, self.config)

    def release_disk(self, disk: Disk) -> None:
        """Unmount managed mounts and drop a VG that lives only on this disk.

        Raises:
            StepError: If the disk is mounted elsewhere or shares a VG with other disks
        """
        mounts = disk.all_mountpoints()
        outside = [m for m in mounts if not self.settings.is_managed_path(m)]
        if outside:
            raise StepError(
                f"Releasing {disk.device}: mounted outside {self.settings.mount_root} "
                f"at {', '.join(outside)}"
            )
        for mountpoint in sorted(mounts, reverse=True):
            self.host.filesystem.unmount(mountpoint)

        volumes = self.host.volumes
        pvs = volumes.list_physical_volumes()
        own = [pv for pv in pvs if disk.owns(pv.device)]
        for vg_name in sorted({pv.vg_name for pv in own if pv.vg_name}):
            if vg_name == self.settings.system_vg:
                raise StepError(f"Releasing {disk.device}: holds the system volume group {vg_name}")
            members = [pv.device for pv in pvs if pv.vg_name == vg_name]
            if any(not disk.owns(device) for device in members):
                member_disks = sorted({self.host.inspector.parent_disk(d) or d for d in members})
                raise StepError(
                    f"Releasing {disk.device}: volume group {vg_name} spans {', '.join(members)}",
                    remedy="pvestore deprovision " + " ".join(f"--only {d}" for d in member_disks),
                )
            volumes.deactivate_volume_group(vg_name)
            volumes.remove_volume_group(vg_name)
        for pv in own:
            volumes.remove_physical_volume(pv.device)

    def replace_conflicting_unit(self, label: StorageLabel) -> None:
        """Drop a registry unit with this ID when it has a different backend type."""
        unit = self.host.registry.get(str(label))
        if unit is None or unit.backend is self.config.backend:
            return
        if not unit.is_node_local(self.config.node_name):
            raise StepError(f"Storage '{label}' exists but is not local to {self.config.node_name}")
        logger.warning(f"Storage '{label}' is registered as {unit.type}; replacing it "
                       f"with {self.config.backend.value}")
        self.host.registry.remove(unit.id)
        if unit.path and self.settings.is_managed_path(unit.path):
            fs = self.host.filesystem
            if fs.is_mounted(unit.path):
                fs.unmount(unit.path)
            fs.remove_mount_entries(unit.path)
            fs.remove_mount_dir(unit.path)
