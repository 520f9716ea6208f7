"""Tests for the provisioning engine and system disk reclaim."""
import pytest

from fakes import GIB, FakeHostState, lvm_unit, make_config, make_host, mounted_dir_unit
from pvestore.core.errors import StepError
from pvestore.core.filters import FilterEngine
from pvestore.core.provisioner import (
    Action,
    DiskEvent,
    DiskRecord,
    DiskState,
    ReconciliationEngine,
)
from pvestore.core.reclaim import SystemDiskReclaimer
from pvestore.models.disk import DiskKind
from pvestore.models.storage import Backend


def engine_for(host, config=None, filters=()):
    config = config or make_config()
    return ReconciliationEngine(config, host, "/dev/sda",
                                FilterEngine.from_values(filters, host.inspector))


class TestDiskRecord:
    """State machine transitions."""

    def test_invalid_transition(self, state):
        record = DiskRecord(state.add_disk("/dev/sdb"))
        with pytest.raises(ValueError):
            record.fire(DiskEvent.HEALED)

    def test_history(self, state):
        record = DiskRecord(state.add_disk("/dev/sdb"))
        record.fire(DiskEvent.CLASSIFIED)
        record.fire(DiskEvent.LABEL_MISSING)
        record.fire(DiskEvent.PROVISIONED)
        assert record.history == [DiskState.UNCLASSIFIED, DiskState.CLASSIFIED, DiskState.UNLABELED]
        assert record.state is DiskState.PROVISIONED


class TestFreshNode:
    """A new pve3 node with one blank disk."""

    def test_provisions_first_label(self, state, host, fresh_disk):
        """Blank HDD becomes HDD-3A on /dev/sdb1, mounted by UUID and registered."""
        report = engine_for(host).run()

        record = report.records[0]
        assert record.state is DiskState.PROVISIONED
        assert str(record.label) == "HDD-3A"
        assert state.partition("/dev/sdb1").partlabel == "HDD-3A"
        assert state.fstab[-1].source == "UUID=uuid-sdb1"
        assert state.mounts["/mnt/disks/HDD-3A"] == "/dev/sdb1"
        unit = state.units["HDD-3A"]
        assert (unit.type, unit.path) == ("dir", "/mnt/disks/HDD-3A")

    def test_reclaims_system_disk(self, state, host, fresh_disk):
        report = engine_for(host).run()

        assert report.reclaim.removed_storage
        assert report.reclaim.removed_volumes == ["pve/data"]
        assert report.reclaim.extended_root
        assert "local-lvm" not in state.units
        assert "lvextend /dev/pve/root" in state.mutations
        assert "resize2fs /dev/pve/root" in state.mutations

    def test_second_run_changes_nothing(self, state, host, fresh_disk):
        """A rerun heals every disk and mutates nothing."""
        engine_for(host).run()
        state.mutations.clear()

        report = engine_for(host).run()

        assert report.records[0].state is DiskState.HEALED
        assert report.records[0].action is Action.HEAL
        assert state.mutations == []
        assert not report.reclaim.removed_volumes
        assert not report.reclaim.extended_root

    def test_plan_text(self, host, fresh_disk):
        records = engine_for(host).plan()
        assert records[0].plan_text == "wipe + format -> HDD-3A"

    def test_destructive_needs_confirmation(self, host, fresh_disk):
        assert engine_for(host).destructive

    def test_whatif_mutates_nothing(self):
        sim = FakeHostState(whatif=True)
        sim.add_system_disk()
        sim.add_disk("/dev/sdb")
        sim.add_disk("/dev/sdc")
        host = make_host(sim)

        report = engine_for(host, make_config(whatif=True)).run()

        assert sim.mutations == []
        assert [str(r.label) for r in report.records] == ["HDD-3A", "HDD-3B"]
        assert "lvextend /dev/pve/root" in sim.simulated


class TestLabelling:
    """Names per media kind and node digit."""

    def test_fills_lowest_free_letter(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        mounted_dir_unit(state, "/dev/sdc", "HDD-3C")
        state.add_disk("/dev/sdd")
        state.add_disk("/dev/sde", kind=DiskKind.SSD)

        records = {r.disk.device: r for r in engine_for(host).plan()}

        assert str(records["/dev/sdd"].label) == "HDD-3B"
        assert str(records["/dev/sde"].label) == "SSD-3A"
        assert records["/dev/sdb"].action is Action.HEAL

    def test_unknown_media_skipped(self, state, host):
        """Disks that are neither HDD nor SSD are never touched."""
        state.add_disk("/dev/sdb", kind=DiskKind.UNKNOWN)

        report = engine_for(host).run()

        assert report.records[0].state is DiskState.SKIPPED
        assert report.records[0].plan_text == "skip (media type unknown)"
        assert not any("/dev/sdb" in m for m in state.mutations)

    def test_foreign_node_label_is_replaced(self, state, host):
        """A disk moved from pve2 gets a pve3 name."""
        state.add_disk("/dev/sdb", label="HDD-2A", fstype="ext4")

        record = engine_for(host).plan()[0]

        assert record.state is DiskState.UNLABELED
        assert str(record.label) == "HDD-3A"
        assert record.plan_text == "wipe HDD-2A + format -> HDD-3A"

    def test_label_without_filesystem_reuses_name(self, state, host):
        """A correctly named but empty partition is rebuilt under the same name."""
        state.add_disk("/dev/sdb", label="HDD-3B")

        record = engine_for(host).plan()[0]

        assert record.action is Action.DESTROY
        assert str(record.label) == "HDD-3B"
        assert record.plan_text == "wipe HDD-3B + format -> HDD-3B"


class TestForcedRuns:
    """--all and --only rebuild even correctly labeled disks."""

    def test_all_rebuilds(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")

        report = engine_for(host, make_config(all_disks=True)).run()

        assert report.records[0].state is DiskState.PROVISIONED
        assert "umount /mnt/disks/HDD-3A" in state.mutations
        assert "wipefs /dev/sdb" in state.mutations

    def test_only_device_skips_reclaim(self, state, host, fresh_disk):
        state.add_disk("/dev/sdc")

        report = engine_for(host, filters=["/dev/sdc"]).run()

        assert [r.disk.device for r in report.records] == ["/dev/sdc"]
        assert report.reclaim is None
        assert "local-lvm" in state.units

    def test_type_change_replaces_unit(self, state, host):
        """Forcing lvm-thin onto a dir disk removes the old dir unit first."""
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        config = make_config(backend=Backend.LVM_THIN, all_disks=True)

        engine_for(host, config).run()

        unit = state.units["HDD-3A"]
        assert unit.type == "lvmthin"
        assert not state.fstab
        assert "/mnt/disks/HDD-3A" not in state.dirs

    def test_heal_keeps_existing_backend(self, state, host):
        """Unforced runs heal what is on disk even when --type differs."""
        lvm_unit(state, "/dev/sdb", "HDD-3A", thin_pool="thin3A")
        state.units.pop("HDD-3A")

        report = engine_for(host, make_config(backend=Backend.DIR)).run()

        assert report.records[0].state is DiskState.HEALED
        assert state.units["HDD-3A"].type == "lvmthin"


class TestFailures:
    """One failing disk does not stop the others."""

    def test_failure_is_per_disk(self, state, host):
        state.add_disk("/dev/sdb")
        state.add_disk("/dev/sdc")
        state.fail_on.add("mkfs.ext4 /dev/sdb1")

        report = engine_for(host).run()

        states = {r.disk.device: r.state for r in report.records}
        assert states == {"/dev/sdb": DiskState.FAILED, "/dev/sdc": DiskState.PROVISIONED}
        assert len(report.failed) == 1
        assert isinstance(report.failed[0].error, StepError)

    def test_disk_mounted_elsewhere(self, state, host):
        disk = state.add_disk("/dev/sdb", label="data", fstype="ext4")
        disk.partitions[0].mountpoints.append("/srv/data")

        report = engine_for(host).run()

        assert report.records[0].state is DiskState.FAILED
        assert "mounted outside" in str(report.records[0].error)
        assert not any("/dev/sdb" in m for m in state.mutations)

    def test_shared_volume_group(self, state, host):
        """A VG spanning another disk is never released implicitly."""
        state.add_disk("/dev/sdb", fstype="LVM2_member", label="x")
        state.add_disk("/dev/sdc", fstype="LVM2_member", label="y")
        state.add_volume_group("media", ["/dev/sdb1", "/dev/sdc1"])

        report = engine_for(host, filters=["/dev/sdb"]).run()

        error = report.records[0].error
        assert "volume group media spans" in str(error)
        assert error.remedy == "pvestore deprovision --only /dev/sdb --only /dev/sdc"
        assert "media" in state.vgs


class TestNetworkProvisioning:
    """--type nfs."""

    def _config(self):
        return make_config(backend=Backend.NFS, nfs_server="10.0.0.5", nfs_export="/srv/pve")

    def test_allocates_nfs_label(self, state, host):
        state.dirs.add("/mnt/disks/NFS-3A")

        report = engine_for(host, self._config()).run()

        assert report.network.storage_id == "NFS-3B"
        assert not report.records
        assert "local-lvm" in state.units

    def test_same_export_heals(self, state, host):
        state.add_unit("NFS-3A", "nfs", server="10.0.0.5", export="/srv/pve",
                       path="/mnt/disks/NFS-3A")

        engine = engine_for(host, self._config())
        report = engine.run()

        assert report.network.healed
        assert report.network.storage_id == "NFS-3A"
        assert not engine.destructive


class TestReclaim:
    """Installer thin pool removal is idempotent."""

    def test_pending_until_done(self, state, host, config):
        reclaimer = SystemDiskReclaimer(config, host)
        assert reclaimer.pending()
        reclaimer.run()
        assert not reclaimer.pending()

    def test_partial_state(self, state, host, config):
        """Storage gone but LV left behind: only the LV is removed."""
        state.units.pop("local-lvm")

        report = SystemDiskReclaimer(config, host).run()

        assert not report.removed_storage
        assert report.removed_volumes == ["pve/data"]

    def test_nothing_to_extend(self, state, host, config):
        state.units.pop("local-lvm")
        state.lvs = [lv for lv in state.lvs if lv.name != "data"]
        state.vgs["pve"].free_bytes = 512 * 1024

        report = SystemDiskReclaimer(config, host).run()

        assert not report.extended_root
        assert state.mutations == []

    def test_free_space_is_used(self, state, host, config):
        """Leftover free extents from an earlier interrupted run still get used."""
        state.units.pop("local-lvm")
        state.lvs = [lv for lv in state.lvs if lv.name != "data"]
        state.vgs["pve"].free_bytes = 20 * GIB

        report = SystemDiskReclaimer(config, host).run()

        assert report.extended_root
