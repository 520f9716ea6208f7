"""Tests for storage rename."""
import pytest

from fakes import lvm_unit, make_config, mounted_dir_unit
from pvestore.core.config import Mode
from pvestore.core.errors import ConfigurationError, SafetyError
from pvestore.core.provisioner import ReconciliationEngine
from pvestore.core.rename import RenameEngine, parse_rename_request
from pvestore.models.storage import Backend, GuestReference
from pvestore.models.volume import VolumeGroup


def rename_engine(host):
    return RenameEngine(make_config(mode=Mode.RENAME), host, "/dev/sda")


class TestParseRenameRequest:
    def test_valid(self):
        assert parse_rename_request("HDD-2A:HDD-2C") == ("HDD-2A", "HDD-2C")

    @pytest.mark.parametrize("value", ["HDD-2A", "HDD-2A:", ":HDD-2C", "HDD-2A:HDD-2A", ""])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            parse_rename_request(value)


class TestRenameDirectory:
    """Directory storage moves its mount point with the name."""

    def test_everything_follows(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        engine = rename_engine(host)

        engine.run(engine.plan("HDD-3A", "HDD-3C"))

        unit = state.units["HDD-3C"]
        assert "HDD-3A" not in state.units
        assert unit.path == "/mnt/disks/HDD-3C"
        part = state.partition("/dev/sdb1")
        assert (part.partlabel, part.label) == ("HDD-3C", "HDD-3C")
        assert [e.mountpoint for e in state.fstab] == ["/mnt/disks/HDD-3C"]
        assert state.fstab[0].source == "UUID=uuid-sdb1"
        assert state.mounts == {"/mnt/disks/HDD-3C": "/dev/sdb1"}
        assert state.dirs == {"/mnt/disks/HDD-3C"}
        assert state.registry_backups == 1

    def test_plan_lists_disk_and_guests(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        state.guests["HDD-3A"] = [GuestReference("qemu", "100", "scsi0", "HDD-3A:100/vm-100-disk-0.qcow2")]

        plan = rename_engine(host).plan("HDD-3A", "HDD-3B")

        assert [d.device for d in plan.disks] == ["/dev/sdb"]
        assert plan.guests[0].vmid == "100"

    def test_whatif(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        state.whatif = True
        engine = rename_engine(host)

        engine.run(engine.plan("HDD-3A", "HDD-3C"))

        assert state.mutations == []
        assert "HDD-3A" in state.units


class TestRenameVolumeGroup:
    def test_volume_group_renamed(self, state, host):
        lvm_unit(state, "/dev/sdb", "HDD-3A", thin_pool="thin3A")
        engine = rename_engine(host)

        engine.run(engine.plan("HDD-3A", "HDD-3D"))

        unit = state.units["HDD-3D"]
        assert unit.vgname == "HDD-3D"
        assert unit.thinpool == "thin3D"
        assert "lvrename HDD-3D thin3A thin3D" in state.mutations
        assert "HDD-3D" in state.vgs
        assert state.partition("/dev/sdb1").partlabel == "HDD-3D"
        assert "vgrename HDD-3A HDD-3D" in state.mutations

    def test_renamed_thin_pool_still_detected(self, state, host):
        """A later provision run recognizes the renamed disk as lvm-thin."""
        lvm_unit(state, "/dev/sdb", "HDD-3A", thin_pool="thin3A")
        engine = rename_engine(host)
        engine.run(engine.plan("HDD-3A", "HDD-3D"))

        config = make_config(backend=Backend.LVM_THIN)
        record = ReconciliationEngine(config, host, "/dev/sda").plan()[0]

        assert str(record.label) == "HDD-3D"
        assert record.on_disk_backend is Backend.LVM_THIN


class TestRenameRefusals:
    """Every refusal happens during planning, before anything changes."""

    def test_unknown_old(self, host):
        with pytest.raises(ConfigurationError):
            rename_engine(host).plan("HDD-3A", "HDD-3B")

    def test_new_exists(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        mounted_dir_unit(state, "/dev/sdc", "HDD-3B")
        with pytest.raises(ConfigurationError):
            rename_engine(host).plan("HDD-3A", "HDD-3B")

    def test_kind_change(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        with pytest.raises(ConfigurationError) as exc_info:
            rename_engine(host).plan("HDD-3A", "SSD-3A")
        assert "must keep the kind and node" in str(exc_info.value)

    def test_not_a_label(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        with pytest.raises(ConfigurationError):
            rename_engine(host).plan("HDD-3A", "fast")

    def test_name_used_by_volume_group(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        state.vgs["HDD-3B"] = VolumeGroup("HDD-3B", 1, 0)
        with pytest.raises(ConfigurationError):
            rename_engine(host).plan("HDD-3A", "HDD-3B")

    def test_protected(self, host):
        with pytest.raises(SafetyError):
            rename_engine(host).plan("local", "HDD-3A")

    def test_shared(self, state, host):
        mounted_dir_unit(state, "/dev/sdb", "HDD-3A")
        state.units["HDD-3A"].shared = True
        with pytest.raises(SafetyError):
            rename_engine(host).plan("HDD-3A", "HDD-3B")

    def test_on_system_disk(self, state, host):
        state.add_unit("HDD-3A", "lvm", vgname="pve")
        with pytest.raises(SafetyError) as exc_info:
            rename_engine(host).plan("HDD-3A", "HDD-3B")
        assert "system disk" in str(exc_info.value)
