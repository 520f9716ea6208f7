"""Tests for the pvestore commands against an in-memory host."""
import pytest
from typer.testing import CliRunner

from fakes import FakeHostState, make_host, mounted_dir_unit
from pvestore.cli import app
from pvestore.models.storage import ContentEntry, GuestReference

runner = CliRunner()


@pytest.fixture
def node(monkeypatch, tmp_path):
    """A pve3 node with the system disk and one blank HDD, wired into the CLI."""
    state = FakeHostState()
    state.add_system_disk()
    state.add_disk("/dev/sdb")
    monkeypatch.setenv("PVESTORE_LOCK_FILE", str(tmp_path / "operation.lock"))
    monkeypatch.setattr("pvestore.core.identity.socket.gethostname", lambda: "pve3")

    def build_host(config):
        state.whatif = config.whatif
        return make_host(state)

    monkeypatch.setattr("pvestore.cli_support.build_host", build_host)
    monkeypatch.setattr("pvestore.cli_support.setup_file_logging", lambda **kwargs: None)
    return state


class TestProvisionCommand:
    def test_forced(self, node):
        result = runner.invoke(app, ["provision", "--force"])

        assert result.exit_code == 0
        assert "HDD-3A" in node.units
        assert "Provisioning complete" in result.stdout

    def test_whatif(self, node):
        result = runner.invoke(app, ["provision", "--whatif"])

        assert result.exit_code == 0
        assert node.mutations == []
        assert node.simulated
        assert "HDD-3A" not in node.units
        assert "Simulation only" in result.stdout

    def test_confirmed(self, node):
        result = runner.invoke(app, ["provision"], input="DESTROY\n")

        assert result.exit_code == 0
        assert "HDD-3A" in node.units

    def test_declined(self, node):
        result = runner.invoke(app, ["provision"], input="yes\n")

        assert result.exit_code == 0
        assert "Aborted; no changes made" in result.stdout
        assert node.mutations == []

    @pytest.mark.parametrize("storage_type", ["dir", "lvm", "lvm-thin"])
    def test_system_disk_refused(self, node, storage_type):
        result = runner.invoke(app, ["provision", "--force", "--type", storage_type,
                                     "--only", "/dev/sda"])

        assert result.exit_code == 1
        assert "system disk" in result.stdout
        assert node.mutations == []

    def test_unknown_type(self, node):
        result = runner.invoke(app, ["provision", "--type", "ceph"])
        assert result.exit_code == 1

    def test_failed_disk_exits_nonzero(self, node):
        node.fail_on.add("mkfs.ext4 /dev/sdb1")

        result = runner.invoke(app, ["provision", "--force"])

        assert result.exit_code == 1

    def test_bad_hostname(self, node, monkeypatch):
        monkeypatch.setattr("pvestore.core.identity.socket.gethostname", lambda: "proxmox")

        result = runner.invoke(app, ["provision", "--whatif"])

        assert result.exit_code == 1
        assert node.mutations == []


class TestDeprovisionCommand:
    def test_unknown_name(self, node):
        result = runner.invoke(app, ["deprovision", "--force", "--only", "HDD-3Z"])

        assert result.exit_code == 1
        assert node.mutations == []

    def test_forced(self, node):
        mounted_dir_unit(node, "/dev/sdc", "HDD-3B")

        result = runner.invoke(app, ["deprovision", "--force", "--only", "HDD-3B"])

        assert result.exit_code == 0
        assert "HDD-3B" not in node.units
        assert "wipefs /dev/sdb" not in node.mutations

    def test_declined(self, node):
        mounted_dir_unit(node, "/dev/sdc", "HDD-3B")

        result = runner.invoke(app, ["deprovision"], input="\n")

        assert result.exit_code == 0
        assert "Aborted; no changes made" in result.stdout
        assert "HDD-3B" in node.units


class TestStorageCommands:
    def test_status(self, node):
        mounted_dir_unit(node, "/dev/sdc", "HDD-3B")

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "/dev/sdc" in result.stdout
        assert "HDD-3B" in result.stdout

    def test_list_usage(self, node):
        mounted_dir_unit(node, "/dev/sdc", "HDD-3B")
        node.guests["HDD-3B"] = [GuestReference("lxc", "200", "rootfs", "HDD-3B:subvol-200-disk-0")]

        result = runner.invoke(app, ["list-usage", "HDD-3B"])

        assert result.exit_code == 0
        assert "No volumes on this storage" in result.stdout
        assert "200" in result.stdout

    def test_list_usage_content_sizes(self, node):
        mounted_dir_unit(node, "/dev/sdc", "HDD-3B")
        node.content["HDD-3B"] = [
            ContentEntry("HDD-3B:100/vm-100-disk-0.qcow2", "qcow2", "images", 32 * 1024 ** 3, "100"),
        ]

        result = runner.invoke(app, ["list-usage", "HDD-3B"])

        assert result.exit_code == 0
        assert "32.0G" in result.stdout

    def test_list_usage_unknown(self, node):
        result = runner.invoke(app, ["list-usage", "HDD-3Z"])
        assert result.exit_code == 1

    def test_rename(self, node):
        mounted_dir_unit(node, "/dev/sdc", "HDD-3B")

        result = runner.invoke(app, ["rename", "HDD-3B:HDD-3C", "--force"])

        assert result.exit_code == 0
        assert "HDD-3C" in node.units
        assert "Renamed 'HDD-3B' to 'HDD-3C'" in result.stdout

    def test_rename_bad_request(self, node):
        result = runner.invoke(app, ["rename", "HDD-3B"])
        assert result.exit_code == 1
