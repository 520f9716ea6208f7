"""Tests for settings loading, run flags and host identity."""
from pathlib import Path

import pytest

from pvestore.core.config import Mode, RunConfig, StorageSettings, load_settings
from pvestore.core.errors import ConfigurationError
from pvestore.core.identity import HostIdentity
from pvestore.models.storage import Backend


class TestHostIdentity:
    """Node digit comes from the trailing digit of the short hostname."""

    def test_plain_hostname(self):
        identity = HostIdentity.from_hostname("pve2")
        assert identity.node_name == "pve2"
        assert identity.digit == "2"

    def test_fqdn(self):
        """Domain part is dropped."""
        identity = HostIdentity.from_hostname("pve7.lab.example.com")
        assert identity.node_name == "pve7"
        assert identity.digit == "7"

    @pytest.mark.parametrize("hostname", ["proxmox", "pve12", "", "pve2-b"])
    def test_invalid_hostname(self, hostname):
        """Hostnames that do not end in exactly one digit are rejected."""
        with pytest.raises(ConfigurationError):
            HostIdentity.from_hostname(hostname)

    def test_detect_uses_socket(self, monkeypatch):
        monkeypatch.setattr("pvestore.core.identity.socket.gethostname", lambda: "pve4")
        assert HostIdentity.detect().digit == "4"


class TestLoadSettings:
    """Test defaults, YAML file and environment overrides."""

    def test_defaults(self, tmp_path):
        settings = load_settings(environ={"PVESTORE_CONFIG": str(tmp_path / "none.yml")})

        assert settings.mount_root == Path("/mnt/disks")
        assert settings.thin_pool_percent == 95
        assert settings.protected_storage == ("local", "local-lvm")

    def test_yaml_file(self, tmp_path):
        """Values from the settings file override defaults."""
        settings_file = tmp_path / "pvestore.yml"
        settings_file.write_text(
            "mount_root: /srv/disks\n"
            "thin_pool_percent: 90\n"
            "protected_storage: [local, backup]\n"
        )

        settings = load_settings(settings_file, environ={})

        assert settings.mount_root == Path("/srv/disks")
        assert settings.thin_pool_percent == 90
        assert settings.protected_storage == ("local", "backup")

    def test_env_beats_file(self, tmp_path):
        settings_file = tmp_path / "pvestore.yml"
        settings_file.write_text("mount_root: /srv/disks\n")

        settings = load_settings(settings_file, environ={"PVESTORE_MOUNT_ROOT": "/data/disks"})

        assert settings.mount_root == Path("/data/disks")

    def test_unknown_key(self, tmp_path):
        """Typos in the settings file are reported, not ignored."""
        settings_file = tmp_path / "pvestore.yml"
        settings_file.write_text("mount_rot: /srv\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(settings_file, environ={})

        assert "mount_rot" in str(exc_info.value)

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(tmp_path / "missing.yml", environ={})

    def test_bad_percent(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(environ={"PVESTORE_CONFIG": str(tmp_path / "none.yml"),
                                   "PVESTORE_THIN_POOL_PERCENT": "0"})

    def test_not_an_integer(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(environ={"PVESTORE_CONFIG": str(tmp_path / "none.yml"),
                                   "PVESTORE_THIN_POOL_PERCENT": "lots"})

    def test_managed_path(self):
        """Only paths strictly below the mount root are managed."""
        settings = StorageSettings()
        assert settings.is_managed_path("/mnt/disks/HDD-2A")
        assert not settings.is_managed_path("/mnt/disks")
        assert not settings.is_managed_path("/var/lib/vz")


class TestRunConfig:
    """Test incompatible flag detection."""

    def _config(self, **kwargs):
        return RunConfig(mode=Mode.PROVISION, node_name="pve2", node_digit="2", **kwargs)

    def test_nfs_with_all(self):
        config = self._config(backend=Backend.NFS, all_disks=True,
                              nfs_server="10.0.0.5", nfs_export="/srv")
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()
        assert "--all" in str(exc_info.value)

    def test_nfs_requires_server_and_export(self):
        with pytest.raises(ConfigurationError):
            self._config(backend=Backend.NFS, nfs_server="10.0.0.5").validate()

    def test_nfs_export_absolute(self):
        with pytest.raises(ConfigurationError):
            self._config(backend=Backend.NFS, nfs_server="10.0.0.5", nfs_export="srv").validate()

    def test_all_and_only(self):
        with pytest.raises(ConfigurationError):
            self._config(all_disks=True, filters=("/dev/sdb",)).validate()

    def test_valid_nfs(self):
        config = self._config(backend=Backend.NFS, nfs_server="10.0.0.5", nfs_export="/srv")
        assert config.validate() is config

    def test_context_line(self):
        line = self._config(whatif=True, filters=("HDD-2A",)).context_line()
        assert line == ("Context: node=pve2 mode=provision whatif=1 force=0 "
                        "full_format=0 filters=HDD-2A")

    def test_backend_aliases(self):
        assert Backend.from_cli("lvm-thin") is Backend.LVM_THIN
        assert Backend.from_cli("LVMTHIN") is Backend.LVM_THIN
        with pytest.raises(ConfigurationError):
            Backend.from_cli("zfs")
