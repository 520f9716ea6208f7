"""pvestore runtime configuration and settings."""
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from pvestore.core.errors import ConfigurationError
from pvestore.models.storage import Backend

GIB = 1024 ** 3

DEFAULT_SETTINGS_FILE = Path("/etc/pvestore/pvestore.yml")

# Thin provisioning sizing; overridable through settings, never silently changed.
THIN_POOL_PERCENT = 95
THIN_POOL_MIN_VG_BYTES = 1 * GIB


class Mode(Enum):
    """What a run is asked to do."""
    PROVISION = "provision"
    DEPROVISION = "deprovision"
    RENAME = "rename"
    LIST_USAGE = "list-usage"
    STATUS = "status"


@dataclass(frozen=True)
class StorageSettings:
    """Host paths and policy knobs shared by every component.

    Attributes:
        mount_root: Directory under which managed storage is mounted
        fstab_path: Mount table file
        storage_cfg_path: Proxmox storage registry file
        pve_dir: Proxmox cluster filesystem root (guest configs live below it)
        sysfs_block: sysfs directory holding per-disk queue attributes
        thin_pool_percent: Share of the volume group given to a thin pool
        thin_pool_min_vg_bytes: Smallest volume group accepted for thin provisioning
        fstab_options: Mount options for disk-backed entries
        nfs_fstab_options: Mount options appended to NFS entries
        dir_content: Content types registered for directory storage
        volume_content: Content types registered for LVM / LVM-thin storage
        nfs_content: Content types registered for NFS storage
        protected_storage: Registry IDs that are never touched
        system_vg: Volume group of the Proxmox installer
        default_thin_pool: Installer thin pool LV (reclaimed on unfiltered runs)
        default_thin_storage: Installer thin storage ID removed during reclaim
        root_lv: Root logical volume extended during reclaim
        lock_file: Operation lock file
    """

    mount_root: Path = Path("/mnt/disks")
    fstab_path: Path = Path("/etc/fstab")
    storage_cfg_path: Path = Path("/etc/pve/storage.cfg")
    pve_dir: Path = Path("/etc/pve")
    sysfs_block: Path = Path("/sys/block")
    thin_pool_percent: int = THIN_POOL_PERCENT
    thin_pool_min_vg_bytes: int = THIN_POOL_MIN_VG_BYTES
    fstab_options: str = "defaults,nofail,x-systemd.device-timeout=10"
    nfs_fstab_options: str = "nofail,_netdev"
    dir_content: str = "images,iso,vztmpl,backup,snippets,rootdir"
    volume_content: str = "images,rootdir"
    nfs_content: str = "images,iso,vztmpl,backup,snippets"
    protected_storage: Tuple[str, ...] = ("local", "local-lvm")
    default_thin_storage: str = "local-lvm"
    system_vg: str = "pve"
    default_thin_pool: str = "data"
    root_lv: str = "/dev/pve/root"
    lock_file: Path = Path("/var/run/pvestore/operation.lock")

    def mount_path(self, storage_id: str) -> Path:
        return self.mount_root / storage_id

    def is_managed_path(self, path: str) -> bool:
        """True if path lives strictly below the managed mount root."""
        try:
            Path(path).relative_to(self.mount_root)
        except ValueError:
            return False
        return Path(path) != self.mount_root


_ENV_PREFIX = "PVESTORE_"
_PATH_FIELDS = {"mount_root", "fstab_path", "storage_cfg_path", "pve_dir", "sysfs_block", "lock_file"}
_INT_FIELDS = {"thin_pool_percent", "thin_pool_min_vg_bytes"}


def _coerce(name: str, value: Any) -> Any:
    if name in _PATH_FIELDS:
        return Path(str(value))
    if name in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Setting '{name}' must be an integer, got {value!r}")
    if name == "protected_storage":
        if isinstance(value, str):
            value = [v.strip() for v in value.split(",") if v.strip()]
        if not isinstance(value, (list, tuple)):
            raise ConfigurationError(f"Setting '{name}' must be a list of storage IDs")
        return tuple(str(v) for v in value)
    if not isinstance(value, (str, int, float)):
        raise ConfigurationError(f"Setting '{name}' must be a string, got {type(value).__name__}")
    return str(value)


def load_settings(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> StorageSettings:
    """Build settings from defaults, an optional YAML file and PVESTORE_* variables.

    Args:
        path: Settings file (defaults to $PVESTORE_CONFIG or /etc/pvestore/pvestore.yml)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        StorageSettings instance

    Raises:
        ConfigurationError: If the file is unreadable, malformed or names unknown keys
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(StorageSettings)}
    overrides: Dict[str, Any] = {}

    settings_file = path or Path(environ.get("PVESTORE_CONFIG", DEFAULT_SETTINGS_FILE))
    if settings_file.exists():
        try:
            with open(settings_file) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read settings file {settings_file}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {settings_file} must contain a mapping")
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown setting(s) in {settings_file}: {', '.join(unknown)}"
            )
        overrides.update({k: _coerce(k, v) for k, v in data.items()})
    elif path is not None:
        raise ConfigurationError(f"Settings file not found: {settings_file}")

    for name in known:
        env_value = environ.get(_ENV_PREFIX + name.upper())
        if env_value is not None:
            overrides[name] = _coerce(name, env_value)

    settings = replace(StorageSettings(), **overrides)
    if not 0 < settings.thin_pool_percent <= 100:
        raise ConfigurationError(
            f"thin_pool_percent must be between 1 and 100, got {settings.thin_pool_percent}"
        )
    return settings


@dataclass(frozen=True)
class RunConfig:
    """All parameters of one invocation, built once and passed to every component."""

    mode: Mode
    node_name: str
    node_digit: str
    settings: StorageSettings = field(default_factory=StorageSettings)
    backend: Backend = Backend.DIR
    force: bool = False
    whatif: bool = False
    full_format: bool = False
    all_disks: bool = False
    filters: Tuple[str, ...] = ()
    nfs_server: Optional[str] = None
    nfs_export: Optional[str] = None
    nfs_options: Optional[str] = None
    skip_nfs_check: bool = False
    extended: bool = False

    @property
    def filtered(self) -> bool:
        return bool(self.filters)

    @property
    def quick_format(self) -> bool:
        return not self.full_format

    def validate(self) -> "RunConfig":
        """Reject flag combinations that cannot work together.

        Raises:
            ConfigurationError: For incompatible flags
        """
        if self.mode is Mode.PROVISION and self.backend is Backend.NFS:
            incompatible = []
            if self.all_disks:
                incompatible.append("--all")
            if self.full_format:
                incompatible.append("--full-format")
            if self.filters:
                incompatible.append("--only")
            if incompatible:
                raise ConfigurationError(
                    f"--type nfs cannot be combined with {', '.join(incompatible)} "
                    f"(NFS storage does not use local disks)"
                )
            if not self.nfs_server or not self.nfs_export:
                raise ConfigurationError(
                    "--type nfs requires --nfs-server and --nfs-export"
                )
            if not self.nfs_export.startswith("/"):
                raise ConfigurationError(
                    f"NFS export must be an absolute path, got '{self.nfs_export}'"
                )
        if self.all_disks and self.filters:
            raise ConfigurationError("--all and --only are mutually exclusive")
        if self.all_disks and self.mode is not Mode.PROVISION:
            raise ConfigurationError("--all is only valid with --provision")
        return self

    def context_line(self) -> str:
        filters = " ".join(self.filters) if self.filters else "all"
        return (
            f"Context: node={self.node_name} mode={self.mode.value} whatif={int(self.whatif)} "
            f"force={int(self.force)} full_format={int(self.full_format)} filters={filters}"
        )
