"""Shared utilities for pvestore CLI modules."""
from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import typer
from rich.console import Console
from rich.markup import escape

from pvestore.core.config import Mode, RunConfig, StorageSettings, load_settings
from pvestore.core.errors import ConfigurationError
from pvestore.core.identity import HostIdentity
from pvestore.core.logger import get_logger
from pvestore.models.storage import Backend
from pvestore.services.base import HostServices

logger = get_logger(__name__)

# command -> Debian package that provides it
REQUIRED_COMMANDS: Dict[str, str] = {
    "lsblk": "util-linux",
    "findmnt": "util-linux",
    "blkid": "util-linux",
    "wipefs": "util-linux",
    "partx": "util-linux",
    "blockdev": "util-linux",
    "udevadm": "udev",
    "sgdisk": "gdisk",
    "mkfs.ext4": "e2fsprogs",
    "e2label": "e2fsprogs",
    "resize2fs": "e2fsprogs",
    "pvs": "lvm2",
    "vgs": "lvm2",
    "lvs": "lvm2",
    "pvcreate": "lvm2",
    "pvremove": "lvm2",
    "vgcreate": "lvm2",
    "vgchange": "lvm2",
    "vgremove": "lvm2",
    "vgrename": "lvm2",
    "lvcreate": "lvm2",
    "lvremove": "lvm2",
    "lvextend": "lvm2",
    "lvrename": "lvm2",
    "pvesm": "proxmox-ve",
}

# command -> (package, what is lost without it)
OPTIONAL_COMMANDS: Dict[str, Tuple[str, str]] = {
    "smartctl": ("smartmontools", "media type and health fall back to sysfs"),
    "showmount": ("nfs-common", "NFS exports are not checked before mounting"),
}


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from pvestore.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)


def check_prerequisites(
    mode: Mode,
    settings: StorageSettings,
    which: Callable[[str], Optional[str]] = shutil.which,
    euid: Optional[int] = None,
    backend: Optional[Backend] = None,
) -> None:
    """Make sure the host can run the requested mode.

    Raises:
        ConfigurationError: Not root, not a Proxmox node, or commands missing
    """
    if mode is Mode.STATUS:
        needed = ["lsblk"]
    elif mode is Mode.LIST_USAGE:
        needed = ["pvesm"]
    else:
        needed = list(REQUIRED_COMMANDS)
        euid = os.geteuid() if euid is None else euid
        if euid != 0:
            raise ConfigurationError("Run as root.")
        if not Path(settings.pve_dir).is_dir():
            raise ConfigurationError(
                f"{settings.pve_dir} not found. This does not look like a Proxmox VE node."
            )

    missing = [cmd for cmd in needed if not which(cmd)]
    if missing:
        packages = sorted({REQUIRED_COMMANDS.get(cmd, cmd) for cmd in missing})
        raise ConfigurationError(
            f"Missing required command(s): {', '.join(missing)}. "
            f"Install with: apt install {' '.join(packages)}"
        )

    if mode in (Mode.PROVISION, Mode.STATUS):
        for cmd, (package, effect) in OPTIONAL_COMMANDS.items():
            if cmd == "showmount" and backend is not Backend.NFS:
                continue
            if not which(cmd):
                logger.warning(f"{cmd} not found; {effect}. Install with: apt install {package}")


def build_run_config(mode: Mode, **options) -> RunConfig:
    """Load settings, detect the node and validate flag combinations.

    Raises:
        ConfigurationError: For bad settings, hostname or flags
    """
    settings = load_settings()
    identity = HostIdentity.detect()
    return RunConfig(
        mode=mode,
        node_name=identity.node_name,
        node_digit=identity.digit,
        settings=settings,
        **options,
    ).validate()


def build_host(config: RunConfig) -> HostServices:
    """Check prerequisites and wire the real adapters for this run."""
    from pvestore.core.runner import CommandRunner
    from pvestore.discovery.inspector import HostDiskInspector
    from pvestore.services.filesystem import HostFilesystem
    from pvestore.services.lvm import HostVolumeManager
    from pvestore.services.proxmox.storage import PveStorageRegistry

    check_prerequisites(config.mode, config.settings, backend=config.backend)
    runner = CommandRunner(whatif=config.whatif)
    return HostServices(
        inspector=HostDiskInspector(runner, config.settings),
        volumes=HostVolumeManager(runner),
        filesystem=HostFilesystem(runner, config.settings),
        registry=PveStorageRegistry(runner, config.settings, config.node_name),
    )


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    """Print success message with consistent formatting.

    Args:
        console: Rich console for output
        message: Success message
        prefix: Prefix symbol (default: ✓)
    """
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")
