"""Block device discovery for the local host."""
import os
from pathlib import Path
from typing import Dict, List, Optional, Set

from pvestore.core.config import StorageSettings
from pvestore.core.errors import ConfigurationError, SafetyError, StepError
from pvestore.core.logger import get_logger
from pvestore.core.runner import CommandRunner
from pvestore.models.disk import Disk, DiskKind, SmartInfo
from pvestore.parsers.holders import parse_zpool_vdevs
from pvestore.parsers.lsblk import LSBLK_COLUMNS, parse_lsblk
from pvestore.parsers.lvm import PVS_ARGS, parse_pvs
from pvestore.parsers.smart import parse_rotation, parse_smartctl
from pvestore.services.base import DiskInspector

logger = get_logger(__name__)

# lsblk STATE values of a disk that accepts I/O
READY_STATES = ("running", "live", "idle")

# Partition -> LV -> crypt chains are never this deep on a Proxmox host
_MAX_PARENT_DEPTH = 8


class HostDiskInspector(DiskInspector):
    """Reads lsblk, smartctl, findmnt and sysfs through a CommandRunner."""

    def __init__(self, runner: CommandRunner, settings: StorageSettings):
        self.runner = runner
        self.settings = settings
        self._system_disk: Optional[str] = None
        self._kinds: Dict[str, DiskKind] = {}

    # -----------------------------
    #  Listing
    # -----------------------------
    def _lsblk(self, device: Optional[str] = None) -> List[Disk]:
        argv = ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS]
        if device:
            argv.append(device)
        output = self.runner.query(argv)
        if not output.ok:
            if device:
                return []
            raise StepError("Listing block devices", argv, output.returncode, output.stderr)
        return parse_lsblk(output.stdout)

    def list_disks(self, include_system: bool = False) -> List[Disk]:
        system_disk = self.resolve_system_disk()
        disks = []
        for disk in self._lsblk():
            if disk.device == system_disk and not include_system:
                logger.debug(f"Skipping system disk {disk.device}")
                continue
            disk.kind = self.classify(disk)
            disks.append(disk)
        return disks

    def get_disk(self, device: str) -> Optional[Disk]:
        disks = [d for d in self._lsblk(device) if d.device == device]
        if not disks:
            return None
        disk = disks[0]
        disk.kind = self.classify(disk)
        return disk

    # -----------------------------
    #  Classification and health
    # -----------------------------
    def classify(self, disk: Disk) -> DiskKind:
        """SMART rotation rate first, then the kernel rotational flag."""
        if disk.device in self._kinds:
            return self._kinds[disk.device]

        kind = DiskKind.UNKNOWN
        if self.runner.which("smartctl"):
            rotation = parse_rotation(self.runner.query(["smartctl", "-i", disk.device]).stdout)
            if rotation == "SSD":
                kind = DiskKind.SSD
            elif "rpm" in rotation.lower():
                kind = DiskKind.HDD

        if kind is DiskKind.UNKNOWN:
            rotational = self._sysfs_rotational(disk.name)
            if rotational is None:
                rotational = disk.rotational
            if rotational is not None:
                kind = DiskKind.HDD if rotational else DiskKind.SSD

        self._kinds[disk.device] = kind
        return kind

    def _sysfs_rotational(self, name: str) -> Optional[bool]:
        flag = self.settings.sysfs_block / name / "queue" / "rotational"
        try:
            value = flag.read_text().strip()
        except OSError:
            return None
        if value in ("0", "1"):
            return value == "1"
        return None

    def smart_info(self, device: str) -> SmartInfo:
        if not self.runner.which("smartctl"):
            return SmartInfo()
        # smartctl encodes warnings in its exit status; the report is still usable
        return parse_smartctl(self.runner.query(["smartctl", "-a", device]).stdout)

    # -----------------------------
    #  Topology
    # -----------------------------
    def resolve_system_disk(self) -> str:
        """Trace / through LVM or ZFS down to a whole disk."""
        if self._system_disk:
            return self._system_disk

        source = self.runner.query(["findmnt", "-n", "-o", "SOURCE", "/"]).stdout.strip()
        if not source:
            raise ConfigurationError("Unable to determine the root filesystem source.")

        device = source
        if source.startswith(("/dev/mapper/", "/dev/dm-")):
            vg_name = self.runner.query(
                ["lvs", "--noheadings", "-o", "vg_name", source]
            ).stdout.strip()
            if not vg_name:
                raise ConfigurationError(f"Unable to determine the volume group backing root ({source}).")
            pvs = [pv for pv in parse_pvs(self.runner.query(PVS_ARGS).stdout) if pv.vg_name == vg_name]
            if not pvs:
                raise ConfigurationError(f"Unable to determine the PV backing volume group {vg_name}.")
            device = pvs[0].device
        elif not source.startswith("/dev/"):
            # ZFS root: rpool/ROOT/pve-1
            pool = source.split("/", 1)[0]
            vdevs = parse_zpool_vdevs(self.runner.query(["zpool", "status", "-P", pool]).stdout)
            if not vdevs:
                raise ConfigurationError(f"Unable to determine the devices of ZFS pool {pool}.")
            device = vdevs[0]

        disk = self.parent_disk(device)
        if not disk:
            raise ConfigurationError(f"Unable to determine the base disk for {device}.")
        logger.debug(f"System disk: {disk} (root on {source})")
        self._system_disk = disk
        return disk

    def parent_disk(self, device: str) -> Optional[str]:
        current = device
        for _ in range(_MAX_PARENT_DEPTH):
            kind = self.runner.query(["lsblk", "-dno", "TYPE", current]).stdout.strip()
            if not kind:
                return None
            if kind == "disk":
                return self._resolve(current)
            parent = self.runner.query(["lsblk", "-dno", "PKNAME", current]).stdout.strip()
            if not parent:
                return None
            current = f"/dev/{parent}"
        return None

    @staticmethod
    def _resolve(device: str) -> str:
        # /dev/disk/by-id links resolve to the kernel name
        return os.path.realpath(device) if os.path.islink(device) else device

    def mount_source(self, path: str) -> Optional[str]:
        output = self.runner.query(["findmnt", "-n", "-o", "SOURCE", "--target", path])
        source = output.stdout.strip().splitlines()
        return source[0].strip() if output.ok and source else None

    def normalize_device(self, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ConfigurationError("Empty device filter.")
        if not value.startswith("/"):
            value = f"/dev/{value}"
        return self._resolve(value)

    # -----------------------------
    #  Validation
    # -----------------------------
    def validate_device(self, device: str) -> None:
        kind = self.runner.query(["lsblk", "-dn", "-o", "TYPE", device]).stdout.strip()
        if not kind:
            raise SafetyError(f"Device not found: {device}")
        if kind != "disk":
            raise SafetyError(
                f"--only must name a whole disk (e.g. /dev/sde), not a {kind}: {device}"
            )
        name = device.rsplit("/", 1)[-1]
        if not (Path(device).is_block_device() or (self.settings.sysfs_block / name).exists()):
            raise SafetyError(f"Not a block device: {device}")

        if self.runner.query(["blockdev", "--getro", device]).stdout.strip() == "1":
            raise SafetyError(f"Device is read-only: {device}")

        state = self.runner.query(["lsblk", "-dn", "-o", "STATE", device]).stdout.strip()
        if state and state not in READY_STATES:
            raise SafetyError(f"Device state is '{state}', expected running: {device}")

        check = self.runner.query(
            ["dd", f"if={device}", "of=/dev/null", "bs=1M", "count=1", "iflag=direct", "status=none"]
        )
        if not check.ok:
            raise SafetyError(
                f"Device read check failed for {device}. Check cable, power or enclosure."
            )
        logger.debug(f"Device {device} passed validation")

    def existing_labels(self) -> Set[str]:
        labels = set()
        for disk in self._lsblk():
            for part in disk.partitions:
                labels.update(l for l in (part.label, part.partlabel) if l)
        return labels
