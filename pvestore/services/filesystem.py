"""Partitioning, ext4 formatting, mount points and /etc/fstab."""
import os
import time
from pathlib import Path
from typing import Iterable, List, Optional

import psutil

from pvestore.core.config import StorageSettings
from pvestore.core.errors import ConfigurationError, SafetyError, StepError
from pvestore.core.logger import get_logger
from pvestore.core.runner import CommandRunner, StepKind
from pvestore.models.disk import predicted_partition
from pvestore.parsers.fstab import FstabEntry, parse_fstab
from pvestore.parsers.lsblk import parse_lsblk
from pvestore.services.base import FilesystemFormatter

logger = get_logger(__name__)


class HostFilesystem(FilesystemFormatter):
    """Filesystem and mount operations on the local host."""

    def __init__(self, runner: CommandRunner, settings: StorageSettings,
                 partition_attempts: int = 5, partition_delay: float = 1.0):
        self.runner = runner
        self.settings = settings
        self.partition_attempts = partition_attempts
        self.partition_delay = partition_delay

    @property
    def simulating(self) -> bool:
        return self.runner.whatif

    # -----------------------------
    #  Partition table
    # -----------------------------
    def wipe_signatures(self, device: str) -> None:
        self.runner.run(f"Wiping filesystem signatures on {device}", ["wipefs", "-a", device])

    def zap_partition_table(self, device: str) -> None:
        self.runner.run(f"Zapping partition table on {device}", ["sgdisk", "--zap-all", device])

    def create_partition(self, device: str, label: str, type_code: str) -> None:
        self.runner.run(
            f"Creating GPT partition '{label}' on {device}",
            ["sgdisk", "-n", "1:0:0", "-t", f"1:{type_code}", "-c", f"1:{label}", device],
        )

    def refresh_partitions(self, device: str) -> None:
        self.runner.run(f"Refreshing kernel partition table for {device}",
                        ["partx", "-u", device], kind=StepKind.ADVISORY)

    def remove_partition_mappings(self, device: str) -> None:
        self.runner.run(f"Removing stale partition mappings for {device}",
                        ["partx", "-d", device], kind=StepKind.ADVISORY)

    def settle(self) -> None:
        self.runner.run("Waiting for udev to settle", ["udevadm", "settle"], kind=StepKind.ADVISORY)

    def wait_for_partition(self, device: str) -> str:
        """Poll lsblk until the kernel shows the first partition of device.

        Raises:
            StepError: If no partition shows up after partition_attempts polls
        """
        if self.simulating:
            return predicted_partition(device)

        argv = ["lsblk", "-J", "-b", "-o", "NAME,PATH,SIZE,TYPE", device]
        for attempt in range(1, self.partition_attempts + 1):
            output = self.runner.query(argv)
            for disk in parse_lsblk(output.stdout) if output.ok else []:
                if disk.partitions:
                    partition = disk.partitions[0].device
                    logger.debug(f"Partition for {device}: {partition} (attempt {attempt})")
                    return partition
            if attempt < self.partition_attempts:
                logger.debug(f"No partition on {device} yet, retrying in {self.partition_delay}s")
                time.sleep(self.partition_delay)
        raise StepError(
            f"Waiting for a partition to appear on {device}",
            argv,
            remedy=f"partx -u {device} && udevadm settle",
        )

    def set_partition_name(self, device: str, label: str) -> None:
        self.runner.run(f"Setting GPT partition name '{label}' on {device}",
                        ["sgdisk", "-c", f"1:{label}", device])

    # -----------------------------
    #  Filesystems
    # -----------------------------
    def format_ext4(self, partition: str, label: str, quick: bool = True) -> None:
        argv = ["mkfs.ext4", "-F", "-L", label, "-E", "lazy_itable_init=1,lazy_journal_init=1"]
        if quick:
            argv += ["-m", "0", "-T", "largefile4"]
        mode = "quick" if quick else "full"
        self.runner.run(f"Formatting {partition} as ext4 ({mode}, label {label})", argv + [partition])

    def filesystem_uuid(self, partition: str) -> Optional[str]:
        output = self.runner.query(["blkid", "-o", "value", "-s", "UUID", partition])
        uuid = output.stdout.strip()
        return uuid if output.ok and uuid else None

    def set_filesystem_label(self, partition: str, label: str) -> None:
        self.runner.run(f"Setting filesystem label '{label}' on {partition}",
                        ["e2label", partition, label])

    def grow_filesystem(self, device: str) -> None:
        self.runner.run(f"Growing filesystem on {device}", ["resize2fs", device])

    # -----------------------------
    #  Mounts
    # -----------------------------
    def is_mounted(self, path: str) -> bool:
        target = os.path.normpath(path)
        return any(
            os.path.normpath(p.mountpoint) == target
            for p in psutil.disk_partitions(all=True)
        )

    def mount(self, path: str) -> None:
        self.runner.run(f"Mounting {path}", ["mount", path])

    def unmount(self, path: str) -> None:
        self.runner.run(f"Unmounting {path}", ["umount", "-lf", path])

    def ensure_mount_dir(self, path: str) -> None:
        if Path(path).is_dir():
            logger.debug(f"Mount point {path} already exists")
            return
        self.runner.run(f"Creating mount point {path}", ["mkdir", "-p", path])

    def remove_mount_dir(self, path: str) -> None:
        if not self.settings.is_managed_path(path):
            raise SafetyError(
                f"Refusing to remove {path}: not below {self.settings.mount_root}"
            )
        if not Path(path).exists() and not self.simulating:
            return
        self.runner.run(f"Removing mount point {path}", ["rm", "-rf", path])

    def move_mount_dir(self, old_path: str, new_path: str) -> None:
        if not Path(old_path).exists() and not self.simulating:
            self.ensure_mount_dir(new_path)
            return
        self.runner.run(f"Moving mount point {old_path} to {new_path}", ["mv", old_path, new_path])

    def leftover_mount_dirs(self) -> List[str]:
        root = self.settings.mount_root
        if not root.is_dir():
            return []
        return sorted(str(p) for p in root.iterdir() if p.is_dir())

    # -----------------------------
    #  Mount table
    # -----------------------------
    def _read_table(self) -> str:
        try:
            return self.settings.fstab_path.read_text()
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self.settings.fstab_path}: {e}")

    def _write_table(self, lines: List[str]) -> None:
        text = "\n".join(lines)
        if text and not text.endswith("\n"):
            text += "\n"
        self.settings.fstab_path.write_text(text)

    def mount_entries(self) -> List[FstabEntry]:
        return [entry for _, entry in parse_fstab(self._read_table()) if entry]

    def check_mount_table_writable(self) -> None:
        fstab = self.settings.fstab_path
        if not fstab.exists():
            self.runner.apply(f"Creating {fstab}", fstab.touch)
            return
        if not os.access(fstab, os.W_OK):
            raise ConfigurationError(
                f"{fstab} is not writable. Fix permissions or remount read-write."
            )

    def ensure_mount_entry(self, entry: FstabEntry) -> bool:
        rows = parse_fstab(self._read_table())
        kept = []
        for line, existing in rows:
            if existing and existing.mountpoint == entry.mountpoint:
                if existing.source == entry.source:
                    logger.debug(f"fstab entry for {entry.mountpoint} already present")
                    return False
                logger.warning(f"Replacing stale fstab entry: {line.strip()}")
                continue
            kept.append(line)
        kept.append(entry.format())
        self.runner.apply(f"Adding fstab entry for {entry.mountpoint}",
                          lambda: self._write_table(kept))
        return True

    def _remove_entries(self, description: str, predicate) -> int:
        rows = parse_fstab(self._read_table())
        kept = [line for line, entry in rows if not (entry and predicate(entry))]
        removed = len(rows) - len(kept)
        if removed:
            self.runner.apply(description, lambda: self._write_table(kept))
        return removed

    def remove_mount_entries(self, mountpoint: str) -> int:
        target = os.path.normpath(mountpoint)
        return self._remove_entries(
            f"Removing fstab entries for {mountpoint}",
            lambda e: os.path.normpath(e.mountpoint) == target,
        )

    def remove_mount_entries_under_root(self, keep: Iterable[str] = ()) -> int:
        kept = {os.path.normpath(p) for p in keep}
        return self._remove_entries(
            f"Removing fstab entries below {self.settings.mount_root}",
            lambda e: (self.settings.is_managed_path(e.mountpoint)
                       and os.path.normpath(e.mountpoint) not in kept),
        )

    # -----------------------------
    #  Network
    # -----------------------------
    def check_nfs_export(self, server: str, export: str) -> Optional[bool]:
        if not self.runner.which("showmount"):
            logger.warning("showmount not installed (nfs-common); skipping export check")
            return None
        output = self.runner.query(["showmount", "-e", "--no-headers", server])
        if not output.ok:
            logger.warning(f"NFS server {server} did not answer showmount: {output.stderr.strip()}")
            return None
        exports = [line.split()[0] for line in output.stdout.splitlines() if line.strip()]
        return export in exports
