"""LVM, md RAID and ZFS operations."""
from pathlib import Path
from typing import List, Optional

from pvestore.core.errors import StepError
from pvestore.core.logger import get_logger
from pvestore.core.runner import CommandRunner
from pvestore.models.volume import (
    LogicalVolume,
    MdArray,
    PhysicalVolume,
    VolumeGroup,
    ZfsPool,
)
from pvestore.parsers.holders import (
    parse_mdadm_detail,
    parse_mdstat,
    parse_zpool_list,
    parse_zpool_vdevs,
)
from pvestore.parsers.lvm import LVS_ARGS, PVS_ARGS, VGS_ARGS, parse_lvs, parse_pvs, parse_vgs
from pvestore.services.base import VolumeManager

logger = get_logger(__name__)

MDSTAT_PATH = Path("/proc/mdstat")


class HostVolumeManager(VolumeManager):
    """Manages LVM objects and foreign holders (md, ZFS) on the host."""

    def __init__(self, runner: CommandRunner, mdstat_path: Path = MDSTAT_PATH):
        self.runner = runner
        self.mdstat_path = mdstat_path

    @property
    def simulating(self) -> bool:
        return self.runner.whatif

    def _report(self, argv: List[str], description: str) -> str:
        output = self.runner.query(argv)
        if output.returncode == 127:
            logger.debug(f"{argv[0]} not installed; assuming no LVM")
            return ""
        if not output.ok:
            raise StepError(description, argv, output.returncode, output.stderr)
        return output.stdout

    def list_physical_volumes(self) -> List[PhysicalVolume]:
        return parse_pvs(self._report(PVS_ARGS, "Listing physical volumes"))

    def list_volume_groups(self) -> List[VolumeGroup]:
        return parse_vgs(self._report(VGS_ARGS, "Listing volume groups"))

    def list_logical_volumes(self, vg_name: Optional[str] = None) -> List[LogicalVolume]:
        argv = LVS_ARGS + ([vg_name] if vg_name else [])
        output = self.runner.query(argv)
        if not output.ok:
            if vg_name:
                # lvs exits non-zero for a missing VG
                return []
            raise StepError("Listing logical volumes", argv, output.returncode, output.stderr)
        return parse_lvs(output.stdout)

    def create_physical_volume(self, device: str) -> None:
        self.runner.run(f"Creating physical volume on {device}", ["pvcreate", "-ff", "-y", device])

    def create_volume_group(self, vg_name: str, device: str) -> None:
        self.runner.run(f"Creating volume group {vg_name} on {device}", ["vgcreate", vg_name, device])

    def create_thin_pool(self, vg_name: str, pool_name: str, size_bytes: int) -> None:
        self.runner.run(
            f"Creating thin pool {vg_name}/{pool_name} ({size_bytes // (1024 * 1024)} MiB)",
            ["lvcreate", "-y", "--type", "thin-pool", "-L", f"{size_bytes}b", "-n", pool_name, vg_name],
        )

    def remove_logical_volume(self, vg_name: str, lv_name: str) -> None:
        self.runner.run(f"Removing logical volume {vg_name}/{lv_name}",
                        ["lvremove", "-y", f"{vg_name}/{lv_name}"])

    def deactivate_volume_group(self, vg_name: str) -> None:
        self.runner.run(f"Deactivating volume group {vg_name}", ["vgchange", "-an", vg_name])

    def remove_volume_group(self, vg_name: str) -> None:
        self.runner.run(f"Removing volume group {vg_name}", ["vgremove", "-y", vg_name])

    def remove_physical_volume(self, device: str) -> None:
        self.runner.run(f"Removing physical volume {device}", ["pvremove", "-y", device])

    def rename_volume_group(self, old_name: str, new_name: str) -> None:
        self.runner.run(f"Renaming volume group {old_name} to {new_name}",
                        ["vgrename", old_name, new_name])

    def rename_logical_volume(self, vg_name: str, old_name: str, new_name: str) -> None:
        self.runner.run(f"Renaming logical volume {vg_name}/{old_name} to {new_name}",
                        ["lvrename", vg_name, old_name, new_name])

    def extend_logical_volume(self, lv_path: str) -> None:
        self.runner.run(f"Extending {lv_path} into free space",
                        ["lvextend", "-l", "+100%FREE", lv_path])

    # -----------------------------
    #  md RAID
    # -----------------------------
    def list_md_arrays(self) -> List[MdArray]:
        if not self.runner.which("mdadm") or not self.mdstat_path.exists():
            return []
        arrays = []
        for name in parse_mdstat(self.mdstat_path.read_text()):
            detail = self.runner.query(["mdadm", "--detail", f"/dev/{name}"])
            arrays.append(MdArray(name, parse_mdadm_detail(detail.stdout)))
        return arrays

    def stop_md_array(self, array: MdArray) -> None:
        self.runner.run(f"Stopping md array {array.device}", ["mdadm", "--stop", array.device])

    def zero_md_superblock(self, device: str) -> None:
        self.runner.run(f"Clearing md superblock on {device}",
                        ["mdadm", "--zero-superblock", "-f", device])

    # -----------------------------
    #  ZFS
    # -----------------------------
    def list_zfs_pools(self) -> List[ZfsPool]:
        if not self.runner.which("zpool"):
            return []
        pools = []
        for name in parse_zpool_list(self.runner.query(["zpool", "list", "-H", "-o", "name"]).stdout):
            status = self.runner.query(["zpool", "status", "-P", name])
            pools.append(ZfsPool(name, parse_zpool_vdevs(status.stdout)))
        return pools

    def destroy_zfs_pool(self, pool_name: str) -> None:
        self.runner.run(f"Destroying ZFS pool {pool_name}", ["zpool", "destroy", pool_name])
