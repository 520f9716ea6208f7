"""Tests for command output and host file parsers."""
import json

import pytest

from pvestore.core.errors import ParseError
from pvestore.models.disk import SmartInfo
from pvestore.parsers.fstab import FstabEntry, parse_fstab, parse_fstab_line
from pvestore.parsers.holders import parse_mdadm_detail, parse_mdstat, parse_zpool_vdevs
from pvestore.parsers.lsblk import parse_lsblk
from pvestore.parsers.lvm import parse_lvs, parse_pvs, parse_vgs
from pvestore.parsers.pvesm import parse_pvesm_list
from pvestore.parsers.smart import parse_rotation, parse_smartctl
from pvestore.parsers.storage_cfg import parse_storage_cfg, rename_storage_block

STORAGE_CFG = """\
dir: local
\tpath /var/lib/vz
\tcontent iso,vztmpl,backup

lvmthin: local-lvm
\tthinpool data
\tvgname pve
\tcontent rootdir,images

dir: HDD-2A
\tpath /mnt/disks/HDD-2A
\tcontent images,iso
\tis_mountpoint 1
\tnodes pve2
\tshared 0

nfs: NFS-2A
\texport /srv/pve
\tpath /mnt/disks/NFS-2A
\tserver 10.0.0.5
\tcontent backup
\tnodes pve2,pve3
"""


class TestStorageCfg:
    """Test storage.cfg parsing and block rename."""

    def test_parses_blocks_in_order(self):
        """Every block becomes a unit, file order kept."""
        units = parse_storage_cfg(STORAGE_CFG)

        assert [u.id for u in units] == ["local", "local-lvm", "HDD-2A", "NFS-2A"]
        assert units[1].vgname == "pve"
        assert units[1].thinpool == "data"
        assert units[2].path == "/mnt/disks/HDD-2A"
        assert units[2].nodes == ["pve2"]
        assert units[3].server == "10.0.0.5"
        assert units[3].nodes == ["pve2", "pve3"]

    def test_node_locality(self):
        """Only units assigned to the node and not shared are node-local."""
        units = {u.id: u for u in parse_storage_cfg(STORAGE_CFG)}

        assert units["HDD-2A"].is_node_local("pve2")
        assert not units["HDD-2A"].is_node_local("pve3")
        assert not units["local"].is_node_local("pve2")

    def test_property_outside_block_is_error(self):
        """An indented line before any header is rejected."""
        with pytest.raises(ParseError):
            parse_storage_cfg("\tpath /tmp\n")

    def test_rename_keeps_other_lines(self):
        """Only the header and updated properties change."""
        renamed = rename_storage_block(STORAGE_CFG, "HDD-2A", "HDD-2C",
                                       {"path": "/mnt/disks/HDD-2C"})

        assert "dir: HDD-2C\n\tpath /mnt/disks/HDD-2C\n" in renamed
        assert "HDD-2A" not in renamed
        assert renamed.replace("HDD-2C", "HDD-2A") == STORAGE_CFG

    def test_rename_unknown_block(self):
        """Renaming a block that does not exist fails."""
        with pytest.raises(ParseError):
            rename_storage_block(STORAGE_CFG, "HDD-9Z", "HDD-9Y")


class TestLsblk:
    """Test lsblk JSON parsing."""

    def test_disks_with_partitions(self):
        """Whole disks carry their partitions; other device types are ignored."""
        output = json.dumps({"blockdevices": [
            {"name": "sdb", "path": "/dev/sdb", "size": 4000787030016, "type": "disk",
             "rota": True, "ro": False, "model": "WDC WD40EFRX", "serial": "WD-1",
             "state": "running", "mountpoint": None,
             "children": [
                 {"name": "sdb1", "path": "/dev/sdb1", "type": "part", "fstype": "ext4",
                  "label": "HDD-2A", "partlabel": "HDD-2A", "uuid": "abcd",
                  "mountpoint": "/mnt/disks/HDD-2A"},
             ]},
            {"name": "loop0", "path": "/dev/loop0", "size": 1024, "type": "loop"},
        ]})

        disks = parse_lsblk(output)

        assert len(disks) == 1
        disk = disks[0]
        assert disk.device == "/dev/sdb"
        assert disk.rotational is True
        assert disk.current_label == "HDD-2A"
        assert disk.all_mountpoints() == ["/mnt/disks/HDD-2A"]

    def test_stacked_mounts(self):
        """Volumes mounted on top of a partition or the bare disk count as its mounts."""
        output = json.dumps({"blockdevices": [
            {"name": "sdc", "path": "/dev/sdc", "size": 2000398934016, "type": "disk",
             "children": [
                 {"name": "sdc1", "path": "/dev/sdc1", "type": "part", "fstype": "LVM2_member",
                  "mountpoint": None,
                  "children": [
                      {"name": "data-srv", "path": "/dev/mapper/data-srv", "type": "lvm",
                       "mountpoint": "/srv"},
                  ]},
             ]},
            {"name": "sdd", "path": "/dev/sdd", "size": 2000398934016, "type": "disk",
             "fstype": "linux_raid_member",
             "children": [
                 {"name": "md0", "path": "/dev/md0", "type": "raid1", "mountpoints": ["/backup"],
                  "children": [
                      {"name": "md0-crypt", "type": "crypt", "mountpoints": ["/backup/vault"]},
                  ]},
             ]},
        ]})

        sdc, sdd = parse_lsblk(output)

        assert sdc.partitions[0].mountpoints == ["/srv"]
        assert "/srv" in sdc.all_mountpoints()
        assert sdd.mountpoints == ["/backup", "/backup/vault"]

    def test_old_lsblk_flags(self):
        """Older lsblk prints flags as "0"/"1" strings."""
        output = json.dumps({"blockdevices": [
            {"name": "nvme0n1", "size": "512110190592", "type": "disk", "rota": "0", "ro": "1"},
        ]})

        disk = parse_lsblk(output)[0]

        assert disk.device == "/dev/nvme0n1"
        assert disk.rotational is False
        assert disk.read_only is True

    def test_not_json(self):
        """Garbage output raises ParseError."""
        with pytest.raises(ParseError):
            parse_lsblk("lsblk: unknown column")


class TestLvmReports:
    """Test pvs/vgs/lvs parsing."""

    def test_pvs(self):
        pvs = parse_pvs("  /dev/sda3|pve\n  /dev/sdc1|\n")
        assert [(p.device, p.vg_name) for p in pvs] == [("/dev/sda3", "pve"), ("/dev/sdc1", "")]

    def test_vgs_sizes(self):
        vgs = parse_vgs("  pve|255550554112|16777216\n")
        assert vgs[0].size_bytes == 255550554112
        assert vgs[0].free_bytes == 16777216

    def test_lvs_thin_pool(self):
        lvs = parse_lvs("  data|pve|twi-a-tz--|150000000000\n  root|pve|-wi-ao----|68719476736\n")
        assert lvs[0].is_thin_pool
        assert not lvs[1].is_thin_pool
        assert lvs[1].full_name == "pve/root"

    def test_short_row(self):
        with pytest.raises(ParseError):
            parse_vgs("  pve|123\n")


class TestFstab:
    """Test fstab parsing."""

    def test_comments_and_defaults(self):
        """Comments parse to None; missing fields get defaults."""
        lines = parse_fstab("# static\nUUID=1 / ext4 errors=remount-ro 0 1\n/dev/sdc1 /data\n")

        assert lines[0][1] is None
        assert lines[1][1] == FstabEntry("UUID=1", "/", "ext4", "errors=remount-ro", "0", "1")
        assert lines[2][1].fstype == "auto"

    def test_format_round_trip_line(self):
        entry = FstabEntry("10.0.0.5:/srv", "/mnt/disks/NFS-2A", "nfs", "nofail,_netdev", "0", "0")
        assert parse_fstab_line(entry.format()) == entry

    def test_single_field_line(self):
        with pytest.raises(ParseError):
            parse_fstab_line("/dev/sdb1", 3)


class TestPvesm:
    """Test pvesm table parsing."""

    def test_list_content(self):
        output = ("Volid Format Type Size VMID\n"
                  "HDD-2A:100/vm-100-disk-0.qcow2 qcow2 images 34359738368 100\n"
                  "HDD-2A:iso/debian.iso iso iso 658505728\n")

        entries = parse_pvesm_list(output)

        assert entries[0].vmid == "100"
        assert entries[0].size_bytes == 34359738368
        assert entries[1].vmid is None

    def test_list_bad_size(self):
        with pytest.raises(ParseError):
            parse_pvesm_list("HDD-2A:iso/x.iso iso iso many\n")


class TestSmart:
    """Test smartctl parsing."""

    ATA = """\
Device Model:     WDC WD40EFRX-68N32N0
Rotation Rate:    5400 rpm
SMART overall-health self-assessment test result: PASSED
  9 Power_On_Hours          0x0032   052   052   000    Old_age   Always       -       35123
194 Temperature_Celsius     0x0022   117   100   000    Old_age   Always       -       33
"""

    NVME = """\
Model Number:                       Samsung SSD 970 EVO Plus 1TB
SMART overall-health self-assessment test result: FAILED!
Temperature:                        41 Celsius
Percentage Used:                    7%
Power On Hours:                     1,204
"""

    def test_ata_disk(self):
        info = parse_smartctl(self.ATA)

        assert info.model == "WDC WD40EFRX-68N32N0"
        assert info.rotation == "5400 rpm"
        assert info.health == "OK"
        assert info.power_on_hours == "35123h"
        assert info.temperature == "33C"

    def test_nvme_disk(self):
        info = parse_smartctl(self.NVME)

        assert info.health == "WARN"
        assert info.temperature == "41C"
        assert info.life_remaining == "93%"
        assert info.power_on_hours == "1204h"

    def test_solid_state_rotation(self):
        assert parse_rotation("Rotation Rate:    Solid State Device\n") == "SSD"
        assert parse_rotation("") == "unknown"

    def test_empty_output(self):
        assert parse_smartctl("") == SmartInfo()


class TestHolders:
    """Test md and ZFS membership parsing."""

    def test_mdstat(self):
        text = "Personalities : [raid1]\nmd0 : active raid1 sdc1[1] sdb1[0]\n      blocks\nunused devices: <none>\n"
        assert parse_mdstat(text) == ["md0"]

    def test_mdadm_detail(self):
        output = ("    Number   Major   Minor   RaidDevice State\n"
                  "       0       8       17        0      active sync   /dev/sdb1\n"
                  "       1       8       33        1      active sync   /dev/sdc1\n")
        assert parse_mdadm_detail(output) == ["/dev/sdb1", "/dev/sdc1"]

    def test_zpool_vdevs(self):
        output = ("  pool: tank\n config:\n\tNAME STATE\n\ttank ONLINE\n"
                  "\t  /dev/sdd1 ONLINE 0 0 0\n")
        assert parse_zpool_vdevs(output) == ["/dev/sdd1"]
