# SPDX-License-Identifier: LGPL-3.0-or-later
import unittest

from fakes.fake_host import FakeHost
from vmrescue.config.settings import RescueSettings
from vmrescue.core.exceptions import ExternalToolError
from vmrescue.disk.lvm import LogicalVolumeResolver

LSBLK_MOUNTS = "sda\nsda1 /boot\nsda2 /\nsda15 /boot/efi\nsdb1 /mnt\nsdc\nsdc4\n"

PVSCAN_TWO = (
    "  PV /dev/sda4   VG rootvg   lvm2 [<63.02 GiB / <40.00 GiB free]\n"
    "  PV /dev/sdc4   VG rootvg   lvm2 [<63.02 GiB / <40.00 GiB free]\n"
    "  Total: 2 [<126.04 GiB] / in use: 2 [<126.04 GiB] / in no VG: 0 [0   ]\n"
)
PVSCAN_STDERR = "  WARNING: Not using device /dev/sdc4 for PV abc, duplicate of /dev/sda4.\n"
PVSCAN_ONE = "  PV /dev/sdc4   VG rootvg   lvm2 [<63.02 GiB / <40.00 GiB free]\n  Total: 1 [<63.02 GiB]\n"


def _host(*, host_rootvg=True, pvscan=PVSCAN_TWO, vgs="  rootvg\n"):
    h = FakeHost()
    h.on("lsblk", "-ln", "-o", "NAME,MOUNTPOINT", stdout=LSBLK_MOUNTS)
    h.on("pvscan", stdout=pvscan, stderr=PVSCAN_STDERR if pvscan is PVSCAN_TWO else "")
    h.on("vgs", stdout=vgs)
    if host_rootvg:
        h.dirs.add("/dev/rootvg")
    h.mounts["/boot"] = "/dev/sda1"
    h.mounts["/boot/efi"] = "/dev/sda15"
    return h


class TestImportVolumeGroup(unittest.TestCase):
    def test_clone_import_sequence(self):
        h = _host()
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        mapping = r.import_vg("/dev/sdc4")

        self.assertTrue(mapping.imported)
        self.assertEqual(mapping.host_alias, "oldvg")
        self.assertEqual(mapping.boot_mounts, {"/boot": "/dev/sda1", "/boot/efi": "/dev/sda15"})
        order = [
            h.index_of("vgimportclone", "-n", "rescuevg", "/dev/sdc4"),
            h.index_of("vgscan", "--mknodes"),
            h.index_of("vgrename", "rootvg", "oldvg"),
            h.index_of("vgrename", "rescuevg", "rootvg"),
            h.commands.index(["vgchange", "-ay"]),
            h.index_of("umount", "/boot/efi"),
            h.index_of("umount", "/boot"),
            h.index_of("mount", "/dev/sda1", "/boot"),
            h.index_of("mount", "/dev/sda15", "/boot/efi"),
        ]
        self.assertTrue(all(i >= 0 for i in order), order)
        self.assertEqual(order, sorted(order))
        self.assertFalse(h.ran("vgchange", "-ay", "rescuevg"))

    def test_clone_import_encrypted_activates_clone(self):
        h = _host()
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        r.import_vg("/dev/mapper/rescueencrypt", encrypted=True)

        self.assertTrue(h.ran("vgimportclone", "-n", "rescuevg", "/dev/mapper/rescueencrypt"))
        self.assertLess(h.index_of("vgchange", "-ay", "rescuevg"), h.index_of("vgscan", "--mknodes"))

    def test_second_call_is_idempotent(self):
        h = _host()
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        first = r.import_vg("/dev/sdc4")
        before = list(h.commands)
        second = r.import_vg("/dev/sdc4")

        self.assertIs(first, second)
        self.assertEqual(h.commands, before)
        self.assertEqual(len(h.commands_matching("vgrename")), 2)

    def test_already_imported_by_earlier_run(self):
        h = _host(vgs="  oldvg\n  rootvg\n")
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        mapping = r.import_vg("/dev/sdc4")

        self.assertTrue(mapping.imported)
        self.assertEqual(mapping.host_alias, "oldvg")
        self.assertFalse(h.ran("vgimportclone"))
        self.assertFalse(h.ran("vgrename"))

    def test_single_rootvg_needs_no_import(self):
        h = _host(pvscan=PVSCAN_ONE)
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        mapping = r.import_vg("/dev/sdc4")

        self.assertFalse(mapping.imported)
        self.assertFalse(mapping.activated)
        self.assertFalse(h.ran("vgimportclone"))

    def test_host_without_rootvg_activates(self):
        h = _host(host_rootvg=False)
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        mapping = r.import_vg("/dev/sdc4")

        self.assertTrue(mapping.activated)
        self.assertTrue(h.ran("vgchange", "-ay", "rootvg"))
        self.assertFalse(h.ran("vgscan"))

    def test_host_without_rootvg_encrypted_makes_nodes(self):
        h = _host(host_rootvg=False)
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        r.import_vg("/dev/mapper/rescueencrypt", encrypted=True)

        self.assertTrue(h.ran("vgscan", "--mknodes"))


class TestImportFailures(unittest.TestCase):
    def test_clone_rename_failure_records_parked_host_group(self):
        h = _host()
        h.on("vgrename", "rescuevg", "rootvg", rc=5, stderr="Volume group \"rootvg\" already exists")
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        with self.assertRaises(ExternalToolError):
            r.import_vg("/dev/sdc4")

        self.assertIsNotNone(r.mapping)
        self.assertTrue(r.mapping.imported)
        self.assertFalse(r.mapping.clone_renamed)
        self.assertEqual(r.mapping.host_alias, "oldvg")
        self.assertFalse(h.ran("vgchange", "-ay"))

    def test_clone_import_failure_leaves_no_mapping(self):
        h = _host()
        h.on("vgimportclone", rc=5, stderr="Failed to import")
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        with self.assertRaises(ExternalToolError):
            r.import_vg("/dev/sdc4")

        self.assertIsNone(r.mapping)
        self.assertFalse(h.ran("vgrename"))

    def test_completed_clone_import_marks_rename(self):
        h = _host()
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        self.assertTrue(r.import_vg("/dev/sdc4").clone_renamed)


class TestListLogicalVolumes(unittest.TestCase):
    def test_partition_and_host_volumes_skipped(self):
        h = FakeHost()
        h.on(
            "lsblk", "-ln", "-o", "NAME,FSTYPE", "/dev/sdc4",
            stdout="sdc4 LVM2_member\nrootvg-tmplv xfs\nrootvg-usrlv xfs\nrootvg-swaplv\nrootvg-rootlv xfs\noldvg-rootlv xfs\n",
        )
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        lvs = r.list_logical_volumes("/dev/sdc4")

        self.assertEqual(
            [(lv.name, lv.filesystem) for lv in lvs],
            [("rootvg-tmplv", "xfs"), ("rootvg-usrlv", "xfs"), ("rootvg-swaplv", ""), ("rootvg-rootlv", "xfs")],
        )

    def test_mapper_row_skipped(self):
        h = FakeHost()
        h.on("lsblk", "-ln", "-o", "NAME,FSTYPE", stdout="sdc4\nrescueencrypt LVM2_member\nrootvg-rootlv ext4\n")
        r = LogicalVolumeResolver(h, RescueSettings(), h.logger)

        lvs = r.list_logical_volumes("/dev/sdc4", mapper_name="rescueencrypt")

        self.assertEqual([lv.name for lv in lvs], ["rootvg-rootlv"])


if __name__ == "__main__":
    unittest.main()
