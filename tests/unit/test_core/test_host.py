# SPDX-License-Identifier: LGPL-3.0-or-later
import os
import stat
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from vmrescue.core.exceptions import ExternalToolError, MountError
from vmrescue.core.host import Host
from vmrescue.core.utils import U


def _cp(cmd, rc=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(cmd, rc, stdout, stderr)


class TestHostCommands(unittest.TestCase):
    def setUp(self):
        self.h = Host(Mock())

    @patch.object(U, "run_cmd")
    def test_failed_command_carries_context(self, run_cmd):
        run_cmd.return_value = _cp(["vgs"], 5, "", "first\nVolume group not found")

        with self.assertRaises(ExternalToolError) as cm:
            self.h.run(["vgs", "--noheadings"], stage="lvm")

        ctx = cm.exception.context
        self.assertEqual(ctx["cmd"], "vgs --noheadings")
        self.assertEqual(ctx["rc"], 5)
        self.assertEqual(ctx["stage"], "lvm")
        self.assertEqual(ctx["stderr"], "Volume group not found")

    @patch.object(U, "run_cmd")
    def test_unchecked_command_returns_result(self, run_cmd):
        run_cmd.return_value = _cp(["pvscan"], 3, "", "WARNING: x")

        res = self.h.run(["pvscan"], check=False)

        self.assertFalse(res.ok)
        self.assertEqual(res.rc, 3)
        self.assertEqual(res.stderr, "WARNING: x")

    @patch.object(U, "run_cmd")
    def test_missing_tool_always_raises(self, run_cmd):
        run_cmd.side_effect = FileNotFoundError("cryptsetup")

        with self.assertRaises(ExternalToolError) as cm:
            self.h.run(["cryptsetup", "close", "rescueencrypt"], check=False)

        self.assertEqual(cm.exception.context["rc"], 127)

    @patch.object(U, "run_cmd")
    def test_lines_skips_blank(self, run_cmd):
        run_cmd.return_value = _cp(["vgs"], 0, "  rootvg\n\n  oldvg\n")

        self.assertEqual(self.h.run(["vgs"]).lines(), ["  rootvg", "  oldvg"])


class TestHostMounts(unittest.TestCase):
    def setUp(self):
        self.h = Host(Mock())

    @patch.object(U, "run_cmd")
    def test_mount_argv(self, run_cmd):
        run_cmd.return_value = _cp([], 0)

        rec = self.h.mount("/dev/sdc2", "/tmp/assert", options=["nouuid"])

        self.assertEqual(run_cmd.call_args[0][1], ["mount", "-o", "nouuid", "/dev/sdc2", "/tmp/assert"])
        self.assertEqual(rec.options, ["nouuid"])

    @patch.object(U, "run_cmd")
    def test_bind_mount_argv(self, run_cmd):
        run_cmd.return_value = _cp([], 0)

        self.h.mount("/proc", "/srv/rescue-root/proc", bind=True)

        self.assertEqual(run_cmd.call_args[0][1], ["mount", "--bind", "/proc", "/srv/rescue-root/proc"])

    @patch.object(U, "run_cmd")
    def test_mount_failure_is_mount_error(self, run_cmd):
        run_cmd.return_value = _cp([], 32, "", "wrong fs type")

        with self.assertRaises(MountError) as cm:
            self.h.mount("/dev/sdc2", "/tmp/assert", stage="detect")

        self.assertEqual(cm.exception.context["rc"], 32)
        self.assertEqual(cm.exception.context["stage"], "detect")

    @patch.object(U, "run_cmd")
    def test_umount_unchecked(self, run_cmd):
        run_cmd.return_value = _cp([], 32, "", "not mounted")

        self.assertFalse(self.h.umount("/boot/efi", check=False))
        with self.assertRaises(MountError):
            self.h.umount("/boot/efi")

    @patch.object(U, "run_cmd")
    def test_recursive_umount(self, run_cmd):
        run_cmd.return_value = _cp([], 0)

        self.assertTrue(self.h.umount("/srv/rescue-root", recursive=True))
        self.assertEqual(run_cmd.call_args[0][1], ["umount", "-R", "/srv/rescue-root"])


class TestHostPrivateFiles(unittest.TestCase):
    def test_private_file_mode_and_wipe(self):
        h = Host(Mock())
        with tempfile.TemporaryDirectory() as td:
            path = h.write_private_file(bytearray(b"passphrase"), directory=td)

            self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o600)
            self.assertEqual(Path(path).read_bytes(), b"passphrase")

            h.wipe_file(path)

            self.assertFalse(os.path.exists(path))

    def test_read_into_secret_returns_mutable_buffer(self):
        h = Host(Mock())
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "LinuxPassPhraseFileName")
            Path(path).write_bytes(b"s3cret-pass")

            with patch.object(Host, "read_bytes", side_effect=AssertionError("bytes copy")):
                buf = h.read_into_secret(path)

        self.assertIsInstance(buf, bytearray)
        self.assertEqual(buf, bytearray(b"s3cret-pass"))

    def test_read_into_secret_empty_file(self):
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "empty")
            Path(path).write_bytes(b"")

            self.assertEqual(Host(Mock()).read_into_secret(path), bytearray())

    def test_wipe_missing_file_is_noop(self):
        Host(Mock()).wipe_file("/nonexistent/vmrescue-key")

    def test_listdir_missing(self):
        self.assertEqual(Host(Mock()).listdir("/nonexistent/dir"), [])


if __name__ == "__main__":
    unittest.main()
