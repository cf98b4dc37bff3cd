# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/disk/fsck.py
from __future__ import annotations

import logging

from ..config.settings import RescueSettings
from ..core.exceptions import CheckError, ExternalToolError
from ..core.host import Host
from ..core.utils import U
from .model import VFAT

# xfs_repair from older distributions cannot parse newer v5 features; not a corruption
XFS_UNSUPPORTED_FEATURES = "Found unsupported filesystem features"

EXT_FAMILY = ("ext2", "ext3", "ext4")


class FilesystemChecker:
    def __init__(self, h: Host, settings: RescueSettings, logger: logging.Logger):
        self.h = h
        self.settings = settings
        self.logger = logger

    def check(self, device: str, filesystem: str) -> None:
        if filesystem == "xfs":
            self._check_xfs(device)
        elif filesystem in EXT_FAMILY:
            self._check_ext(device, filesystem)
        elif filesystem in (VFAT, "fat16", "fat32"):
            self._check_vfat(device)
        else:
            self.logger.debug("No consistency check for %s (%s)", device, filesystem or "unknown")
            return
        self.logger.info("File system check on %s finished", device)

    def _check_xfs(self, device: str) -> None:
        self.logger.info("fsck for XFS on %s", device)
        # mount/umount replays a dirty log before xfs_repair looks at it
        self.h.makedirs(self.settings.assert_path)
        self.h.mount(device, self.settings.assert_path, options=["nouuid"], stage="fsck")
        self.h.umount(self.settings.assert_path)

        cmd = ["xfs_repair", device]
        res = self.h.run(cmd, check=False, stage="fsck")
        if res.rc == 0:
            return
        if XFS_UNSUPPORTED_FEATURES in res.stderr:
            self.logger.warning("xfs_repair on %s: %s; continuing", device, XFS_UNSUPPORTED_FEATURES)
            return
        raise CheckError(
            msg=f"xfs_repair could not repair {device}",
            context={"cmd": U.pretty_cmd(cmd), "rc": res.rc, "stage": "fsck"},
        )

    def _check_ext(self, device: str, filesystem: str) -> None:
        self.logger.info("fsck for %s on %s", filesystem, device)
        cmd = [f"fsck.{filesystem}", "-p", device]
        res = self.h.run(cmd, check=False, stage="fsck")
        ctx = {"cmd": U.pretty_cmd(cmd), "rc": res.rc, "stage": "fsck"}
        if res.rc in (0, 1, 2):
            if res.rc:
                self.logger.info("fsck.%s corrected errors on %s (rc=%d)", filesystem, device, res.rc)
            return
        if res.rc == 4:
            raise CheckError(
                msg=f"Partition {device} can not be repaired in auto mode; manual repair required",
                context=ctx,
            )
        if res.rc >= 8:
            raise ExternalToolError(msg=f"fsck.{filesystem} failed on {device}", context=ctx)
        raise CheckError(msg=f"fsck.{filesystem} left errors on {device}", context=ctx)

    def _check_vfat(self, device: str) -> None:
        self.logger.info("fsck for vfat on %s", device)
        cmd = ["fsck.vfat", "-p", device]
        res = self.h.run(cmd, check=False, stage="fsck")
        if res.rc in (0, 1):
            return
        raise CheckError(
            msg=f"fsck.vfat failed on {device}",
            context={"cmd": U.pretty_cmd(cmd), "rc": res.rc, "stage": "fsck"},
        )
