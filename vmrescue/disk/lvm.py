# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/disk/lvm.py
"""
Volume-group import for the disk under recovery.

A repair host built from the same image as the broken VM carries a VG with
the same name (rootvg). The disk's group is clone-imported as rescuevg,
the host's group is parked as oldvg and the clone takes the canonical name.
Teardown reverses the renames from the VolumeGroupMapping recorded here.
"""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Set

from ..config.settings import RescueSettings
from ..core.host import Host
from ..core.logger import Log
from .model import LogicalVolume, VolumeGroupMapping

BOOT_MOUNTPOINTS = ("/boot", "/boot/efi")

_PVSCAN_NOISE = ("WARNING", "duplicate", "Total")


class LogicalVolumeResolver:
    def __init__(self, h: Host, settings: RescueSettings, logger: logging.Logger):
        self.h = h
        self.settings = settings
        self.logger = logger
        self.mapping: Optional[VolumeGroupMapping] = None

    # ------------------------------------------------------------------
    # host state
    # ------------------------------------------------------------------

    def record_boot_mounts(self) -> Dict[str, str]:
        res = self.h.run(["lsblk", "-ln", "-o", "NAME,MOUNTPOINT"], stage="lvm")
        mounts: Dict[str, str] = {}
        for line in res.lines():
            cols = line.split(None, 1)
            if len(cols) != 2:
                continue
            name, mountpoint = cols[0], cols[1].strip()
            if mountpoint in BOOT_MOUNTPOINTS:
                mounts[mountpoint] = f"/dev/{name}"
        self.logger.debug("Host boot mounts before import: %s", mounts)
        return mounts

    def volume_groups(self) -> Set[str]:
        res = self.h.run(["vgs", "--noheadings", "-o", "vg_name"], stage="lvm")
        return {ln.strip() for ln in res.lines()}

    def host_has_root_vg(self) -> bool:
        return self.h.is_dir(f"/dev/{self.settings.root_vg}")

    def _root_vg_pv_count(self) -> int:
        res = self.h.run(["pvscan"], check=False, stage="lvm")
        count = 0
        for line in (res.stdout + "\n" + res.stderr).splitlines():
            if any(noise in line for noise in _PVSCAN_NOISE):
                continue
            if self.settings.root_vg in line:
                count += 1
        return count

    # ------------------------------------------------------------------
    # import
    # ------------------------------------------------------------------

    def import_vg(self, pv_device: str, *, encrypted: bool = False) -> VolumeGroupMapping:
        """
        Make the disk's volume group visible as rootvg. Calling this again
        without a state change returns the same mapping and renames nothing.
        """
        if self.mapping is not None:
            self.logger.debug("Volume group already resolved: %s", self.mapping)
            return self.mapping

        s = self.settings
        boot_mounts = self.record_boot_mounts()
        self.h.run(["pvscan"], stage="lvm")
        groups = self.volume_groups()

        if s.rescue_vg in groups or s.old_vg in groups:
            self.logger.info("Volume group import already done (%s)", ", ".join(sorted(groups)))
            self.mapping = VolumeGroupMapping(
                imported=s.old_vg in groups,
                clone_renamed=s.old_vg in groups and s.rescue_vg not in groups,
                host_alias=s.old_vg if s.old_vg in groups else None,
                boot_mounts=boot_mounts,
            )
            return self.mapping

        if self.host_has_root_vg():
            count = self._root_vg_pv_count()
            self.logger.debug("Number of %s PVs found: %d", s.root_vg, count)
            if count == 1:
                self.logger.info("Only one %s present; no import needed", s.root_vg)
                self.mapping = VolumeGroupMapping(boot_mounts=boot_mounts)
            else:
                self._clone_import(pv_device, boot_mounts, encrypted=encrypted)
        else:
            self.h.run(["vgchange", "-ay", s.root_vg], stage="lvm")
            if encrypted:
                self.h.run(["vgscan", "--mknodes"], stage="lvm")
            self.mapping = VolumeGroupMapping(activated=True, boot_mounts=boot_mounts)

        Log.ok(self.logger, "Volume group ready", vg=s.root_vg, imported=self.mapping.imported)
        return self.mapping

    def _clone_import(self, pv_device: str, boot_mounts: Dict[str, str], *, encrypted: bool) -> None:
        s = self.settings
        Log.step(self.logger, f"Host uses {s.root_vg} too; importing {pv_device} as {s.rescue_vg}")
        self.h.run(["vgimportclone", "-n", s.rescue_vg, pv_device], stage="lvm")
        if encrypted:
            self.h.run(["vgchange", "-ay", s.rescue_vg], stage="lvm")
        self.h.run(["vgscan", "--mknodes"], stage="lvm")
        self.h.run(["vgrename", s.root_vg, s.old_vg], stage="lvm")
        # from here on teardown owes the host its group back
        self.mapping = VolumeGroupMapping(imported=True, host_alias=s.old_vg, boot_mounts=boot_mounts)
        self.h.run(["vgrename", s.rescue_vg, s.root_vg], stage="lvm")
        self.mapping.clone_renamed = True
        self.h.run(["vgchange", "-ay"], stage="lvm")
        self.restore_boot_mounts(boot_mounts)

    def restore_boot_mounts(self, boot_mounts: Dict[str, str]) -> None:
        """
        Activation can auto-mount the clone's boot volumes (same UUIDs) over
        the host's. Unmount child first, remount parent first.
        """
        for mp in ("/boot/efi", "/boot"):
            if mp in boot_mounts and not self.h.umount(mp, check=False):
                self.logger.warning("Could not unmount %s", mp)
        for mp in ("/boot", "/boot/efi"):
            dev = boot_mounts.get(mp)
            if dev:
                self.h.mount(dev, mp, stage="lvm")

    # ------------------------------------------------------------------
    # enumeration
    # ------------------------------------------------------------------

    def list_logical_volumes(self, partition_device: str, *, mapper_name: Optional[str] = None) -> List[LogicalVolume]:
        res = self.h.run(["lsblk", "-ln", "-o", "NAME,FSTYPE", partition_device], stage="lvm")
        own = os.path.basename(partition_device)
        skip_prefix = f"{self.settings.old_vg}-"
        volumes: List[LogicalVolume] = []
        for line in res.lines():
            cols = line.split()
            name = cols[0]
            if name in (own, mapper_name) or name.startswith(skip_prefix):
                continue
            volumes.append(LogicalVolume(name=name, filesystem=cols[1] if len(cols) > 1 else ""))
        self.logger.debug("Logical volumes on %s: %s", partition_device, [lv.name for lv in volumes])
        return volumes
