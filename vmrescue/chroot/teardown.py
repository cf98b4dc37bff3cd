# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/chroot/teardown.py
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from ..config.settings import RescueSettings
from ..core.host import Host
from ..core.logger import Log
from ..disk.device import disk_name, is_nvme
from ..disk.model import Distro, VolumeGroupMapping
from ..disk.lvm import LogicalVolumeResolver


class Teardown:
    """
    Undo what the run did to the host: the chroot tree, the decryption
    mapping and the volume-group renames.

    Every step is best effort. A failed step is logged and recorded in
    `errors`; the remaining steps still run and nothing is raised.
    """

    def __init__(self, h: Host, settings: RescueSettings, logger: logging.Logger):
        self.h = h
        self.settings = settings
        self.logger = logger
        self.errors: List[Tuple[str, str]] = []

    def _step(self, label: str, fn: Callable[[], object]) -> bool:
        try:
            fn()
            self.logger.debug("Teardown: %s done", label)
            return True
        except Exception as e:
            self.errors.append((label, str(e)))
            self.logger.error("Teardown: %s failed: %s", label, e)
            return False

    def _run(self, *cmd: str) -> None:
        self.h.run(list(cmd), stage="teardown")

    def run(self, distro: Optional[Distro], mapping: Optional[VolumeGroupMapping] = None) -> List[Tuple[str, str]]:
        s = self.settings
        self.errors = []
        Log.step(self.logger, "Tearing down the recovery environment")

        self._step("chdir /", lambda: self.h.chdir("/"))
        self._step(f"umount -R {s.rescue_root}", self._umount_tree)

        if distro is not None and distro.is_encrypted:
            self._teardown_encrypted(distro, mapping)
        elif mapping is not None and mapping.imported and distro is not None:
            self._teardown_imported(distro, mapping)
        elif mapping is not None and mapping.activated:
            self._step(f"vgchange -an {s.root_vg}", lambda: self._run("vgchange", "-an", s.root_vg))

        if self.errors:
            Log.warn(self.logger, f"Teardown finished with {len(self.errors)} error(s)")
        else:
            Log.ok(self.logger, "Teardown finished")
        return list(self.errors)

    def _umount_tree(self) -> None:
        root = self.settings.rescue_root
        if self.h.is_mountpoint(root):
            self.h.umount(root, recursive=True)

    def _teardown_encrypted(self, distro: Distro, mapping: Optional[VolumeGroupMapping]) -> None:
        s = self.settings
        # the mapper only closes once nothing on it is active
        if distro.logical_volumes() or (mapping is not None and (mapping.activated or mapping.clone_renamed)):
            self._step(f"vgchange -an {s.root_vg}", lambda: self._run("vgchange", "-an", s.root_vg))
        elif mapping is not None and mapping.imported:
            self._step(f"vgchange -an {s.rescue_vg}", lambda: self._run("vgchange", "-an", s.rescue_vg))
        self._step(f"cryptsetup close {s.rescue_mapper}", lambda: self._run("cryptsetup", "close", s.rescue_mapper))
        alias = (mapping.host_alias if mapping is not None else None) or s.old_vg
        if (mapping is not None and mapping.imported) or self.h.is_dir(f"/dev/{alias}"):
            self._step(f"vgrename {alias} {s.root_vg}", lambda: self._run("vgrename", alias, s.root_vg))

    def _teardown_imported(self, distro: Distro, mapping: VolumeGroupMapping) -> None:
        s = self.settings
        alias = mapping.host_alias or s.old_vg
        if mapping.clone_renamed:
            self._step(f"vgrename {s.root_vg} {s.rescue_vg}", lambda: self._run("vgrename", s.root_vg, s.rescue_vg))
        self._step(f"vgchange -an {s.rescue_vg}", lambda: self._run("vgchange", "-an", s.rescue_vg))
        self._step("detach recovered disk", lambda: self.detach_disk(distro.disk))
        self._step(f"vgrename {alias} {s.root_vg}", lambda: self._run("vgrename", alias, s.root_vg))
        self._step("bus rescan", lambda: self.rescan_bus(distro.disk))
        self._step("udevadm trigger", lambda: self._run("udevadm", "trigger"))
        resolver = LogicalVolumeResolver(self.h, s, self.logger)
        self._step("restore boot mounts", lambda: resolver.restore_boot_mounts(mapping.boot_mounts))

    def detach_disk(self, disk: str) -> None:
        """Drop the recovered disk from the bus so its clone VG disappears."""
        self.h.write_text(f"/sys/block/{disk_name(disk)}/device/delete", "1")

    def rescan_bus(self, disk: str) -> None:
        if is_nvme(disk):
            for ctrl in self.h.listdir("/sys/class/nvme"):
                path = f"/sys/class/nvme/{ctrl}/rescan_controller"
                if self.h.exists(path):
                    self.h.write_text(path, "1")
            return
        self.h.write_text(f"/sys/class/scsi_host/{self.settings.scsi_host}/scan", "- - -")
