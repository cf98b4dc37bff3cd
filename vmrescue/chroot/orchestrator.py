# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/chroot/orchestrator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config.settings import RescueSettings
from ..core.exceptions import MountError
from ..core.host import Host, MountRecord
from ..core.logger import Log
from ..disk.device import partition_path
from ..disk.model import Distro, LogicalVolume, PartitionInfo

# Filesystems that never get a mountpoint in the tree.
_UNMOUNTABLE = ("", "swap")


@dataclass
class ChrootTree:
    root: str
    mounts: List[MountRecord] = field(default_factory=list)

    @property
    def targets(self) -> List[str]:
        return [m.target for m in self.mounts]


def _options_for(fs: str) -> List[str]:
    # target and repair disk may share XFS UUIDs
    return ["nouuid"] if fs == "xfs" else []


class MountOrchestrator:
    """
    Assemble the chroot tree under settings.rescue_root.

    Order: root (partition or rootlv), sibling LVs, /boot, /boot/efi, then
    the support filesystems bind-mounted from the host.
    """

    def __init__(self, h: Host, settings: RescueSettings, logger: logging.Logger):
        self.h = h
        self.settings = settings
        self.logger = logger

    def prepare(self, distro: Distro) -> ChrootTree:
        unresolved = [p.index for p in distro.partitions if p.is_unresolved]
        if unresolved:
            raise MountError(
                msg="Partitions with an unresolved filesystem cannot be mounted",
                context={"partitions": ",".join(str(i) for i in unresolved)},
            )
        os_part = distro.os_partition()
        if os_part is None:
            raise MountError(msg="No OS partition recorded; nothing to mount")

        tree = ChrootTree(root=self.settings.rescue_root)
        self.h.makedirs(tree.root)

        if os_part.logical_volumes:
            self._mount_logical_volumes(tree, os_part.logical_volumes)
        else:
            self._mount_root_partition(tree, distro, os_part)

        boot = distro.boot_partition()
        if boot is not None:
            self._mount(tree, partition_path(distro.disk, boot.index), f"{tree.root}/boot", _options_for(boot.filesystem))
        efi = distro.efi_partition()
        if efi is not None:
            self._mount(tree, partition_path(distro.disk, efi.index), f"{tree.root}/boot/efi", [])

        self._mount_support_filesystems(tree)
        Log.ok(self.logger, f"Chroot tree ready at {tree.root}", mounts=len(tree.mounts))
        return tree

    def _mount(self, tree: ChrootTree, source: str, target: str, options: List[str], *, bind: bool = False) -> None:
        rec = self.h.mount(source, target, options=options, bind=bind, stage="chroot")
        tree.mounts.append(rec)

    def _mount_root_partition(self, tree: ChrootTree, distro: Distro, os_part: PartitionInfo) -> None:
        if os_part.encrypted:
            source = self.settings.rescue_mapper_device
        else:
            source = partition_path(distro.disk, os_part.index)
        self._mount(tree, source, tree.root, _options_for(os_part.filesystem))

    def _mount_logical_volumes(self, tree: ChrootTree, volumes: List[LogicalVolume]) -> None:
        vg = self.settings.root_vg
        root_name = f"{vg}-rootlv"
        skip = (root_name, f"{vg}-tmplv")

        root_lv: Optional[LogicalVolume] = next((lv for lv in volumes if lv.name == root_name), None)
        if root_lv is None:
            raise MountError(msg=f"Logical volume {root_name} not found", context={"volumes": ",".join(v.name for v in volumes)})
        self._mount(tree, f"/dev/mapper/{root_lv.name}", tree.root, _options_for(root_lv.filesystem))

        for lv in volumes:
            if lv.name in skip:
                continue
            if lv.filesystem in _UNMOUNTABLE:
                self.logger.debug("Not mounting %s (%s)", lv.name, lv.filesystem or "no filesystem")
                continue
            self._mount(tree, f"/dev/mapper/{lv.name}", f"{tree.root}/{lv.mount_name(vg)}", _options_for(lv.filesystem))

    def _mount_support_filesystems(self, tree: ChrootTree) -> None:
        for fs in self.settings.support_filesystems:
            self.h.makedirs(f"{tree.root}/{fs}")
        for fs in self.settings.support_filesystems:
            self._mount(tree, f"/{fs}", f"{tree.root}/{fs}", [], bind=True)
