# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/detect/identifier.py
from __future__ import annotations

import logging
from typing import List, Optional

from ..config.settings import RescueSettings
from ..core.exceptions import DetectionError
from ..core.host import Host
from ..core.logger import Log
from ..core.utils import U
from ..disk.device import partition_path
from ..disk.fsck import FilesystemChecker
from ..disk.model import (
    LVM2_MEMBER,
    Architecture,
    Distro,
    DistroIdentity,
    LogicalVolume,
    PartitionInfo,
)

# Binaries whose ELF header tells the target's CPU architecture.
ARCH_PROBE_CANDIDATES = ("usr/bin/bash", "bin/bash", "usr/bin/ls", "bin/ls")

ELF_MAGIC = b"\x7fELF"
EM_X86_64 = 62
EM_AARCH64 = 183


def parse_os_release(text: str) -> DistroIdentity:
    name = ""
    version_id = ""
    for raw in (text or "").splitlines():
        line = raw.strip()
        if line.startswith("NAME="):
            name = U.strip_quotes(line[len("NAME="):])
        elif line.startswith("VERSION_ID="):
            version_id = U.strip_quotes(line[len("VERSION_ID="):])
    return DistroIdentity(name=name, version_id=version_id)


def elf_machine(header: bytes) -> int:
    if len(header) < 20 or header[:4] != ELF_MAGIC:
        raise DetectionError(msg="Not an ELF binary")
    order = "big" if header[5] == 2 else "little"
    return int.from_bytes(header[18:20], order)


def probe_architecture(h: Host, root: str, logger: logging.Logger) -> Architecture:
    for rel in ARCH_PROBE_CANDIDATES:
        path = f"{root}/{rel}"
        # absolute symlinks would resolve against the host root
        if h.is_symlink(path) or not h.is_file(path):
            continue
        machine = elf_machine(h.read_bytes(path, 20))
        if machine == EM_X86_64:
            arch = Architecture.X86_64
        elif machine == EM_AARCH64:
            arch = Architecture.AARCH64
        else:
            raise DetectionError(
                msg=f"Unsupported CPU architecture (ELF e_machine={machine})",
                context={"binary": rel},
            )
        logger.debug("Architecture %s (from %s)", arch.value, rel)
        return arch
    Log.warn(logger, "No binary found to probe the architecture; assuming x86_64")
    return Architecture.X86_64


def host_root_is_lvm(h: Host) -> bool:
    src = h.run(["findmnt", "-n", "-o", "SOURCE", "/"], check=False, stage="detect").stdout.strip()
    if not src:
        return False
    kind = h.run(["lsblk", "-no", "TYPE", src], check=False, stage="detect").stdout.strip()
    return kind.splitlines()[0].strip() == "lvm" if kind else False


def host_version_id(h: Host) -> str:
    try:
        return parse_os_release(h.read_text("/etc/os-release")).version_id
    except OSError:
        return ""


def check_lvm_host_guard(h: Host, settings: RescueSettings, logger: logging.Logger) -> None:
    """
    Recovering an LVM disk from an LVM-rooted host only works on a few
    known host releases; refuse the rest before touching any VG.
    """
    if not host_root_is_lvm(h):
        return
    version = host_version_id(h)
    if version in settings.lvm_safe_host_versions:
        logger.debug("LVM-rooted host %s is allowed to recover LVM disks", version)
        return
    raise DetectionError(
        msg=(
            f"The repair host root is on LVM and its version {version or 'unknown'} "
            "is not supported for recovering an LVM disk"
        ),
        context={"host_version": version, "allowed": ",".join(settings.lvm_safe_host_versions)},
    )


class DistributionIdentifier:
    def __init__(self, h: Host, settings: RescueSettings, logger: logging.Logger, checker: Optional[FilesystemChecker] = None):
        self.h = h
        self.settings = settings
        self.logger = logger
        self.checker = checker or FilesystemChecker(h, settings, logger)

    def identify(self, distro: Distro) -> Optional[DistroIdentity]:
        """
        Find the OS partition. Sets contains_os on it and fills in
        distro.architecture / distro.is_lvm. Returns None for a data disk.
        """
        scratch = self.settings.assert_path
        self.h.makedirs(scratch)
        try:
            for p in distro.partitions:
                if p.is_efi:
                    continue
                if p.is_lvm_member and p.filesystem == LVM2_MEMBER:
                    self.logger.debug("Found LVM partition %d; reading identity from its volumes", p.index)
                    identity = self._identify_lvm(p, distro)
                    distro.is_lvm = True
                    return identity
                if p.is_unresolved:
                    Log.warn(self.logger, f"Skipping partition {p.index}: no recognizable filesystem")
                    continue
                identity = self._identify_partition(p, distro)
                if identity is not None:
                    return identity
            return None
        finally:
            try:
                self.h.rmdir(scratch)
            except OSError as e:
                self.logger.debug("Could not remove %s: %s", scratch, e)

    def _mount_options(self, fs: str) -> List[str]:
        return ["nouuid"] if fs == "xfs" else []

    def _identify_partition(self, p: PartitionInfo, distro: Distro) -> Optional[DistroIdentity]:
        s = self.settings
        device = s.rescue_mapper_device if p.encrypted else partition_path(distro.disk, p.index)
        self.checker.check(device, p.filesystem)
        self.logger.debug("Probing partition %d (%s) at %s", p.index, device, s.assert_path)
        self.h.mount(device, s.assert_path, options=self._mount_options(p.filesystem), stage="detect")
        try:
            identity: Optional[DistroIdentity] = None
            if self.h.is_file(s.os_release_path):
                identity = parse_os_release(self.h.read_text(s.os_release_path))
                p.contains_os = True
                distro.architecture = probe_architecture(self.h, s.assert_path, self.logger)
        except BaseException:
            self.h.umount(s.assert_path, check=False)
            raise
        self.h.umount(s.assert_path)
        if identity is not None:
            Log.ok(self.logger, f"OS partition {p.index}: {identity.name} {identity.version_id}")
        return identity

    def _find_lv(self, volumes: List[LogicalVolume], needle: str) -> Optional[LogicalVolume]:
        return next((lv for lv in volumes if needle in lv.name), None)

    def _identify_lvm(self, p: PartitionInfo, distro: Distro) -> DistroIdentity:
        s = self.settings
        volumes = p.logical_volumes or []
        if not volumes:
            raise DetectionError(
                msg="No logical volumes found; this is not a supported LVM setup",
                context={"partition": p.index},
            )
        root_lv = self._find_lv(volumes, "rootlv")
        if root_lv is None:
            raise DetectionError(msg="No rootlv found in LVM; this is not a supported LVM setup")

        usr_lv = self._find_lv(volumes, "usrlv")
        # checks run before anything is mounted on the scratch path
        self.checker.check(s.root_lv_device, root_lv.filesystem)
        if usr_lv is not None:
            self.checker.check(s.usr_lv_device, usr_lv.filesystem)

        self.h.mount(s.root_lv_device, s.assert_path, options=self._mount_options(root_lv.filesystem), stage="detect")
        try:
            if usr_lv is not None:
                self.h.mount(
                    s.usr_lv_device,
                    f"{s.assert_path}/usr",
                    options=self._mount_options(usr_lv.filesystem),
                    stage="detect",
                )
            if not self.h.is_file(s.os_release_path):
                raise DetectionError(msg="No os-release file found on the root logical volume")
            identity = parse_os_release(self.h.read_text(s.os_release_path))
            p.contains_os = True
            distro.architecture = probe_architecture(self.h, s.assert_path, self.logger)
        except BaseException:
            self.h.umount(s.assert_path, recursive=True, check=False)
            raise
        self.h.umount(s.assert_path, recursive=True)
        Log.ok(self.logger, f"OS on LVM partition {p.index}: {identity.name} {identity.version_id}")
        return identity
