# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/disk/ade.py
"""
Azure Disk Encryption (ADE) unlock.

The LUKS header of an ADE OS disk lives on the unencrypted boot partition
(luks/osluksheader); the passphrase comes either from the operator
(base64, --ade-password) or from the "BEK VOLUME" key device the platform
attaches. Whatever the source, it is staged in a 0600 temp file that is
zeroed and unlinked on every exit path, and the in-memory copy is wiped.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List, Optional

import requests

from ..config.settings import RescueSettings
from ..core.exceptions import ConfigurationError, DetectionError, EncryptionError
from ..core.host import Host
from ..core.logger import Log
from ..core.utils import U
from .device import partition_path
from .lvm import LogicalVolumeResolver
from .model import (
    EFI_SYSTEM,
    LINUX_FS,
    LVM2_MEMBER,
    LVM_MEMBER,
    PartitionInfo,
    VolumeGroupMapping,
)
from .scanner import probe_filesystem


_B64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_B64_INDEX = {ch: i for i, ch in enumerate(_B64_ALPHABET)}


def _zero(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


def _b64decode_into(text: str) -> bytearray:
    """
    Strict base64 decode written straight into a bytearray; the binascii
    decoders only return immutable bytes, which can never be zeroed.
    """
    s = (text or "").strip()
    pad = len(s) - len(s.rstrip("="))
    if len(s) % 4 or pad > 2:
        raise ValueError("incorrect length or padding")
    body = s[: len(s) - pad]
    out = bytearray(len(body) * 6 // 8)
    acc = bits = pos = 0
    try:
        for offset, ch in enumerate(body):
            v = _B64_INDEX.get(ch)
            if v is None:
                raise ValueError(f"non-base64 character at offset {offset}")
            acc = ((acc << 6) | v) & 0xFFFF
            bits += 6
            if bits >= 8:
                bits -= 8
                out[pos] = (acc >> bits) & 0xFF
                pos += 1
    except ValueError:
        _zero(out)
        raise
    finally:
        acc = 0
    return out


class SecretBuffer:
    """Mutable byte buffer that can be overwritten in place."""

    def __init__(self, data: bytes = b""):
        self._buf = bytearray(data)

    @classmethod
    def adopt(cls, buf: bytearray) -> "SecretBuffer":
        """Take ownership of buf without copying it."""
        obj = cls()
        obj._buf = buf
        return obj

    @classmethod
    def from_base64(cls, text: str) -> "SecretBuffer":
        try:
            buf = _b64decode_into(text)
        except ValueError as e:
            raise ConfigurationError(msg="The ADE password is not valid base64", cause=e) from e
        if not buf:
            raise ConfigurationError(msg="The ADE password decodes to an empty value")
        return cls.adopt(buf)

    @property
    def data(self) -> bytearray:
        return self._buf

    @property
    def wiped(self) -> bool:
        return len(self._buf) == 0

    def wipe(self) -> None:
        _zero(self._buf)
        self._buf.clear()

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"SecretBuffer(<{len(self._buf)} bytes>)"

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()


class RepairContext(str, Enum):
    REPAIR_VM = "repair-vm"
    MANUAL = "manual"


def first_unresolved(partitions: List[PartitionInfo]) -> Optional[PartitionInfo]:
    return next((p for p in partitions if p.is_unresolved), None)


class EncryptedVolumeHandler:
    def __init__(
        self,
        h: Host,
        settings: RescueSettings,
        logger: logging.Logger,
        resolver: LogicalVolumeResolver,
    ):
        self.h = h
        self.settings = settings
        self.logger = logger
        self.resolver = resolver

    # ------------------------------------------------------------------
    # context
    # ------------------------------------------------------------------

    def detect_context(self) -> RepairContext:
        """
        A repair VM created by the platform carries a tag named like
        `repair_source`. Anything unexpected (no metadata service, bad JSON)
        falls back to the manual path.
        """
        s = self.settings
        try:
            resp = requests.get(s.imds_url, headers={"Metadata": "true"}, timeout=s.imds_timeout)
            resp.raise_for_status()
            tags = resp.json()["tagsList"]
            if not isinstance(tags, list):
                raise TypeError("tagsList is not a list")
            for tag in tags:
                if s.imds_tag in str(tag["name"]):
                    self.logger.info("Running in a repair VM context")
                    return RepairContext.REPAIR_VM
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            Log.warn(self.logger, f"Instance metadata not usable ({type(e).__name__}); assuming manual context")
            return RepairContext.MANUAL
        self.logger.info("Not running in a repair VM context")
        return RepairContext.MANUAL

    def release_platform_mapping(self, partitions: List[PartitionInfo]) -> None:
        """The repair VM auto-opened the disk at /investigateroot; undo that."""
        s = self.settings
        Log.step(self.logger, f"Releasing the platform mount at {s.investigate_root}")
        self.h.umount(s.investigate_root, recursive=True)
        if any(p.type_code == LVM_MEMBER for p in partitions):
            self.h.run(["vgchange", "-an", s.root_vg], check=False, stage="ade")
        self.h.run(["cryptsetup", "close", s.repair_mapper], check=False, stage="ade")

    # ------------------------------------------------------------------
    # key material
    # ------------------------------------------------------------------

    def read_bek_passphrase(self) -> SecretBuffer:
        s = self.settings
        res = self.h.run(["blkid", "-t", f"LABEL={s.bek_label}", "-o", "device"], check=False, stage="ade")
        lines = res.lines()
        if not lines:
            raise DetectionError(
                msg=f"There is no {s.bek_label} attached to the VM; pass --ade-password <base64 passphrase>",
                context={"label": s.bek_label},
            )
        device = lines[0].strip()
        self.h.makedirs(s.bek_mount)
        self.h.mount(device, s.bek_mount, stage="ade")
        try:
            key_path = f"{s.bek_mount}/{s.passphrase_file}"
            if not self.h.is_file(key_path):
                raise DetectionError(
                    msg=(
                        f"The pass phrase file {s.passphrase_file} does not exist; restart the VM so "
                        "the platform recreates it, or pass --ade-password"
                    ),
                    context={"device": device},
                )
            return SecretBuffer.adopt(self.h.read_into_secret(key_path))
        finally:
            self.h.umount(s.bek_mount, check=False)

    # ------------------------------------------------------------------
    # unlock
    # ------------------------------------------------------------------

    def _boot_partition(self, partitions: List[PartitionInfo]) -> PartitionInfo:
        for p in partitions:
            if p.type_code != EFI_SYSTEM and not p.is_unresolved:
                return p
        raise DetectionError(msg="No unencrypted boot partition holding the LUKS header was found")

    def luks_open(self, disk: str, partitions: List[PartitionInfo], target: PartitionInfo, key_file: str) -> None:
        s = self.settings
        boot = self._boot_partition(partitions)
        self.h.makedirs(s.bek_boot_mount)
        self.h.mount(partition_path(disk, boot.index), s.bek_boot_mount, stage="ade")
        try:
            cmd = [
                "cryptsetup",
                "luksOpen",
                "--key-file",
                key_file,
                "--header",
                f"{s.bek_boot_mount}/{s.luks_header}",
                partition_path(disk, target.index),
                s.rescue_mapper,
            ]
            res = self.h.run(cmd, check=False, stage="ade")
            if res.rc != 0:
                self.h.run(["cryptsetup", "close", s.rescue_mapper], check=False, stage="ade")
                raise EncryptionError(
                    msg="Enabling the encrypted device is not possible; verify the passphrase",
                    context={"cmd": U.pretty_cmd(cmd), "rc": res.rc, "stage": "ade"},
                )
        finally:
            self.h.umount(s.bek_boot_mount, check=False)

    def unlock(
        self,
        disk: str,
        partitions: List[PartitionInfo],
        secret: Optional[SecretBuffer] = None,
        *,
        on_open: Optional[Callable[[PartitionInfo], None]] = None,
    ) -> Optional[VolumeGroupMapping]:
        """
        Open the encrypted partition as /dev/mapper/<rescue_mapper> and
        classify what is inside. Returns the VG mapping for encrypted LVM.
        `secret` is wiped before this returns or raises.

        on_open(target) runs as soon as the mapper exists, before anything
        inside it is touched.
        """
        s = self.settings
        key_file: Optional[str] = None
        try:
            target = first_unresolved(partitions)
            if target is None:
                raise DetectionError(msg="No encrypted partition candidate found")

            if self.detect_context() is RepairContext.REPAIR_VM and self.h.is_mountpoint(s.investigate_root):
                self.release_platform_mapping(partitions)

            if secret is None:
                secret = self.read_bek_passphrase()
            key_file = self.h.write_private_file(secret.data, directory=s.tmp_dir)
            self.luks_open(disk, partitions, target, key_file)
        finally:
            if key_file is not None:
                try:
                    self.h.wipe_file(key_file)
                except OSError as e:
                    self.logger.error("Could not wipe key file %s: %s", key_file, e)
            if secret is not None:
                secret.wipe()
            secret = None

        target.encrypted = True
        Log.ok(self.logger, f"Encrypted partition {target.index} opened as {s.rescue_mapper_device}")
        if on_open is not None:
            on_open(target)
        return self._classify_unlocked(disk, target)

    def _classify_unlocked(self, disk: str, target: PartitionInfo) -> Optional[VolumeGroupMapping]:
        s = self.settings
        if target.type_code == LVM_MEMBER:
            target.filesystem = LVM2_MEMBER
            mapping = self.resolver.import_vg(s.rescue_mapper_device, encrypted=True)
            target.logical_volumes = self.resolver.list_logical_volumes(
                partition_path(disk, target.index), mapper_name=s.rescue_mapper
            )
            return mapping
        if target.type_code == LINUX_FS:
            fs = probe_filesystem(self.h, s.rescue_mapper_device, stage="ade")
            if not fs:
                raise DetectionError(
                    msg=f"No filesystem found on {s.rescue_mapper_device}",
                    context={"partition": target.index},
                )
            target.filesystem = fs
            return None
        raise DetectionError(
            msg=f"Unsupported partition type {target.type_code} for an encrypted partition",
            context={"partition": target.index},
        )
