# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/disk/model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

# GPT partition type codes (sgdisk short form)
EFI_SYSTEM = "EF00"
BIOS_BOOT = "EF02"
LVM_MEMBER = "8E00"
LINUX_FS = "8300"

# Filesystem strings as reported after probing.
UNRESOLVED = "Unresolved"  # no recognizable signature: most likely a LUKS header
LVM2_MEMBER = "LVM2_member"
VFAT = "vfat"


@dataclass
class LogicalVolume:
    name: str
    filesystem: str = ""

    def mount_name(self, vg: str = "rootvg") -> str:
        """rootvg-usrlv -> usr"""
        n = self.name
        if n.startswith(f"{vg}-"):
            n = n[len(vg) + 1:]
        if n.endswith("lv"):
            n = n[:-2]
        return n


@dataclass
class PartitionInfo:
    index: int
    type_code: str
    filesystem: str = UNRESOLVED
    contains_os: bool = False
    logical_volumes: Optional[List[LogicalVolume]] = None
    encrypted: bool = False

    @property
    def is_efi(self) -> bool:
        return self.type_code == EFI_SYSTEM

    @property
    def is_lvm_member(self) -> bool:
        return self.type_code == LVM_MEMBER

    @property
    def is_unresolved(self) -> bool:
        return self.filesystem == UNRESOLVED


@dataclass(frozen=True)
class DistroIdentity:
    name: str = ""
    version_id: str = ""


class Architecture(str, Enum):
    X86_64 = "x86_64"
    AARCH64 = "aarch64"


class DistroFamily(str, Enum):
    REDHAT = "RedHat"
    UBUNTU = "Ubuntu"
    SUSE = "Suse"
    AZURELINUX = "AzureLinux"
    DEBIAN = "Debian"
    UNDEFINED = "Undefined"


class DistroSubtype(str, Enum):
    REDHAT = "RedHat"
    ORACLELINUX = "OracleLinux"
    ALMALINUX = "AlmaLinux"
    ROCKYLINUX = "RockyLinux"
    CENTOS = "CentOS"
    UBUNTU = "Ubuntu"
    SLES = "Sles"
    AZURELINUX = "AzureLinux"
    MARINER = "Mariner"
    DEBIAN = "Debian"
    UNDEFINED = "Undefined"


@dataclass(frozen=True)
class DistroKind:
    family: DistroFamily = DistroFamily.UNDEFINED
    subtype: DistroSubtype = DistroSubtype.UNDEFINED


@dataclass
class VolumeGroupMapping:
    """What the LVM resolver changed on the host, so teardown can reverse it."""
    imported: bool = False  # host group parked under host_alias
    activated: bool = False
    clone_renamed: bool = False  # the clone now answers to the root VG name
    host_alias: Optional[str] = None
    boot_mounts: Dict[str, str] = field(default_factory=dict)  # mountpoint -> device


@dataclass
class Distro:
    disk: str
    partitions: List[PartitionInfo]
    identity: DistroIdentity = field(default_factory=DistroIdentity)
    is_encrypted: bool = False
    is_lvm: bool = False
    architecture: Architecture = Architecture.X86_64

    def os_partition(self) -> Optional[PartitionInfo]:
        return next((p for p in self.partitions if p.contains_os), None)

    def efi_partition(self) -> Optional[PartitionInfo]:
        return next((p for p in self.partitions if p.is_efi), None)

    def boot_partition(self) -> Optional[PartitionInfo]:
        """First partition that is neither OS, EFI nor an LVM member."""
        for p in self.partitions:
            if p.contains_os or p.is_efi or p.is_lvm_member:
                continue
            return p
        return None

    def logical_volumes(self) -> List[LogicalVolume]:
        for p in self.partitions:
            if p.logical_volumes:
                return list(p.logical_volumes)
        return []
