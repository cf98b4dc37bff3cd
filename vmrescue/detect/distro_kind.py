# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/detect/distro_kind.py
from __future__ import annotations

from typing import Tuple

from ..disk.model import DistroFamily, DistroKind, DistroSubtype

# (substring of os-release NAME, family, subtype); evaluated top to bottom, first match wins.
DISTRO_TABLE: Tuple[Tuple[str, DistroFamily, DistroSubtype], ...] = (
    ("Ubuntu", DistroFamily.UBUNTU, DistroSubtype.UBUNTU),
    ("Debian", DistroFamily.DEBIAN, DistroSubtype.DEBIAN),
    ("Red Hat", DistroFamily.REDHAT, DistroSubtype.REDHAT),
    ("Oracle Linux", DistroFamily.REDHAT, DistroSubtype.ORACLELINUX),
    ("SLES", DistroFamily.SUSE, DistroSubtype.SLES),
    ("Azure Linux", DistroFamily.AZURELINUX, DistroSubtype.AZURELINUX),
    ("Linux Mariner", DistroFamily.AZURELINUX, DistroSubtype.MARINER),
    ("AlmaLinux", DistroFamily.REDHAT, DistroSubtype.ALMALINUX),
    ("Rocky Linux", DistroFamily.REDHAT, DistroSubtype.ROCKYLINUX),
    ("CentOS", DistroFamily.REDHAT, DistroSubtype.CENTOS),
)


def classify(name: str) -> DistroKind:
    for pattern, family, subtype in DISTRO_TABLE:
        if pattern in (name or ""):
            return DistroKind(family=family, subtype=subtype)
    return DistroKind()
