# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/disk/device.py
"""
Recovery-disk resolution and partition device naming.

SCSI disks name partitions {disk}{n}; NVMe namespaces need a "p"
separator: /dev/nvme1n1 -> /dev/nvme1n1p2.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..config.settings import RescueSettings
from ..core.exceptions import ConfigurationError, DetectionError
from ..core.host import Host

SYS_CLASS_NVME = "/sys/class/nvme"
LOCAL_NVME_MODEL = "Microsoft NVMe Direct Disk"

_NVME_PART_RE = re.compile(r"^(nvme\d+n\d+)p\d+$")


def is_nvme(disk: str) -> bool:
    return os.path.basename(disk or "").startswith("nvme")


def partition_prefix(disk: str) -> str:
    return f"{disk}p" if is_nvme(disk) else disk


def partition_path(disk: str, index: int) -> str:
    return f"{partition_prefix(disk)}{index}"


def disk_name(disk: str) -> str:
    """/dev/sdc -> sdc"""
    return os.path.basename(disk.rstrip("/"))


@dataclass
class NvmeController:
    name: str
    model: str = "Unknown"
    namespaces: List[str] = field(default_factory=list)


def read_nvme_controllers(h: Host) -> List[NvmeController]:
    controllers: List[NvmeController] = []
    for name in h.listdir(SYS_CLASS_NVME):
        base = f"{SYS_CLASS_NVME}/{name}"
        if not h.is_dir(base):
            continue
        model_file = f"{base}/model"
        model = h.read_text(model_file).strip() if h.is_file(model_file) else "Unknown"
        namespaces = sorted(
            n for n in h.listdir(base) if n.startswith("nvme") and h.is_dir(f"{base}/{n}")
        )
        controllers.append(NvmeController(name=name, model=model or "Unknown", namespaces=namespaces))
    return sorted(controllers, key=lambda c: c.name)


def _efi_namespace(h: Host) -> Optional[str]:
    """Namespace holding the host's own /boot/efi, e.g. nvme0n1."""
    try:
        mounts = h.read_text("/proc/mounts")
    except OSError:
        return None
    found: Optional[str] = None
    for line in mounts.splitlines():
        parts = line.split()
        if len(parts) < 2 or parts[1] != "/boot/efi":
            continue
        m = _NVME_PART_RE.match(os.path.basename(parts[0]))
        if m:
            found = m.group(1)
    return found


def discover_nvme_disk(h: Host, logger: logging.Logger) -> Optional[str]:
    controllers = [c for c in read_nvme_controllers(h) if LOCAL_NVME_MODEL not in c.model]
    if not controllers:
        return None
    own = _efi_namespace(h)
    candidates = [n for n in controllers[0].namespaces if n != own]
    logger.debug("NVMe controller %s candidates=%s (host efi on %s)", controllers[0].name, candidates, own)
    if not candidates:
        return None
    if len(candidates) > 1:
        raise DetectionError(
            msg="More than one recovery disk found; pass --custom-recover-disk to choose one",
            context={"candidates": ",".join(candidates)},
        )
    return f"/dev/{candidates[0]}"


def resolve_recovery_disk(h: Host, settings: RescueSettings, logger: logging.Logger) -> str:
    """
    Resolve the disk under recovery to its kernel device path.

    Order: --custom-recover-disk, the platform SCSI LUN symlink, then NVMe
    discovery.
    """
    if settings.recover_disk:
        if not h.exists(settings.recover_disk):
            raise ConfigurationError(
                msg=f"Custom recovery disk does not exist: {settings.recover_disk}",
                context={"disk": settings.recover_disk},
            )
        disk = h.realpath(settings.recover_disk)
        logger.info("Using custom recovery disk %s", disk)
        return disk

    if h.exists(settings.rescue_disk):
        disk = h.realpath(settings.rescue_disk)
        logger.info("Recovery disk %s (via %s)", disk, settings.rescue_disk)
        return disk

    disk = discover_nvme_disk(h, logger)
    if disk:
        logger.info("Recovery disk %s (NVMe discovery)", disk)
        return disk

    raise ConfigurationError(
        msg="Unable to locate the recovery disk; pass --custom-recover-disk",
        context={"lun": settings.rescue_disk},
    )
