# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/disk/scanner.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from ..core.exceptions import DetectionError
from ..core.host import Host
from ..core.logger import Log
from .device import partition_path
from .model import BIOS_BOOT, EFI_SYSTEM, LVM2_MEMBER, UNRESOLVED, VFAT, PartitionInfo

# (substring in lower-cased `file -sL` output, filesystem) - first match wins
_SIGNATURES: Tuple[Tuple[str, str], ...] = (
    ("xfs", "xfs"),
    ("ext4", "ext4"),
    ("ext3", "ext3"),
    ("ext2", "ext2"),
    ("lvm2", LVM2_MEMBER),
    ("btrfs", "btrfs"),
    ("zfs", "zfs"),
    ("crypt", "crypto_LUKS"),
    ("fat", VFAT),
)


def classify_probe_output(output: str, device: Optional[str] = None) -> str:
    """
    Map `file -sL` output to a filesystem name; "" when nothing is recognized.
    The leading "<device>:" is dropped so device names (rescueencrypt) never
    match a signature.
    """
    text = (output or "").strip()
    if device and text.startswith(f"{device}:"):
        text = text[len(device) + 1:]
    elif ": " in text:
        text = text.split(": ", 1)[1]
    text = text.lower()
    for needle, fs in _SIGNATURES:
        if needle in text:
            return fs
    return ""


def probe_filesystem(h: Host, device: str, *, stage: str = "scan") -> str:
    res = h.run(["file", "-sL", device], stage=stage)
    return classify_probe_output(res.stdout, device)


def parse_partition_table(output: str) -> List[Tuple[int, str]]:
    """
    Parse `sgdisk -p` output into (index, type_code) rows.

    Columns after the "Number" header: number, start, end, size, unit, code, name...
    """
    rows: List[Tuple[int, str]] = []
    in_table = False
    for raw in (output or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("Number"):
            in_table = True
            continue
        if not in_table:
            continue
        cols = line.split()
        if len(cols) < 6 or not cols[0].isdigit():
            continue
        rows.append((int(cols[0]), cols[5].upper()))
    return rows


class PartitionScanner:
    """Lists the partition table of the recovery disk and probes each entry."""

    def __init__(self, h: Host, logger: logging.Logger):
        self.h = h
        self.logger = logger

    def scan(self, disk: str) -> List[PartitionInfo]:
        res = self.h.run(["sgdisk", "-p", disk], stage="scan")
        rows = parse_partition_table(res.stdout)

        partitions: List[PartitionInfo] = []
        for index, code in rows:
            if code == BIOS_BOOT:
                self.logger.debug("Skipping BIOS boot partition %d", index)
                continue
            dev = partition_path(disk, index)
            fs = probe_filesystem(self.h, dev)
            if not fs:
                # EFI partitions are never treated as encrypted
                fs = VFAT if code == EFI_SYSTEM else UNRESOLVED
            partitions.append(PartitionInfo(index=index, type_code=code, filesystem=fs))
            self.logger.debug("Partition %s: type=%s fs=%s", dev, code, fs)

        if not partitions:
            raise DetectionError(msg=f"No usable partitions found on {disk}", context={"disk": disk})

        Log.ok(
            self.logger,
            f"Found {len(partitions)} partition(s) on {disk}",
            layout=" ".join(f"{p.index}:{p.type_code}/{p.filesystem}" for p in partitions),
        )
        return partitions
