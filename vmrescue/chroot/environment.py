# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/chroot/environment.py
"""
Classification signals exported to repair actions.

Actions are shell scripts run inside the chroot tree; they read the
distribution, layout and partition facts from these variables.
"""
from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path
from typing import Dict, Mapping, Optional

from ..config.settings import RescueSettings
from ..detect.distro_kind import classify
from ..disk.device import partition_path
from ..disk.model import Distro, DistroFamily

_FAMILY_FLAGS = {
    DistroFamily.REDHAT: "isRedHat",
    DistroFamily.UBUNTU: "isUbuntu",
    DistroFamily.SUSE: "isSuse",
    DistroFamily.AZURELINUX: "isAzureLinux",
    DistroFamily.DEBIAN: "isDebian",
}

# Never forwarded to a child process.
_SCRUBBED = ("SUDO_COMMAND",)


def _flag(v: bool) -> str:
    return "true" if v else "false"


def build_environment(distro: Distro, settings: RescueSettings, logger: Optional[logging.Logger] = None) -> Dict[str, str]:
    env: Dict[str, str] = {
        "DISTRONAME": distro.identity.name,
        "DISTROVERSION": distro.identity.version_id,
        "isLVM": _flag(distro.is_lvm),
        "isADE": _flag(distro.is_encrypted),
        "ARCHITECTURE": distro.architecture.value,
        "RECOVER_DISK_PATH": distro.disk,
        "RESCUE_ROOT": settings.rescue_root,
    }

    os_part = distro.os_partition()
    if os_part is not None:
        env["OS_PARTITION"] = str(os_part.index)
    boot = distro.boot_partition()
    if boot is not None:
        env["BOOT_PARTITION"] = str(boot.index)
        env["boot_part_path"] = partition_path(distro.disk, boot.index)
    efi = distro.efi_partition()
    if efi is not None:
        env["EFI_PARTITION"] = str(efi.index)
        env["efi_part_path"] = partition_path(distro.disk, efi.index)

    kind = classify(distro.identity.name)
    flag = _FAMILY_FLAGS.get(kind.family)
    if flag:
        env[flag] = "true"
        env["DISTROSUBTYPE"] = kind.subtype.value
    else:
        env["DISTROTYPE"] = "UNKNOWN"
        env["DISTROSUBTYPE"] = "UNKNOWN"

    if logger is not None:
        logger.debug("Distro kind: %s/%s", kind.family.value, kind.subtype.value)
    return env


def child_environment(exported: Mapping[str, str], base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Process environment for a repair command: base + exported, minus scrubbed keys."""
    env = dict(os.environ if base is None else base)
    env.update(exported)
    for key in _SCRUBBED:
        env.pop(key, None)
    return env


def render_env_file(exported: Mapping[str, str]) -> str:
    lines = ["# generated by vmrescue; source with: . <file>"]
    for key in sorted(exported):
        lines.append(f"export {key}={shlex.quote(exported[key])}")
    return "\n".join(lines) + "\n"


def write_env_file(path: str, exported: Mapping[str, str]) -> Path:
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(p), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(render_env_file(exported))
    os.chmod(p, 0o600)
    return p
