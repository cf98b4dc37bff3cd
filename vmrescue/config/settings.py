# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/config/settings.py
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from ..core.exceptions import ConfigurationError


def _clean_path(p: str) -> str:
    p = (p or "").strip()
    if len(p) > 1:
        p = p.rstrip("/")
    return p


@dataclass(frozen=True)
class RescueSettings:
    """
    Every fixed path, device name and tuning knob the recovery run uses.

    Built once in the CLI entry point and handed to each stage; nothing
    reads these values from module globals.
    """
    # disk discovery
    rescue_disk: str = "/dev/disk/azure/scsi1/lun0"
    recover_disk: Optional[str] = None          # --custom-recover-disk
    scsi_host: str = "host1"

    # scratch and final mount points
    assert_path: str = "/tmp/assert"
    rescue_root: str = "/srv/rescue-root"
    tmp_dir: Optional[str] = None               # where the key file is staged

    # ADE
    bek_mount: str = "/srv/rescue-bek"
    bek_boot_mount: str = "/srv/rescue-bek-boot"
    bek_label: str = "BEK VOLUME"
    passphrase_file: str = "LinuxPassPhraseFileName"
    luks_header: str = "luks/osluksheader"
    rescue_mapper: str = "rescueencrypt"
    repair_mapper: str = "osencrypt"
    investigate_root: str = "/investigateroot"

    # instance metadata
    imds_url: str = "http://169.254.169.254/metadata/instance/compute/?api-version=2021-02-01"
    imds_tag: str = "repair_source"
    imds_timeout: float = 3.0

    # LVM
    root_vg: str = "rootvg"
    rescue_vg: str = "rescuevg"
    old_vg: str = "oldvg"
    lvm_safe_host_versions: Tuple[str, ...] = ("8.2", "8.4")

    # chroot support filesystems, bind-mounted in this order
    support_filesystems: Tuple[str, ...] = ("dev", "proc", "sys", "tmp", "dev/pts", "run")

    def __post_init__(self) -> None:
        for name in ("assert_path", "rescue_root", "bek_mount", "bek_boot_mount", "investigate_root"):
            v = _clean_path(getattr(self, name))
            if not v.startswith("/"):
                raise ConfigurationError(msg=f"{name} must be an absolute path (got {v!r})")
            object.__setattr__(self, name, v)

        if self.recover_disk is not None:
            d = self.recover_disk.strip()
            object.__setattr__(self, "recover_disk", d or None)

        for name in ("rescue_mapper", "repair_mapper", "root_vg", "rescue_vg", "old_vg"):
            v = (getattr(self, name) or "").strip()
            if not v or "/" in v:
                raise ConfigurationError(msg=f"{name} must be a plain device name (got {v!r})")
            object.__setattr__(self, name, v)

        try:
            timeout = float(self.imds_timeout)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(msg=f"imds_timeout must be a number (got {self.imds_timeout!r})", cause=e) from e
        if timeout <= 0:
            raise ConfigurationError(msg=f"imds_timeout must be > 0 (got {timeout})")
        object.__setattr__(self, "imds_timeout", timeout)

        object.__setattr__(self, "lvm_safe_host_versions", _str_tuple("lvm_safe_host_versions", self.lvm_safe_host_versions))
        object.__setattr__(self, "support_filesystems", _str_tuple("support_filesystems", self.support_filesystems))

    # derived paths

    @property
    def rescue_mapper_device(self) -> str:
        return f"/dev/mapper/{self.rescue_mapper}"

    @property
    def root_lv_device(self) -> str:
        return f"/dev/{self.root_vg}/rootlv"

    @property
    def usr_lv_device(self) -> str:
        return f"/dev/{self.root_vg}/usrlv"

    @property
    def os_release_path(self) -> str:
        return f"{self.assert_path}/etc/os-release"

    @classmethod
    def from_mapping(cls, conf: Optional[Mapping[str, Any]]) -> "RescueSettings":
        """Build settings from a config mapping; unknown keys are ignored."""
        known = {f.name: f for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for k, v in (conf or {}).items():
            key = str(k).replace("-", "_")
            f = known.get(key)
            if f is None or v is None:
                continue
            if f.name in ("lvm_safe_host_versions", "support_filesystems", "imds_timeout"):
                # validated in __post_init__
                kwargs[key] = v
            elif not isinstance(v, (str, int, float)) or isinstance(v, bool):
                raise ConfigurationError(msg=f"Config key {key} must be a string (got {type(v).__name__})")
            else:
                kwargs[key] = str(v)
        return cls(**kwargs)


def _str_tuple(name: str, v: Any) -> Tuple[str, ...]:
    if isinstance(v, str):
        items = [x for x in v.replace(",", " ").split()]
    elif isinstance(v, (list, tuple)):
        items = [str(x).strip() for x in v]
    else:
        raise ConfigurationError(msg=f"{name} must be a list of strings (got {type(v).__name__})")
    out = tuple(x for x in items if x)
    if not out:
        raise ConfigurationError(msg=f"{name} must not be empty")
    return out
