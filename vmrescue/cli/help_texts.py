# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/cli/help_texts.py
from __future__ import annotations

# Pure help text for the argparse epilog; keep it copy/paste runnable.

YAML_EXAMPLE = r"""# vmrescue configuration (YAML)
#
# Run:
#   sudo vmrescue --config rescue.yaml --exec /opt/actions/fstab.sh
#
# Merge multiple configs (later overrides earlier):
#   sudo vmrescue --config base.yaml --config site.yaml
#
# Every key is optional; CLI flags override config values.
#
# recover_disk: /dev/sdc              # skip the LUN symlink / NVMe discovery
# rescue_disk: /dev/disk/azure/scsi1/lun0
# rescue_root: /srv/rescue-root       # where the chroot tree is assembled
# assert_path: /tmp/assert            # scratch mount used while identifying
# env_file: /run/vmrescue.env         # shell-sourceable classification signals
# keep_mounted: false
#
# ADE:
# bek_label: BEK VOLUME
# passphrase_file: LinuxPassPhraseFileName
# luks_header: luks/osluksheader
# imds_timeout: 3
#
# LVM:
# root_vg: rootvg
# lvm_safe_host_versions: ["8.2", "8.4"]
"""

STAGES_SUMMARY = r"""Stages:
  1. resolve the recovery disk (custom path, LUN symlink, or NVMe namespace)
  2. scan the GPT partition table and probe every filesystem
  3. unlock an ADE-encrypted OS partition (BEK volume or --ade-password)
  4. import or activate the guest's volume group next to the host's
  5. identify the distribution and architecture from /etc/os-release
  6. assemble the chroot tree and export DISTRONAME, isLVM, isADE, ...
Teardown reverses steps 3-6 when the run ends or fails.
"""
