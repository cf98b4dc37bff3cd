# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/disk/__init__.py
"""Disk-level stages: partition scan, ADE unlock, LVM resolution, fsck."""
