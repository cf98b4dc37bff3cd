# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/chroot/__init__.py
