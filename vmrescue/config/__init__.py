# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/config/__init__.py
