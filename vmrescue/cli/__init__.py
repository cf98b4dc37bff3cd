# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/cli/__init__.py
