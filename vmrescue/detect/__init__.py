# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/detect/__init__.py
from .distro_kind import DISTRO_TABLE, classify
from .identifier import DistributionIdentifier

__all__ = ["DISTRO_TABLE", "classify", "DistributionIdentifier"]
