# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/__init__.py
"""
vmrescue - offline recovery of broken Linux VM disks

Attaches to the OS disk of a failed VM from a rescue host, unlocks ADE
encryption, resolves LVM collisions with the host, identifies the
distribution and assembles a chroot tree for repair actions.

Usage as a library:

    from vmrescue import RescuePipeline, RescueSettings
    from vmrescue.core.logger import Log

    logger = Log.setup(verbose=1)
    pipeline = RescuePipeline(logger, RescueSettings(recover_disk="/dev/sdc"))
    session = pipeline.prepare()
    try:
        print(session.environment["DISTRONAME"])
    finally:
        pipeline.teardown()
"""

__version__ = "0.1.0"

from .config.settings import RescueSettings
from .orchestrator.pipeline import RescuePipeline, RescueSession

__all__ = ["__version__", "RescueSettings", "RescuePipeline", "RescueSession"]
