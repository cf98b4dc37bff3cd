# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Stage timing for the recovery pipeline.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Generator


@contextmanager
def log_step(logger: logging.Logger, description: str) -> Generator[None, None, None]:
    """
    Log "<description> ..." on entry and "<description> done (N.NNs)" on
    exit. An exception is logged as "<description> failed" and re-raised.

        with log_step(logger, "Scanning partitions on /dev/sdc"):
            scanner.scan(disk)
    """
    t0 = time.monotonic()
    logger.info("⏳ %s ...", description)
    try:
        yield
    except Exception as e:
        logger.error("❌ %s failed (%.2fs): %s", description, time.monotonic() - t0, e)
        raise
    logger.info("✔️  %s done (%.2fs)", description, time.monotonic() - t0)
