# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/orchestrator/__init__.py
from .pipeline import RescuePipeline, RescueSession

__all__ = ["RescuePipeline", "RescueSession"]
