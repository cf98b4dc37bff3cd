# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/core/__init__.py
from .exceptions import (
    CheckError,
    ConfigurationError,
    DetectionError,
    EncryptionError,
    ExternalToolError,
    Fatal,
    MountError,
    RescueError,
)
from .host import CommandResult, Host, MountRecord

__all__ = [
    "RescueError",
    "Fatal",
    "ConfigurationError",
    "DetectionError",
    "MountError",
    "CheckError",
    "ExternalToolError",
    "EncryptionError",
    "Host",
    "CommandResult",
    "MountRecord",
]
