# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/core/exceptions.py
"""
Error types raised by the recovery stages.

Only vmrescue.__main__ turns these into process exit codes; everything
below it raises. Context values under secret-looking keys (passphrase,
key file ...) are redacted whenever an error is rendered.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

_SECRET_KEY_PARTS = ("pass", "secret", "token", "key")


def _exit_code(x: Any) -> int:
    try:
        code = int(x)
    except (TypeError, ValueError):
        return 1
    if code < 0:
        return 1
    return min(code, 255)


def _one_line(s: str, limit: int = 600) -> str:
    s = " ".join((s or "").split())
    return s if len(s) <= limit else s[: limit - 3] + "..."


def _is_secret_key(k: str) -> bool:
    k = (k or "").lower()
    return any(p in k for p in _SECRET_KEY_PARTS)


def _redacted(ctx: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {k: ("<redacted>" if _is_secret_key(str(k)) else v) for k, v in (ctx or {}).items()}


@dataclass(eq=False)
class RescueError(Exception):
    """
    Base error. `context` carries cmd/rc/stage/device for the log line that
    reports the failure; `cause` is the underlying exception, if any.
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _exit_code(self.code)
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        self.args = (self.msg,)

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        parts = [self.msg]
        if include_context and self.context:
            safe = _redacted(self.context)
            parts.append("[" + _one_line(", ".join(f"{k}={safe[k]!r}" for k in sorted(safe))) + "]")
        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.msg


class Fatal(RescueError):
    """Ends the run; main() exits with `code` after teardown."""


@dataclass(eq=False)
class ConfigurationError(Fatal):
    """Bad disk path, unreadable config or custom input."""
    code: int = 2


@dataclass(eq=False)
class DetectionError(Fatal):
    """No OS partition, missing key device/passphrase file, unsupported LVM combination."""
    code: int = 3


@dataclass(eq=False)
class MountError(Fatal):
    code: int = 4


@dataclass(eq=False)
class CheckError(MountError):
    """Filesystem consistency check refused the device."""
    code: int = 5


@dataclass(eq=False)
class ExternalToolError(Fatal):
    """A tool is missing or exited non-zero outside the known carve-outs."""
    code: int = 6


@dataclass(eq=False)
class EncryptionError(ExternalToolError):
    code: int = 7


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One line for the terminal: the message, plus the redacted context at
    -v and the cause at -vv.
    """
    if isinstance(e, RescueError):
        return e.user_message(include_context=verbose >= 1, include_cause=verbose >= 2)
    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
