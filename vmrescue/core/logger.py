# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/core/logger.py
"""
Console/file logging for vmrescue.

Records carry an optional `ctx` mapping (stage, device, cmd ...) that is
rendered as trailing key=value pairs, or as a nested object with
--json-logs. Values of secret-looking keys are never rendered.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from termcolor import colored as _colored

TRACE = 5
if not hasattr(logging, "TRACE"):
    logging.TRACE = TRACE  # type: ignore[attr-defined]
    logging.addLevelName(TRACE, "TRACE")


def _logger_trace(self: logging.Logger, msg: str, *args, **kwargs) -> None:
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _logger_trace  # type: ignore[attr-defined]

# levelname -> (emoji, termcolor color)
_LEVELS: Dict[str, Tuple[str, str]] = {
    "TRACE": ("🧬", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}

_SECRET_MARKERS = ("password", "passphrase", "secret", "key_file")


def _stderr_is_tty() -> bool:
    isatty = getattr(sys.stderr, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # closed stream
        return False


def _stderr_takes_emoji() -> bool:
    enc = getattr(sys.stderr, "encoding", None) or "utf-8"
    try:
        "✅".encode(enc)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def c(
    text: str,
    color: Optional[str] = None,
    attrs: Optional[List[str]] = None,
    *,
    enable: bool = True,
) -> str:
    """termcolor wrapper; returns text untouched when disabled."""
    if not enable or not color:
        return text
    return _colored(text, color=color, attrs=attrs or [])


Ctx = Mapping[str, Any]


def _render_value(key: str, v: Any, *, max_len: int = 240) -> str:
    if any(m in key.lower() for m in _SECRET_MARKERS):
        return "***"
    s = str(v).replace("\n", "\\n").replace("\r", "\\r")
    return s if len(s) <= max_len else s[: max_len - 1] + "…"


def _render_ctx(ctx: Optional[Ctx]) -> Dict[str, str]:
    return {str(k): _render_value(str(k), v) for k, v in sorted((ctx or {}).items(), key=lambda kv: str(kv[0]))}


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Adapter with a bound context; per-call `extra={"ctx": {...}}` wins.

      log = Log.bind(logger, stage="ade", disk="/dev/sdc")
      log.info("Unlocking")
    """

    def __init__(self, logger: logging.Logger, ctx: Optional[Ctx] = None):
        super().__init__(logger, extra={"ctx": dict(ctx or {})})

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["ctx"] = {**self.extra["ctx"], **(extra.get("ctx") or {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **ctx: Any) -> "ContextLoggerAdapter":
        return ContextLoggerAdapter(self.logger, {**self.extra["ctx"], **ctx})


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    emoji: bool = True
    precise: bool = False  # milliseconds plus module:line
    show_pid: bool = False
    utc: bool = False


class EmojiFormatter(logging.Formatter):
    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _timestamp(self, created: float) -> str:
        tz = _dt.timezone.utc if self._style.utc else None
        dt = _dt.datetime.fromtimestamp(created, tz=tz)
        return dt.strftime("%H:%M:%S.%f")[:-3] if self._style.precise else dt.strftime("%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        emoji, color = _LEVELS.get(record.levelname, ("•", "white"))
        colorize = self._style.color and _stderr_is_tty()

        head = [self._timestamp(record.created), emoji if self._style.emoji else "·"]
        head.append(c(f"{record.levelname:<8}", color, enable=colorize))
        if self._style.show_pid:
            head.append(f"[pid={os.getpid()}]")
        if self._style.precise:
            head.append(f"[{record.module}:{record.lineno}]")

        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, color, ["bold"], enable=colorize)

        ctx = _render_ctx(getattr(record, "ctx", None))
        tail = "".join(f" {k}={v}" for k, v in ctx.items())

        out = " ".join(head) + " " + msg + tail
        if record.exc_info:
            block = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            out += "\n" + c(block, "red", enable=colorize)
        return out


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, *, utc: bool = True):
        super().__init__()
        self._utc = bool(utc)

    def format(self, record: logging.LogRecord) -> str:
        tz = _dt.timezone.utc if self._utc else None
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=tz).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "module": record.module,
            "lineno": record.lineno,
        }
        ctx = _render_ctx(getattr(record, "ctx", None))
        if ctx:
            obj["ctx"] = ctx
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


class Log:
    @staticmethod
    def _level_from_flags(verbose: int, quiet: int) -> int:
        """-q WARNING, -qq ERROR, -vv DEBUG, -vvv TRACE; quiet beats verbose."""
        if quiet >= 2:
            return logging.ERROR
        if quiet == 1:
            return logging.WARNING
        if verbose >= 3:
            return TRACE
        if verbose >= 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def bind(logger: logging.Logger, **ctx: Any) -> ContextLoggerAdapter:
        return ContextLoggerAdapter(logger, ctx)

    @staticmethod
    def banner(logger: logging.Logger, title: str, *, char: str = "─", width: int = 72) -> None:
        logger.info(f" {title.strip()} ".center(width, char))

    @staticmethod
    def _emit(logger: logging.Logger, level: int, prefix: str, msg: str, ctx: Dict[str, Any]) -> None:
        logger.log(level, "%s %s", prefix, msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def step(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        Log._emit(logger, logging.INFO, "➡️ ", msg, ctx)

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        Log._emit(logger, logging.INFO, "✅", msg, ctx)

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        Log._emit(logger, logging.WARNING, "⚠️ ", msg, ctx)

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        Log._emit(logger, logging.ERROR, "💥", msg, ctx)

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any) -> None:
        fn = getattr(logger, "trace", None)
        if callable(fn):
            fn(msg, *args)

    @staticmethod
    def _reset_handlers(logger: logging.Logger) -> None:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        color: bool = True,
        utc: bool = False,
        json_logs: bool = False,
        logger_name: str = "vmrescue",
    ) -> logging.Logger:
        """
        Configure and return the project's logger. Safe to call again: the
        CLI does so once config-file logging knobs are known.
        """
        logger = logging.getLogger(logger_name)
        logger.propagate = False
        level = Log._level_from_flags(verbose, quiet)
        logger.setLevel(level)
        Log._reset_handlers(logger)

        emoji = _stderr_takes_emoji()
        console = LogStyle(color=bool(color), emoji=emoji, precise=verbose >= 3, show_pid=verbose >= 2, utc=utc)

        sh = logging.StreamHandler(stream=sys.stderr)
        sh.setFormatter(JsonFormatter(utc=utc) if json_logs else EmojiFormatter(console))
        handlers: List[logging.Handler] = [sh]

        if log_file:
            fp = Path(log_file).expanduser().resolve()
            fp.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(fp, encoding="utf-8")
            file_style = LogStyle(color=False, emoji=emoji, precise=True, show_pid=True, utc=utc)
            fh.setFormatter(JsonFormatter(utc=utc) if json_logs else EmojiFormatter(file_style))
            handlers.append(fh)

        for h in handlers:
            h.setLevel(level)
            logger.addHandler(h)

        logger.debug("Logger initialized (level=%s, pid=%s)", logging.getLevelName(level), os.getpid())
        return logger
