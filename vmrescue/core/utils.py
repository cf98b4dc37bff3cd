# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/core/utils.py
from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Union

from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .exceptions import ExternalToolError, Fatal


def _log_failed_run(logger: logging.Logger, pretty: str, e: subprocess.CalledProcessError) -> None:
    stdout = (e.stdout or e.output or "").strip()
    stderr = (e.stderr or "").strip()
    if not (stdout or stderr):
        logger.error("Command failed (rc=%s, no output): %s", e.returncode, pretty)
        return
    logger.error(
        "Command failed (rc=%s): %s%s%s",
        e.returncode,
        pretty,
        f"\nstdout:\n{stdout}" if stdout else "",
        f"\nstderr:\n{stderr}" if stderr else "",
    )


class U:
    @staticmethod
    def die(logger: logging.Logger, msg: str, code: int = 1) -> None:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def ensure_dir(p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def json_dump(obj: Any) -> str:
        return json.dumps(obj, indent=2, sort_keys=True, default=str)

    @staticmethod
    def pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(str(x)) for x in cmd)

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[str],
        *,
        check: bool = True,
        capture: bool = False,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cwd: Optional[Union[str, Path]] = None,
        input_text: Optional[str] = None,
        fatal: bool = False,
    ) -> subprocess.CompletedProcess:
        """
        Run an argument vector, never through a shell.

        capture=True returns stdout/stderr as text. With fatal=True a failed,
        timed out or missing command becomes ExternalToolError; otherwise the
        subprocess exception propagates after being logged.
        """
        pretty = U.pretty_cmd(cmd)
        logger.debug("Running: %s", pretty)
        try:
            return subprocess.run(
                cmd,
                check=check,
                capture_output=capture,
                text=True,
                env=env,
                timeout=timeout,
                cwd=str(cwd) if cwd is not None else None,
                input=input_text,
            )
        except subprocess.CalledProcessError as e:
            _log_failed_run(logger, pretty, e)
            if fatal:
                raise ExternalToolError(
                    msg=f"Command failed: {pretty}", cause=e, context={"cmd": pretty, "rc": e.returncode}
                ) from e
            raise
        except subprocess.TimeoutExpired as e:
            logger.error("Command timed out after %ss: %s", timeout, pretty)
            if fatal:
                raise ExternalToolError(
                    code=124, msg=f"Command timed out: {pretty}", cause=e, context={"cmd": pretty}
                ) from e
            raise
        except FileNotFoundError as e:
            tool = cmd[0] if cmd else pretty
            logger.error("Command not found: %s", tool)
            if fatal:
                raise ExternalToolError(
                    msg=f"Required tool not found: {tool}", cause=e, context={"cmd": pretty, "rc": 127}
                ) from e
            raise

    @staticmethod
    def require_root_if_needed(logger: logging.Logger, write_actions: bool) -> None:
        """Mounting, cryptsetup and LVM all need root."""
        if write_actions and os.geteuid() != 0:
            U.die(logger, "vmrescue must run as root. Re-run with sudo.", 1)

    @staticmethod
    def safe_unlink(p: Path, *, missing_ok: bool = True) -> None:
        try:
            p.unlink()
        except FileNotFoundError:
            if not missing_ok:
                raise

    @staticmethod
    def strip_quotes(s: str) -> str:
        s = (s or "").strip()
        if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
            return s[1:-1]
        return s.strip("\"'")

    @staticmethod
    @contextmanager
    def stage_progress(total: int, description: str = "Recovery") -> Generator[Callable[[str], None], None, None]:
        """
        Yields advance(label), which moves a rich spinner line one stage
        forward. No-op when stderr is not a TTY.
        """
        if not getattr(sys.stderr, "isatty", lambda: False)():
            yield lambda label: None
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("{task.completed}/{task.total}"),
            TimeElapsedColumn(),
            transient=True,
        ) as progress:
            task = progress.add_task(description, total=total)

            def _advance(label: str) -> None:
                progress.update(task, advance=1, description=f"{description}: {label}")

            yield _advance
