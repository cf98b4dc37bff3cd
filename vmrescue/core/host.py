# SPDX-License-Identifier: LGPL-3.0-or-later
# vmrescue/core/host.py
"""
Host handle.

Every external tool call, mount and file access the recovery stages make
goes through a Host instance. Commands are always argument vectors.
Tests substitute tests.fakes.fake_host.FakeHost, which overrides the
low-level primitives (_execute and the file accessors) and keeps the
mount/umount/error semantics of this class.
"""
from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .exceptions import ExternalToolError, MountError
from .logger import Log
from .utils import U


@dataclass
class CommandResult:
    cmd: List[str]
    rc: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.rc == 0

    def lines(self) -> List[str]:
        return [ln for ln in self.stdout.splitlines() if ln.strip()]


@dataclass
class MountRecord:
    source: str
    target: str
    options: List[str] = field(default_factory=list)


class Host:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    def _execute(self, cmd: List[str], *, timeout: Optional[float], input_text: Optional[str]) -> CommandResult:
        try:
            cp = U.run_cmd(
                self.logger,
                cmd,
                check=False,
                capture=True,
                timeout=timeout,
                input_text=input_text,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(
                msg=f"Required tool not found: {cmd[0]}",
                cause=e,
                context={"cmd": U.pretty_cmd(cmd), "rc": 127},
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                code=124,
                msg=f"Command timed out: {U.pretty_cmd(cmd)}",
                cause=e,
                context={"cmd": U.pretty_cmd(cmd)},
            ) from e
        return CommandResult(list(cmd), cp.returncode, cp.stdout or "", cp.stderr or "")

    def run(
        self,
        cmd: Sequence[str],
        *,
        check: bool = True,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a tool. With check=True a non-zero exit raises ExternalToolError
        carrying cmd/rc/stage in its context; a missing tool always raises.
        """
        argv = [str(x) for x in cmd]
        res = self._execute(argv, timeout=timeout, input_text=input_text)
        if res.stdout.strip():
            Log.trace(self.logger, "stdout of %s:\n%s", U.pretty_cmd(argv), res.stdout.rstrip())
        if res.rc != 0:
            stdout = res.stdout.strip()
            stderr = res.stderr.strip()
            self.logger.debug(
                "Command exited %d: %s%s%s",
                res.rc,
                U.pretty_cmd(argv),
                f"\nstdout:\n{stdout}" if stdout else "",
                f"\nstderr:\n{stderr}" if stderr else "",
            )
            if check:
                ctx = {"cmd": U.pretty_cmd(argv), "rc": res.rc}
                if stage:
                    ctx["stage"] = stage
                if stderr:
                    ctx["stderr"] = stderr.splitlines()[-1]
                raise ExternalToolError(msg=f"Command failed: {U.pretty_cmd(argv)}", context=ctx)
        return res

    # ------------------------------------------------------------------
    # mounts
    # ------------------------------------------------------------------

    def mount(
        self,
        source: str,
        target: str,
        *,
        fstype: Optional[str] = None,
        options: Optional[Sequence[str]] = None,
        bind: bool = False,
        stage: Optional[str] = None,
    ) -> MountRecord:
        cmd: List[str] = ["mount"]
        if bind:
            cmd.append("--bind")
        if fstype:
            cmd += ["-t", fstype]
        opts = [o for o in (options or []) if o]
        if opts:
            cmd += ["-o", ",".join(opts)]
        cmd += [source, target]

        res = self.run(cmd, check=False, stage=stage)
        if res.rc != 0:
            raise MountError(
                msg=f"Failed to mount {source} at {target}",
                context={
                    "cmd": U.pretty_cmd(cmd),
                    "rc": res.rc,
                    "stage": stage or "mount",
                    "stderr": res.stderr.strip(),
                },
            )
        self.logger.debug("Mounted %s -> %s%s", source, target, f" ({','.join(opts)})" if opts else "")
        return MountRecord(source=source, target=target, options=opts)

    def umount(self, target: str, *, recursive: bool = False, check: bool = True) -> bool:
        cmd = ["umount"]
        if recursive:
            cmd.append("-R")
        cmd.append(target)
        res = self.run(cmd, check=False)
        if res.rc != 0 and check:
            raise MountError(
                msg=f"Failed to unmount {target}",
                context={"cmd": U.pretty_cmd(cmd), "rc": res.rc, "stderr": res.stderr.strip()},
            )
        return res.rc == 0

    def is_mountpoint(self, path: str) -> bool:
        return self.run(["mountpoint", "-q", path], check=False).rc == 0

    # ------------------------------------------------------------------
    # files
    # ------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def is_file(self, path: str) -> bool:
        return os.path.isfile(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def is_symlink(self, path: str) -> bool:
        return os.path.islink(path)

    def realpath(self, path: str) -> str:
        return os.path.realpath(path)

    def listdir(self, path: str) -> List[str]:
        try:
            return sorted(os.listdir(path))
        except FileNotFoundError:
            return []

    def read_text(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8", errors="replace")

    def read_bytes(self, path: str, n: Optional[int] = None) -> bytes:
        with open(path, "rb") as f:
            return f.read() if n is None else f.read(n)

    def read_into_secret(self, path: str) -> bytearray:
        """Read a small key file into a bytearray without a bytes copy."""
        with open(path, "rb", buffering=0) as f:
            size = os.fstat(f.fileno()).st_size
            buf = bytearray(size)
            n = 0
            with memoryview(buf) as view:
                while n < size:
                    got = f.readinto(view[n:])
                    if not got:
                        break
                    n += got
        # file shrank under us
        del buf[n:]
        return buf

    def write_text(self, path: str, data: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(data)

    def makedirs(self, path: str) -> None:
        U.ensure_dir(Path(path))

    def rmdir(self, path: str) -> None:
        """Remove an empty directory; never recurses into a mount."""
        os.rmdir(path)

    def chdir(self, path: str) -> None:
        os.chdir(path)

    def write_private_file(self, data: bytes, *, directory: Optional[str] = None, prefix: str = "vmrescue-") -> str:
        """Create a 0600 temp file holding data and return its path."""
        fd, path = tempfile.mkstemp(prefix=prefix, dir=directory)
        try:
            os.fchmod(fd, 0o600)
            view = memoryview(data)
            while view:
                view = view[os.write(fd, view):]
            os.fsync(fd)
        finally:
            os.close(fd)
        return path

    def wipe_file(self, path: str) -> None:
        """Overwrite a file with zeros, then unlink it."""
        p = Path(path)
        try:
            size = p.stat().st_size
        except FileNotFoundError:
            return
        with open(p, "r+b") as f:
            f.write(b"\x00" * size)
            f.flush()
            os.fsync(f.fileno())
        U.safe_unlink(p)
