# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

from vmrescue.core.host import CommandResult, Host


class FakeHost(Host):
    '''
    Scripted stand-in for the host handle.

    - commands are recorded in self.commands and answered from scripted
      responses (latest matching prefix wins; once=True entries are consumed)
    - mount/umount/mountpoint keep a mount table when not scripted otherwise
    - files under a mount target resolve to the mounted device's contents
    '''

    def __init__(self, logger: Optional[logging.Logger] = None):
        super().__init__(logger or logging.getLogger("vmrescue.tests"))
        self.commands: List[List[str]] = []
        self._responses: List[Tuple[Tuple[str, ...], CommandResult, bool]] = []

        self.files: Dict[str, bytes] = {}
        self.dirs = set()
        self.symlinks: Dict[str, str] = {}
        self.devices: Dict[str, Dict[str, bytes]] = {}
        self.mounts: Dict[str, str] = {}  # target -> source, insertion ordered

        self.writes: List[Tuple[str, str]] = []
        self.private_files: Dict[str, bytes] = {}
        self.wiped: List[str] = []
        self.cwd = "/root"

    # ------------------------------------------------------------------
    # scripting
    # ------------------------------------------------------------------

    def on(self, *prefix: str, stdout: str = "", stderr: str = "", rc: int = 0, once: bool = False) -> "FakeHost":
        self._responses.append((tuple(prefix), CommandResult(list(prefix), rc, stdout, stderr), once))
        return self

    def add_device(self, device: str, files: Dict[str, Union[str, bytes]]) -> None:
        self.devices[device] = {
            rel.lstrip("/"): (v.encode("utf-8") if isinstance(v, str) else v) for rel, v in files.items()
        }

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.commands)

    def index_of(self, *prefix: str) -> int:
        for i, c in enumerate(self.commands):
            if tuple(c[: len(prefix)]) == prefix:
                return i
        return -1

    def commands_matching(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.commands if tuple(c[: len(prefix)]) == prefix]

    def _scripted(self, cmd: List[str]) -> Optional[CommandResult]:
        for i in range(len(self._responses) - 1, -1, -1):
            prefix, res, once = self._responses[i]
            if tuple(cmd[: len(prefix)]) == prefix:
                if once:
                    del self._responses[i]
                return CommandResult(list(cmd), res.rc, res.stdout, res.stderr)
        return None

    # ------------------------------------------------------------------
    # Host primitives
    # ------------------------------------------------------------------

    def _execute(self, cmd: List[str], *, timeout: Optional[float], input_text: Optional[str]) -> CommandResult:
        self.commands.append(list(cmd))
        res = self._scripted(cmd)
        tool = cmd[0]

        if tool == "mount":
            if res is None:
                res = CommandResult(list(cmd), 0)
            if res.rc == 0:
                self.mounts[cmd[-1].rstrip("/") or "/"] = cmd[-2]
            return res

        if tool == "umount":
            target = cmd[-1].rstrip("/") or "/"
            if res is None:
                if target in self.mounts:
                    res = CommandResult(list(cmd), 0)
                else:
                    res = CommandResult(list(cmd), 32, "", f"umount: {target}: not mounted.")
            if res.rc == 0:
                if "-R" in cmd:
                    for t in [t for t in self.mounts if t == target or t.startswith(target + "/")]:
                        del self.mounts[t]
                else:
                    self.mounts.pop(target, None)
            return res

        if tool == "mountpoint" and res is None:
            return CommandResult(list(cmd), 0 if cmd[-1].rstrip("/") in self.mounts else 1)

        return res if res is not None else CommandResult(list(cmd), 0)

    def _mounted_content(self, path: str) -> Optional[bytes]:
        # deepest mount target wins
        for target in sorted(self.mounts, key=len, reverse=True):
            if path.startswith(target + "/"):
                content = self.devices.get(self.mounts[target], {})
                return content.get(path[len(target) + 1:])
        return None

    def is_file(self, path: str) -> bool:
        return path in self.files or self._mounted_content(path) is not None

    def is_dir(self, path: str) -> bool:
        p = path.rstrip("/")
        if p in self.dirs or p in self.mounts:
            return True
        return any(k.startswith(p + "/") for k in list(self.files) + list(self.dirs))

    def is_symlink(self, path: str) -> bool:
        return path in self.symlinks

    def exists(self, path: str) -> bool:
        return self.is_symlink(path) or self.is_file(path) or self.is_dir(path)

    def realpath(self, path: str) -> str:
        seen = 0
        while path in self.symlinks and seen < 40:
            path = self.symlinks[path]
            seen += 1
        return path

    def listdir(self, path: str) -> List[str]:
        base = path.rstrip("/") + "/"
        names = set()
        for k in list(self.files) + list(self.dirs):
            if k.startswith(base):
                names.add(k[len(base):].split("/", 1)[0])
        return sorted(names)

    def read_bytes(self, path: str, n: Optional[int] = None) -> bytes:
        data = self.files.get(path)
        if data is None:
            data = self._mounted_content(path)
        if data is None:
            raise FileNotFoundError(path)
        return data if n is None else data[:n]

    def read_into_secret(self, path: str) -> bytearray:
        return bytearray(self.read_bytes(path))

    def read_text(self, path: str) -> str:
        return self.read_bytes(path).decode("utf-8", errors="replace")

    def write_text(self, path: str, data: str) -> None:
        self.writes.append((path, data))
        self.files[path] = data.encode("utf-8")

    def makedirs(self, path: str) -> None:
        self.dirs.add(path.rstrip("/") or "/")

    def rmdir(self, path: str) -> None:
        p = path.rstrip("/")
        if p in self.mounts:
            raise OSError(16, "Device or resource busy", p)
        self.dirs.discard(p)

    def chdir(self, path: str) -> None:
        self.cwd = path

    def write_private_file(self, data, *, directory: Optional[str] = None, prefix: str = "vmrescue-") -> str:
        path = f"{directory or '/tmp'}/{prefix}{len(self.private_files)}"
        self.private_files[path] = bytes(data)
        self.files[path] = bytes(data)
        return path

    def wipe_file(self, path: str) -> None:
        self.wiped.append(path)
        self.files.pop(path, None)


def sgdisk_output(rows: Sequence[Tuple[int, str]], disk: str = "/dev/sdc") -> str:
    '''Render an `sgdisk -p` listing for (index, type code) rows.'''
    lines = [
        f"Disk {disk}: 67108864 sectors, 32.0 GiB",
        "Sector size (logical/physical): 512/4096 bytes",
        "Partition table holds up to 128 entries",
        "",
        "Number  Start (sector)    End (sector)  Size       Code  Name",
    ]
    start = 2048
    for index, code in rows:
        end = start + 1048575
        lines.append(f"   {index}          {start}        {end}   512.0 MiB   {code}  part{index}")
        start = end + 1
    return "\n".join(lines) + "\n"


def elf_header(machine: int, *, big_endian: bool = False) -> bytes:
    order = "big" if big_endian else "little"
    hdr = bytearray(64)
    hdr[:4] = b"\x7fELF"
    hdr[4] = 2
    hdr[5] = 2 if big_endian else 1
    hdr[18:20] = machine.to_bytes(2, order)
    return bytes(hdr)


OS_RELEASE_UBUNTU = 'NAME="Ubuntu"\nVERSION_ID="22.04"\nID=ubuntu\n'
OS_RELEASE_RHEL = 'NAME="Red Hat Enterprise Linux"\nVERSION_ID="8.6"\nID="rhel"\n'
