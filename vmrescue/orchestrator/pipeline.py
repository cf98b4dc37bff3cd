# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/orchestrator/pipeline.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..chroot.environment import build_environment, child_environment, write_env_file
from ..chroot.orchestrator import ChrootTree, MountOrchestrator
from ..chroot.teardown import Teardown
from ..config.settings import RescueSettings
from ..core.exceptions import DetectionError, RescueError
from ..core.host import Host
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..core.utils import U
from ..detect.identifier import DistributionIdentifier, check_lvm_host_guard
from ..disk.ade import EncryptedVolumeHandler, SecretBuffer
from ..disk.device import partition_path, resolve_recovery_disk
from ..disk.fsck import FilesystemChecker
from ..disk.lvm import LogicalVolumeResolver
from ..disk.model import LVM2_MEMBER, Distro, PartitionInfo, VolumeGroupMapping
from ..disk.scanner import PartitionScanner

# resolve, scan, unlock, volume groups, identify, mount
_STAGE_COUNT = 6


@dataclass
class RescueSession:
    """Everything one run learned or changed; teardown works from this."""
    stage: str = "init"
    disk: Optional[str] = None
    distro: Optional[Distro] = None
    mapping: Optional[VolumeGroupMapping] = None
    tree: Optional[ChrootTree] = None
    environment: Dict[str, str] = field(default_factory=dict)


class RescuePipeline:
    """
    Drives the stages in order and owns the session state.

    Any RescueError or interrupt during prepare() runs teardown before it
    propagates; teardown errors are logged, never raised.
    """

    def __init__(
        self,
        logger: logging.Logger,
        settings: RescueSettings,
        h: Optional[Host] = None,
        *,
        ade_password: Optional[str] = None,
    ):
        self.logger = logger
        self.settings = settings
        self.h = h or Host(logger)
        self._ade_password = ade_password

        self.scanner = PartitionScanner(self.h, logger)
        self.resolver = LogicalVolumeResolver(self.h, settings, logger)
        self.ade = EncryptedVolumeHandler(self.h, settings, logger, self.resolver)
        self.identifier = DistributionIdentifier(self.h, settings, logger, FilesystemChecker(self.h, settings, logger))
        self.orchestrator = MountOrchestrator(self.h, settings, logger)
        self.teardown_stage = Teardown(self.h, settings, logger)

        self.session = RescueSession()
        self.teardown_errors: List[Tuple[str, str]] = []
        self._torn_down = False

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def _enter(self, stage: str, advance: Callable[[str], None]) -> None:
        self.session.stage = stage
        advance(stage)

    def _unlock(self, distro: Distro) -> None:
        secret: Optional[SecretBuffer] = None
        try:
            if self._ade_password:
                secret = SecretBuffer.from_base64(self._ade_password)
        finally:
            self._ade_password = None

        def _opened(target: PartitionInfo) -> None:
            distro.is_encrypted = True

        mapping = self.ade.unlock(distro.disk, distro.partitions, secret, on_open=_opened)
        if mapping is not None:
            self.session.mapping = mapping

    def _resolve_volume_groups(self, distro: Distro) -> None:
        for p in distro.partitions:
            if not (p.is_lvm_member and p.filesystem == LVM2_MEMBER) or p.encrypted:
                continue
            pv = partition_path(distro.disk, p.index)
            self.session.mapping = self.resolver.import_vg(pv)
            p.logical_volumes = self.resolver.list_logical_volumes(pv)

    def _check_single_os(self, partitions: List[PartitionInfo]) -> None:
        flagged = [p.index for p in partitions if p.contains_os]
        if len(flagged) > 1:
            raise DetectionError(
                msg="More than one partition looks like an OS partition",
                context={"partitions": ",".join(str(i) for i in flagged)},
            )

    def prepare(self) -> RescueSession:
        s = self.session
        try:
            with U.stage_progress(_STAGE_COUNT, "Preparing recovery") as advance:
                self._enter("resolve-disk", advance)
                with log_step(self.logger, "Resolving the recovery disk"):
                    s.disk = resolve_recovery_disk(self.h, self.settings, self.logger)

                self._enter("scan", advance)
                with log_step(self.logger, f"Scanning partitions on {s.disk}"):
                    distro = Distro(disk=s.disk, partitions=self.scanner.scan(s.disk))
                    s.distro = distro

                if any(p.is_lvm_member for p in distro.partitions):
                    check_lvm_host_guard(self.h, self.settings, self.logger)

                self._enter("ade", advance)
                if any(p.is_unresolved for p in distro.partitions):
                    with log_step(self.logger, "Unlocking the encrypted volume"):
                        self._unlock(distro)
                else:
                    self._ade_password = None

                self._enter("lvm", advance)
                if any(p.is_lvm_member and not p.encrypted for p in distro.partitions):
                    with log_step(self.logger, "Resolving volume groups"):
                        self._resolve_volume_groups(distro)

                self._enter("identify", advance)
                with log_step(self.logger, "Identifying the distribution"):
                    identity = self.identifier.identify(distro)
                    if identity is None:
                        raise DetectionError(
                            msg="No OS partition found; make sure the disk is not a data disk",
                            context={"disk": s.disk},
                        )
                    self._check_single_os(distro.partitions)
                    distro.identity = identity

                self._enter("mount", advance)
                with log_step(self.logger, "Assembling the chroot tree"):
                    s.tree = self.orchestrator.prepare(distro)

            s.stage = "ready"
            s.environment = build_environment(distro, self.settings, self.logger)
            Log.ok(
                self.logger,
                f"{distro.identity.name} {distro.identity.version_id} ready at {self.settings.rescue_root}",
                arch=distro.architecture.value,
                lvm=distro.is_lvm,
                ade=distro.is_encrypted,
            )
            return s
        except RescueError as e:
            Log.fail(self.logger, f"Stage {s.stage} failed: {e}", **_failure_context(e))
            self.teardown()
            raise
        except KeyboardInterrupt:
            Log.warn(self.logger, f"Interrupted during stage {s.stage}")
            self.teardown()
            raise
        finally:
            self._ade_password = None

    def teardown(self) -> List[Tuple[str, str]]:
        if self._torn_down:
            return self.teardown_errors
        self._torn_down = True
        if self.session.mapping is None:
            # an import that failed midway may already have renamed groups
            self.session.mapping = self.resolver.mapping
        try:
            self.teardown_errors = self.teardown_stage.run(self.session.distro, self.session.mapping)
        except Exception as e:
            self.logger.error("Teardown aborted: %s", e)
            self.teardown_errors.append(("teardown", str(e)))
        self.session.stage = "torn-down"
        return self.teardown_errors

    # ------------------------------------------------------------------
    # whole run
    # ------------------------------------------------------------------

    def run_hook(self, argv: List[str]) -> int:
        """Run one operator command with the exported environment."""
        env = child_environment(self.session.environment)
        log = Log.bind(self.logger, stage="hook", cwd=self.settings.rescue_root)
        log.info("Running %s", U.pretty_cmd(argv))
        cp = U.run_cmd(self.logger, argv, check=False, env=env, cwd=self.settings.rescue_root, fatal=True)
        if cp.returncode:
            log.warning("Command exited with %d", cp.returncode)
        else:
            log.info("Command finished")
        return cp.returncode

    def run(
        self,
        hook: Optional[List[str]] = None,
        *,
        env_file: Optional[str] = None,
        keep_mounted: bool = False,
    ) -> int:
        """
        prepare(), then write the env file and run the hook. Teardown follows
        unless keep_mounted; teardown errors turn an otherwise clean run into 1.
        """
        session = self.prepare()
        rc = 0
        try:
            if env_file:
                path = write_env_file(env_file, session.environment)
                Log.ok(self.logger, f"Environment written to {path}")
            if hook:
                rc = self.run_hook(hook)
        finally:
            if keep_mounted:
                Log.warn(self.logger, f"Leaving {self.settings.rescue_root} mounted; run teardown manually")
            elif self.teardown() and rc == 0:
                rc = 1
        return rc


def _failure_context(e: RescueError) -> Dict[str, object]:
    ctx = e.context or {}
    return {k: ctx[k] for k in ("cmd", "rc", "stage") if k in ctx}
