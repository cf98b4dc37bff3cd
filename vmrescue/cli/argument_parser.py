# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/cli/argument_parser.py
from __future__ import annotations

import argparse
import os
import shlex
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config.config_loader import Config
from ..core.exceptions import ConfigurationError
from ..core.logger import Log, c
from ..core.utils import U
from .help_texts import STAGES_SUMMARY, YAML_EXAMPLE

ADE_PASSWORD_ENV = "VMRESCUE_ADE_PASSWORD"


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Combines raw description formatting with default value display in help."""


def _build_epilog() -> str:
    return (
        c("YAML example:\n", "cyan", ["bold"])
        + c(YAML_EXAMPLE, "cyan")
        + "\n"
        + c(STAGES_SUMMARY, "cyan")
    )


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Global config/logging (two-phase parse relies on these)
    # ------------------------------------------------------------------
    from .. import __version__

    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged normalized config and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv (trace)")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Quieter output: -q warnings, -qq errors")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON log records.")


def _add_recovery_knobs(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--custom-recover-disk",
        dest="recover_disk",
        default=None,
        help="Device to recover instead of the LUN symlink or NVMe discovery (e.g. /dev/sdc).",
    )
    p.add_argument(
        "--ade-password",
        dest="ade_password",
        default=None,
        help=f"Base64 ADE passphrase; skips the BEK volume. Also read from ${ADE_PASSWORD_ENV}.",
    )


def _add_action_knobs(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--env-file",
        dest="env_file",
        default=None,
        help="Write the exported classification variables to this file (mode 0600).",
    )
    p.add_argument(
        "--exec",
        dest="exec_cmd",
        default=None,
        help="Command to run with the exported variables once the chroot tree is ready.",
    )
    p.add_argument(
        "--keep-mounted",
        dest="keep_mounted",
        action="store_true",
        help="Leave the chroot tree and volume mappings in place after a successful run.",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vmrescue",
        description=c("vmrescue: mount a broken Linux VM disk for offline repair", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=_build_epilog(),
    )
    _add_global_config_logging(p)
    _add_recovery_knobs(p)
    _add_action_knobs(p)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def _finalize_args(args: argparse.Namespace) -> None:
    """Derived fields: the hook argv and the passphrase fallback."""
    args.hook = None
    if args.exec_cmd:
        try:
            args.hook = shlex.split(str(args.exec_cmd))
        except ValueError as e:
            raise ConfigurationError(msg=f"--exec is not a valid command line: {e}", cause=e) from e
        if not args.hook:
            raise ConfigurationError(msg="--exec is empty")

    if not args.ade_password:
        args.ade_password = os.environ.get(ADE_PASSWORD_ENV) or None

    if args.recover_disk is not None:
        d = str(args.recover_disk).strip()
        if not d.startswith("/"):
            raise ConfigurationError(msg=f"--custom-recover-disk must be an absolute device path (got {d!r})")
        args.recover_disk = d


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Flow:
      Phase 0: parse ONLY global flags needed to locate config/logging
      Phase 1: load+merge config files
      Phase 2: apply config as defaults onto the parser
      Phase 3: full parse to get final args
      Phase 4: derive the hook argv and passphrase
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(argv)

    if logger is None:
        logger = Log.setup(
            getattr(args0, "verbose", 0),
            getattr(args0, "log_file", None),
            quiet=getattr(args0, "quiet", 0),
            json_logs=getattr(args0, "json_logs", False),
        )

    conf = _load_merged_config(logger, getattr(args0, "config", None) or [])

    if getattr(args0, "dump_config", False):
        print(U.json_dump({k: ("<redacted>" if "password" in k else v) for k, v in conf.items()}))
        raise SystemExit(0)

    # Apply config as defaults so CLI can override.
    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)
    _finalize_args(args)
    return args, conf, logger
