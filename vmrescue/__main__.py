# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmrescue/__main__.py
from __future__ import annotations

import logging
import sys
import traceback
from typing import Any, Dict, Optional, Sequence

from . import __version__
from .cli.argument_parser import parse_args_with_config
from .config.settings import RescueSettings
from .core.exceptions import Fatal, format_exception_for_cli
from .core.logger import Log
from .core.utils import U
from .orchestrator.pipeline import RescuePipeline


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _settings_conf(conf: Dict[str, Any], args: Any) -> Dict[str, Any]:
    merged = dict(conf)
    if args.recover_disk:
        merged["recover_disk"] = args.recover_disk
    return merged


def _run(logger: logging.Logger, args: Any, conf: Dict[str, Any]) -> int:
    U.require_root_if_needed(logger, True)
    settings = RescueSettings.from_mapping(_settings_conf(conf, args))

    pipeline = RescuePipeline(logger, settings, ade_password=args.ade_password)
    args.ade_password = None

    return pipeline.run(args.hook, env_file=args.env_file, keep_mounted=args.keep_mounted)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Optional[logging.Logger] = None

    # Phase 1: parse (Fatal can happen here)
    try:
        args, conf, logger = parse_args_with_config(argv)
    except Fatal as e:
        if logger is None:
            _print_stderr(f"💥 ERROR    {e}")
        raise SystemExit(getattr(e, "code", 1))
    except KeyboardInterrupt:
        _print_stderr("Interrupted by user (Ctrl+C).")
        raise SystemExit(130)

    # config-sourced logging knobs take effect from here on
    logger = Log.setup(args.verbose, args.log_file, quiet=args.quiet, json_logs=args.json_logs)
    Log.banner(logger, f"vmrescue {__version__}")

    # Phase 2: run pipeline
    try:
        rc = _run(logger, args, conf)
    except Fatal as e:
        logger.error(format_exception_for_cli(e, verbose=args.verbose))
        rc = getattr(e, "code", 1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C).")
        rc = 130
    except Exception as e:
        logger.error(f"💥 UNHANDLED {type(e).__name__}: {e}")
        logger.debug(traceback.format_exc())
        rc = 1

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
