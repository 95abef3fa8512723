#!/usr/bin/env python3
"""Run a load plan against the cache service and exit with the verdict."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from pydantic import ValidationError
from uvicorn.logging import DefaultFormatter

from cacheload.config import settings
from cacheload.core.profiles import PROFILES, get_profile
from cacheload.core.runner import EXIT_INTERRUPTED, LoadTestRunner
from cacheload.models.outcome import RunResult
from cacheload.models.plan import LoadPlan

logger = logging.getLogger(__name__)

# Plan or argument problems, before any traffic is sent.
EXIT_USAGE = 2


def _configure_logging(level: str) -> None:
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(DefaultFormatter(fmt=settings.LOG_FORMAT, use_colors=True))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        handlers=[console_handler],
        force=True,
    )

    # Per-request transport logging is far too chatty under load.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate staged concurrent load against the cache service."
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        default="performance",
        help="Built-in load profile (default: performance).",
    )
    source.add_argument("--plan", type=Path, help="Path to a JSON load plan.")
    parser.add_argument(
        "--base-url",
        default=None,
        help="Cache service base URL (default: CACHE_BASE_URL).",
    )
    parser.add_argument(
        "--summary-export",
        type=Path,
        default=None,
        help="Write the run result as JSON to this path.",
    )
    parser.add_argument(
        "--log-level", default=None, help="Logging level (default: LOG_LEVEL)."
    )
    parser.add_argument(
        "--tick",
        type=float,
        default=None,
        help="Scheduler tick in seconds (default: SCHEDULER_TICK_SECONDS).",
    )
    return parser


def load_plan(args: argparse.Namespace) -> LoadPlan:
    if args.plan is not None:
        return LoadPlan.model_validate_json(args.plan.read_text(encoding="utf-8"))
    return get_profile(args.profile)


def export_summary(result: RunResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Summary written to %s", path)


async def _run(args: argparse.Namespace, plan: LoadPlan) -> int:
    runner = LoadTestRunner(plan, base_url=args.base_url, tick_seconds=args.tick)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.cancel)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still applies.
            pass

    result = await runner.run()

    export_path = args.summary_export or (
        Path(settings.SUMMARY_EXPORT_PATH) if settings.SUMMARY_EXPORT_PATH else None
    )
    if export_path is not None:
        try:
            export_summary(result, export_path)
        except OSError as e:
            logger.error("Failed to write summary to %s: %s", export_path, e)

    if result.failure_reason:
        logger.error("❌ Run failed: %s", result.failure_reason)
    elif result.thresholds_passed:
        logger.info("✅ All thresholds passed")
    else:
        failed = [k for k, v in result.thresholds.items() if not v["passed"]]
        logger.error("❌ Thresholds breached: %s", ", ".join(failed))
    return result.exit_code


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level or settings.LOG_LEVEL)

    try:
        plan = load_plan(args)
    except (OSError, ValidationError, KeyError) as e:
        logger.error("Invalid load plan: %s", e)
        return EXIT_USAGE

    try:
        return asyncio.run(_run(args, plan))
    except KeyboardInterrupt:
        print("[cacheload] interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
