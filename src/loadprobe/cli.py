#!/usr/bin/env python3
# cli.py — Command-line entry point for loadprobe

import argparse
import asyncio
import logging
import math
import os
import random
import sys

from loadprobe.core import LoadRunner
from loadprobe.logging_config import setup_logging
from loadprobe.models import ConfigurationError, ServerUnavailableError
from loadprobe.persistence import DEFAULT_REPORT_FILE, ReportStore, diff_reports, render_diff
from loadprobe.rendering import has_critical, render_report
from loadprobe.resources import analyze_bundle
from loadprobe.targets import PRESETS, get_preset, load_targets
from loadprobe.thresholds import Thresholds, load_thresholds
from loadprobe.utils import GracefulKiller

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CRITICAL = 1
EXIT_CONFIG_ERROR = 2


def _milliseconds(value, allow_zero=False):
    try:
        ms = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number of milliseconds, got {value!r}")
    if not math.isfinite(ms) or ms < 0 or (ms == 0 and not allow_zero):
        bound = "zero or positive" if allow_zero else "positive"
        raise argparse.ArgumentTypeError(f"must be a finite {bound} number of milliseconds, got {value!r}")
    return ms


def positive_ms(value):
    return _milliseconds(value)


def non_negative_ms(value):
    return _milliseconds(value, allow_zero=True)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="loadprobe: batched HTTP load testing with latency threshold reports",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Target selection
    parser.add_argument(
        "--base-url",
        default=os.getenv("LOADPROBE_BASE_URL", "http://localhost:3000"),
        help="Server to probe (env: LOADPROBE_BASE_URL)",
    )
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default="api",
        help="Built-in target list",
    )
    parser.add_argument(
        "--targets",
        default=None,
        help="JSON file with targets; overrides --preset",
    )

    # Load shape
    parser.add_argument(
        "-n",
        "--requests",
        type=int,
        default=5,
        help="Requests per target",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        default=3,
        help="Requests in flight per batch",
    )
    parser.add_argument(
        "--timeout-ms",
        type=positive_ms,
        # argparse converts string defaults with `type` too
        default=os.getenv("LOADPROBE_TIMEOUT_MS", "5000"),
        help="Per-request timeout in milliseconds (env: LOADPROBE_TIMEOUT_MS)",
    )
    parser.add_argument(
        "--batch-delay-ms",
        type=non_negative_ms,
        default=os.getenv("LOADPROBE_BATCH_DELAY_MS", "0"),
        help="Pause between batches in milliseconds (env: LOADPROBE_BATCH_DELAY_MS)",
    )
    parser.add_argument(
        "--skip-server-check",
        action="store_true",
        help="Do not check that the server answers before starting",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the queue shuffle, for reproducible ordering",
    )

    # Reporting
    parser.add_argument(
        "--thresholds",
        default=None,
        help="JSON file overriding the latency bands",
    )
    parser.add_argument(
        "--report",
        default=DEFAULT_REPORT_FILE,
        help="Where to write the JSON report",
    )
    parser.add_argument(
        "--no-report",
        action="store_true",
        help="Do not write a JSON report",
    )
    parser.add_argument(
        "--compare",
        default=None,
        help="Previous JSON report to diff against",
    )
    parser.add_argument(
        "--dist-dir",
        default=None,
        help="Production build directory to measure JS bundle size",
    )
    parser.add_argument(
        "--fail-on-critical",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Exit with status 1 when any target is classified CRITICAL",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar",
    )

    # Logging & Debugging
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging",
    )
    verbosity.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only warnings and errors on stderr; the log file still gets everything",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Optional file to write logs to (e.g., loadprobe.log)",
    )

    return parser.parse_args(argv)


async def run(args) -> int:
    try:
        targets = load_targets(args.targets) if args.targets else get_preset(args.preset)
        thresholds = load_thresholds(args.thresholds) if args.thresholds else Thresholds()
        cancel_event = asyncio.Event()
        runner = LoadRunner(
            base_url=args.base_url,
            targets=targets,
            requests_per_target=args.requests,
            concurrency=args.concurrency,
            timeout_ms=args.timeout_ms,
            batch_delay_ms=args.batch_delay_ms,
            server_check=not args.skip_server_check,
            cancel_event=cancel_event,
            rng=random.Random(args.seed) if args.seed is not None else None,
            use_progress_bar=args.progress,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    GracefulKiller(cancel_event)
    logger.info(
        f"Starting load test against {runner.base_url} | "
        f"{len(targets)} targets x {args.requests} requests | "
        f"Concurrency: {args.concurrency} | Timeout: {args.timeout_ms:g}ms"
    )

    try:
        result = await runner.run()
    except ServerUnavailableError as e:
        logger.error(f"Server unavailable: {e}")
        return EXIT_CONFIG_ERROR

    client_metrics = analyze_bundle(args.dist_dir, thresholds) if args.dist_dir else None
    report = render_report(result.summary, result.target_stats, thresholds, client_metrics)
    print(report.text)

    if args.compare:
        previous = ReportStore(args.compare).load()
        if previous is not None:
            print(render_diff(diff_reports(previous, report.data)))

    if not args.no_report:
        ReportStore(args.report).save(report.data)

    if args.fail_on_critical and has_critical(result.target_stats, thresholds):
        logger.warning("At least one target is classified CRITICAL")
        return EXIT_CRITICAL
    return EXIT_OK


def main(argv=None):
    args = parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else "INFO", log_file=args.log_file, quiet=args.quiet)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
