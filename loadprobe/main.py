from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Callable

from .config import (
    DEFAULT_BROWSER,
    DEFAULT_DURATION_MINUTES,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_THREADS,
    DEFAULT_URLS_PATH,
    HarnessConfig,
    parse_bool,
    parse_non_negative_int,
    parse_positive_float,
    parse_positive_int,
)
from .dispatch import RoundRobinDispatcher
from .measure import BROWSERS, DEFAULT_PAGE_LOAD_TIMEOUT_S, MeasurementResult, PlaywrightMeasurer
from .pool import DEFAULT_SLOW_THRESHOLD_MS, PoolStatistics, WorkerPool, measurement_work
from .results import ResultSink, read_results, summarise_results
from .sources import LoadError, TargetSource

LOGGER = logging.getLogger("loadprobe")

Measure = Callable[[str], MeasurementResult]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    env = os.environ
    parser = argparse.ArgumentParser(description="Duration-bounded page load harness")
    parser.add_argument(
        "--urls",
        default=env.get("LOADPROBE_URLS", DEFAULT_URLS_PATH),
        help="Newline-delimited target list (first comma field is the URL)",
    )
    parser.add_argument(
        "--output-dir",
        default=env.get("LOADPROBE_OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
        help="Directory receiving load-results.csv and slow-results.csv",
    )
    parser.add_argument(
        "--threads",
        default=env.get("LOADPROBE_THREADS"),
        help=f"Number of concurrent workers (default {DEFAULT_THREADS})",
    )
    parser.add_argument(
        "--duration-minutes",
        default=env.get("LOADPROBE_DURATION_MINUTES"),
        help=f"Run duration in minutes (default {DEFAULT_DURATION_MINUTES})",
    )
    parser.add_argument(
        "--duration-seconds",
        default=env.get("LOADPROBE_DURATION_SECONDS"),
        help="Run duration in seconds; overrides --duration-minutes",
    )
    parser.add_argument(
        "--slow-threshold-ms",
        default=env.get("LOADPROBE_SLOW_THRESHOLD_MS"),
        help=f"Load time at which an attempt is also logged as slow (default {DEFAULT_SLOW_THRESHOLD_MS})",
    )
    parser.add_argument(
        "--page-load-timeout",
        default=env.get("LOADPROBE_PAGE_LOAD_TIMEOUT"),
        help=f"Page load timeout in seconds (default {DEFAULT_PAGE_LOAD_TIMEOUT_S:g})",
    )
    parser.add_argument(
        "--headless",
        default=env.get("LOADPROBE_HEADLESS", "false"),
        help="Run the browser without a window (true/false)",
    )
    parser.add_argument(
        "--browser",
        choices=BROWSERS,
        default=env.get("LOADPROBE_BROWSER", DEFAULT_BROWSER),
    )
    parser.add_argument(
        "--sanity-check",
        action="store_true",
        help="Open example.com once, check its title and exit",
    )
    parser.add_argument(
        "--log-file",
        default=env.get("LOADPROBE_LOG_FILE"),
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--log-level",
        default=env.get("LOADPROBE_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def configure_file_logging(log_path: Path) -> logging.Handler:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"))
    logging.getLogger("loadprobe").addHandler(handler)
    return handler


def build_config(args: argparse.Namespace) -> HarnessConfig:
    if args.duration_seconds:
        duration_seconds = parse_positive_float(
            args.duration_seconds,
            DEFAULT_DURATION_MINUTES * 60.0,
            name="duration seconds",
        )
    else:
        minutes = parse_positive_int(args.duration_minutes, DEFAULT_DURATION_MINUTES, name="duration minutes")
        duration_seconds = minutes * 60.0

    # argparse does not check environment-supplied defaults against choices.
    browser = args.browser
    if browser not in BROWSERS:
        LOGGER.warning("invalid browser %r; defaulting to %s", browser, DEFAULT_BROWSER)
        browser = DEFAULT_BROWSER

    return HarnessConfig(
        urls_path=Path(args.urls),
        output_dir=Path(args.output_dir),
        threads=parse_positive_int(args.threads, DEFAULT_THREADS, name="threads"),
        duration_seconds=duration_seconds,
        slow_threshold_ms=parse_non_negative_int(
            args.slow_threshold_ms, DEFAULT_SLOW_THRESHOLD_MS, name="slow threshold"
        ),
        page_load_timeout_s=parse_positive_float(
            args.page_load_timeout, DEFAULT_PAGE_LOAD_TIMEOUT_S, name="page load timeout"
        ),
        headless=parse_bool(args.headless),
        browser=browser,
    )


def execute(config: HarnessConfig, measure: Measure) -> PoolStatistics:
    """Load the targets and drive the worker pool for the configured duration.

    Raises LoadError before any worker starts when the target list is unusable.
    """
    source = TargetSource(config.urls_path)
    targets = source.ensure_loaded()

    dispatcher = RoundRobinDispatcher(targets)
    sink = ResultSink(config.results_path, config.slow_results_path)
    pool = WorkerPool(dispatcher, sink, slow_threshold_ms=config.slow_threshold_ms)

    LOGGER.info(
        "Running %d worker(s) for %.1f minute(s) over %d target(s)",
        config.threads,
        config.duration_minutes,
        len(targets),
    )
    return pool.run_for(config.threads, config.duration_seconds, measurement_work(measure))


def report(config: HarnessConfig, stats: PoolStatistics) -> None:
    try:
        statuses = summarise_results(read_results(config.results_path))
    except (OSError, ValueError, KeyError):
        LOGGER.exception("unable to summarise %s", config.results_path)
        statuses = {}

    print(f"Attempts: {stats.attempts} ({stats.throughput_per_minute:.2f}/min over {stats.duration_s:.1f}s)")
    print(f"Slow (>= {config.slow_threshold_ms} ms): {stats.slow}")
    if stats.dropped:
        print(f"Rows dropped on write failure: {stats.dropped}", file=sys.stderr)
    print(f"Rows in {config.results_path}:")
    for status in sorted(statuses):
        print(f"  {status}: {statuses[status]}")


def run(argv: list[str] | None = None, measure: Measure | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    if args.log_file:
        configure_file_logging(Path(args.log_file))

    config = build_config(args)
    LOGGER.info("Results directory: %s", config.output_dir)

    measurer = PlaywrightMeasurer(
        browser=config.browser,
        headless=config.headless,
        page_load_timeout_s=config.page_load_timeout_s,
    )

    if args.sanity_check:
        try:
            passed = measurer.sanity_check()
        except Exception:  # noqa: BLE001
            LOGGER.exception("browser sanity check failed")
            return 1
        print(f"Sanity check: {'OK' if passed else 'FAILED'}")
        return 0 if passed else 1

    try:
        stats = execute(config, measure or measurer)
    except LoadError:
        LOGGER.exception("unable to load targets")
        return 1

    report(config, stats)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
