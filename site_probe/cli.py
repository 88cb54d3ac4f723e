"""CLI entry point for site-probe."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from site_probe.config import preset_names, resolve_config
from site_probe.driver.playwright_driver import PlaywrightDriver
from site_probe.errors import ConfigError, DriverError, RunFailedError
from site_probe.models.result import TestType
from site_probe.orchestrator import RunOutcome, TestOrchestrator, default_sinks
from site_probe.parallel import CancellationToken
from site_probe.policy.baseline import BaselineDiff
from site_probe.policy.environment import EnvironmentManager
from site_probe.policy.watch import WatchMode
from site_probe.report import STATUS_SYMBOLS, is_failing
from site_probe.storage.kv import JsonFileStore
from site_probe.storage.metrics import TrendReport

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_FATAL = 2


def log_results_summary(log: logging.Logger, outcome: RunOutcome) -> None:
    """Log a formatted summary of the run, failing checks first."""
    report = outcome.report
    summary = report.summary
    log.info("=" * 80)
    log.info("Test Results Summary (run %s):", report.metadata.run_id)
    log.info("=" * 80)

    for result in report.iter_results():
        if not is_failing(result):
            continue
        log.info(
            "%s %s: %s (%.0fms)",
            STATUS_SYMBOLS[result.status],
            result.check_id,
            result.status,
            result.duration_ms,
        )
        if result.error is not None:
            log.info("  [%s] %s", result.error.classification, result.error.message)

    log.info("-" * 80)
    log.info(
        "Pages: %d tested, %d unreachable",
        summary.total_pages,
        summary.unreachable_pages,
    )
    log.info(
        "%s %d passed  %s %d failed  %s %d errors  %s %d skipped  (%.1f%%)",
        STATUS_SYMBOLS["pass"],
        summary.passed,
        STATUS_SYMBOLS["fail"],
        summary.failed,
        STATUS_SYMBOLS["error"],
        summary.errors,
        STATUS_SYMBOLS["skip"],
        summary.skipped,
        summary.pass_rate,
    )
    for classification, count in summary.by_classification.items():
        log.info("  %s: %d", classification, count)
    if report.metadata.cancel_reason:
        log.warning("Run stopped early: %s", report.metadata.cancel_reason)

    diff = outcome.outputs.get("baseline")
    if isinstance(diff, BaselineDiff):
        log.info(
            "Baseline: %d regression(s), %d fixed, %d new, %d flaky, %d removed",
            len(diff.regressions),
            len(diff.fixed),
            len(diff.new),
            len(diff.flaky),
            len(diff.removed),
        )
        for check_id in diff.regressions:
            log.info("  Regression: %s", check_id)

    trend = outcome.outputs.get("metrics")
    if isinstance(trend, TrendReport) and trend.runs > 1:
        log.info("Trend over %d run(s): %s", trend.runs, trend.direction)


def format_output(outcome: RunOutcome) -> dict[str, Any]:
    """Format the run summary for JSON output."""
    report = outcome.report
    summary = report.summary
    output: dict[str, Any] = {
        "run_id": report.metadata.run_id,
        "environment": report.metadata.environment,
        "pages": summary.total_pages,
        "unreachable": summary.unreachable_pages,
        "total": summary.total_checks,
        "passed": summary.passed,
        "failed": summary.failed,
        "errors": summary.errors,
        "skipped": summary.skipped,
        "pass_rate": summary.pass_rate,
        "by_classification": dict(summary.by_classification),
        "failing": [
            {
                "check_id": result.check_id,
                "status": result.status,
                "classification": result.error.classification if result.error else None,
                "message": result.error.message if result.error else None,
            }
            for result in report.iter_results()
            if is_failing(result)
        ],
    }
    files = outcome.outputs.get("files")
    if files:
        output["report_files"] = [str(path) for path in files]
    diff = outcome.outputs.get("baseline")
    if isinstance(diff, BaselineDiff):
        output["baseline"] = {
            "regressions": list(diff.regressions),
            "fixed": list(diff.fixed),
            "new": list(diff.new),
            "flaky": list(diff.flaky),
            "removed": list(diff.removed),
        }
    trend = outcome.outputs.get("metrics")
    if isinstance(trend, TrendReport):
        output["trend"] = trend.direction
    return output


def build_overrides(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate command-line flags into configuration overrides.

    Flags that were not given map to None, which leaves lower layers intact.
    """
    return {
        "base_url": args.url,
        "depth": args.depth,
        "max_pages": args.max_pages,
        "output_dir": str(args.output) if args.output else None,
        "browser": args.browser,
        "headless": False if args.headed else None,
        "screenshots": False if args.no_screenshots else None,
        "visual": False if args.no_screenshots else None,
        "accessibility": False if args.no_a11y else None,
        "performance": False if args.no_perf else None,
        "edge_functions": False if args.no_edge else None,
        "workers": args.workers,
        "include_patterns": args.include or None,
        "exclude_patterns": args.exclude or None,
        "routes_dir": str(args.routes_dir) if args.routes_dir else None,
        "edge_functions_dir": (
            str(args.functions_dir) if args.functions_dir else None
        ),
        "allow_destructive": True if args.allow_destructive else None,
    }


async def run(args: argparse.Namespace) -> int:
    """Run site-probe and return the exit code."""
    log = logging.getLogger("site_probe")

    try:
        environment = (
            EnvironmentManager().resolve(args.env) if args.env is not None else None
        )
        config = resolve_config(
            build_overrides(args),
            preset=args.preset,
            environment_overrides=environment,
        )
    except ConfigError as exc:
        log.error("Configuration error: %s", exc)
        return EXIT_FATAL

    log.info(
        "Testing %s (environment=%s, depth=%s, max_pages=%d, workers=%d)",
        config.base_url,
        config.environment,
        config.depth,
        config.max_pages,
        config.workers,
    )
    store = JsonFileStore(root=Path(config.output_dir) / "store")
    only = [TestType(value) for value in args.only or ()]
    skip = [TestType(value) for value in args.skip or ()]

    try:
        async with PlaywrightDriver.from_config(config) as driver:
            orchestrator = TestOrchestrator(
                driver=driver,
                config=config,
                store=store,
                sinks=default_sinks(config, store, baseline=args.baseline),
                only_types=only,
                skip_types=skip,
            )
            if args.watch:
                outcomes = await WatchMode(
                    run_once=orchestrator.run,
                    paths=args.watch,
                    max_runs=args.max_runs,
                    cancel=CancellationToken(),
                ).run()
                if not outcomes:
                    log.error("No watched run completed")
                    return EXIT_FATAL
                outcome = outcomes[-1]
            else:
                outcome = await orchestrator.run()
    except DriverError as exc:
        log.error("Browser could not be started: %s", exc)
        return EXIT_FATAL
    except RunFailedError as exc:
        log.error("Run failed during %s: %s", exc.state, exc.cause)
        return EXIT_FATAL

    log_results_summary(log, outcome)
    print(json.dumps(format_output(outcome), indent=2))

    return EXIT_FAILURES if outcome.report.summary.has_failures else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="site-probe",
        description="Discover and test a running web application",
    )
    parser.add_argument(
        "--url",
        "-u",
        help="Base URL of the application (or set SITE_PROBE_URL with --env)",
    )
    parser.add_argument("--preset", "-p", choices=preset_names(), help="Preset")
    parser.add_argument(
        "--depth",
        "-d",
        choices=["shallow", "medium", "deep"],
        help="Discovery depth (1, 2 or 3 link hops)",
    )
    parser.add_argument(
        "--max-pages", "-m", type=int, help="Maximum number of pages to discover"
    )
    parser.add_argument("--output", "-o", type=Path, help="Report directory")
    parser.add_argument(
        "--browser", "-b", choices=["chromium", "firefox", "webkit"], help="Browser"
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser")
    parser.add_argument(
        "--no-screenshots",
        action="store_true",
        help="Disable screenshots and visual comparison",
    )
    parser.add_argument(
        "--no-a11y", action="store_true", help="Disable accessibility checks"
    )
    parser.add_argument(
        "--no-perf", action="store_true", help="Disable performance checks"
    )
    parser.add_argument(
        "--no-edge", action="store_true", help="Disable edge function checks"
    )
    parser.add_argument("--workers", "-w", type=int, help="Parallel page workers")
    parser.add_argument(
        "--env",
        "-e",
        help="Target environment (local, staging, production or custom)",
    )
    parser.add_argument(
        "--baseline",
        action="store_true",
        help="Compare with the stored baseline, then update it",
    )
    parser.add_argument(
        "--watch",
        type=Path,
        action="append",
        metavar="PATH",
        help="Re-run when files under PATH change (repeatable)",
    )
    parser.add_argument(
        "--max-runs", type=int, help="Stop watching after this many runs"
    )
    parser.add_argument(
        "--include", action="append", metavar="REGEX", help="Only crawl matching URLs"
    )
    parser.add_argument(
        "--exclude", action="append", metavar="REGEX", help="Skip matching URLs"
    )
    parser.add_argument(
        "--only",
        action="append",
        choices=[str(t) for t in TestType],
        help="Only run checks of this type (repeatable)",
    )
    parser.add_argument(
        "--skip",
        action="append",
        choices=[str(t) for t in TestType],
        help="Skip checks of this type (repeatable)",
    )
    parser.add_argument(
        "--routes-dir", type=Path, help="Source directory scanned for route paths"
    )
    parser.add_argument(
        "--functions-dir", type=Path, help="Directory of edge function sources"
    )
    parser.add_argument(
        "--allow-destructive",
        action="store_true",
        help=(
            "Also click delete, logout and similar controls "
            "(implied by --depth deep outside read-only environments)"
        ),
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    return parser


def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":  # pragma: no cover
    main()
