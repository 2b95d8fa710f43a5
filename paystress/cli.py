"""
Command-line entry point.

Two sub-commands::

    # Drive load along the profile, then gate on its thresholds
    paystress run --profile stress_profile.yml --base-url http://localhost:8080/api/v1

    # Validate a profile and print its schedule without sending traffic
    paystress check --profile stress_profile.yml

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "the run never started":

- ``0``: all thresholds passed
- ``1``: at least one threshold was breached
- ``2``: bad configuration or an unexpected script failure
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from paystress import metrics
from paystress.config import DEFAULT_PROFILE_PATH, RunConfig, load_run_config
from paystress.exceptions import ConfigurationError, ThresholdViolation
from paystress.runner import LoadRun, RunResult, prepare

logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for a CLI invocation."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Per-connection pool logging.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="paystress",
        description="Staged load generator for the payment gateway API.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--profile",
        type=Path,
        default=DEFAULT_PROFILE_PATH,
        help="Path to the YAML run profile (stages, thresholds, weights)",
    )
    common.add_argument(
        "--env",
        default=None,
        help="Configuration environment: development, testing or production",
    )
    common.add_argument("--base-url", default=None, help="Override the gateway base URL")
    common.add_argument("--log-level", default=None, help="Override the log level")

    run_parser = subparsers.add_parser("run", parents=[common], help="Run the load profile")
    run_parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs")

    subparsers.add_parser("check", parents=[common], help="Validate a profile without sending load")

    return parser.parse_args(argv)


def _load(args: argparse.Namespace) -> RunConfig:
    return load_run_config(
        args.profile,
        env=args.env,
        base_url=args.base_url,
        log_level=args.log_level,
        seed=getattr(args, "seed", None),
    )


def print_schedule(load_run: LoadRun) -> None:
    """Print the stage table for a prepared run."""
    print(f"Target: {load_run.config.base_url}")
    print("-" * 60)
    print(f"{'Stage':<8}{'Duration (s)':>16}{'Target users':>16}{'Ends at (s)':>16}")
    print("-" * 60)
    ends_at = 0.0
    for index, stage in enumerate(load_run.schedule, start=1):
        ends_at += stage.duration
        print(f"{index:<8}{stage.duration:>16g}{stage.target:>16}{ends_at:>16g}")
    print("-" * 60)
    print(f"Total duration: {load_run.schedule.total_duration:g}s, "
          f"peak users: {load_run.schedule.max_target}")
    if load_run.thresholds:
        print("Thresholds:")
        for spec in load_run.thresholds:
            print(f"  {spec}")


def print_summary(result: RunResult) -> None:
    """Print run totals and the threshold table to stdout for CI logs."""
    snapshot = result.snapshot
    print("Stress Test Results")
    print("-" * 60)
    print(f"Duration: {result.stats.duration:.1f}s")
    print(f"Virtual users: {result.stats.users_spawned} spawned, "
          f"peak {result.stats.peak_users}")
    print(f"Total Requests: {result.total_requests}")
    print(f"Successful Requests: {result.successful_requests}")
    print(f"Error Requests: {result.failed_requests}")
    print(f"Failed Iterations: {result.failed_iterations}")
    if result.total_requests:
        success_rate = result.successful_requests / result.total_requests * 100.0
        print(f"Success Rate: {success_rate:.2f}%")
    print(f"Requests Per Second: {result.requests_per_second:.2f}")
    print(f"Payment Requests: {snapshot.counter(metrics.PAYMENT_REQUESTS)}")
    print(f"Query Requests: {snapshot.counter(metrics.QUERY_REQUESTS)}")

    duration = snapshot.trend(metrics.HTTP_REQ_DURATION)
    if duration.count:
        print(
            f"{metrics.HTTP_REQ_DURATION}: avg={duration.avg:.2f}ms "
            f"med={duration.med:.2f}ms p(95)={duration.percentile(95):.2f}ms "
            f"max={duration.max:.2f}ms"
        )

    if result.stats.aborted:
        print("Run was interrupted before the schedule completed")

    print()
    print("Performance Threshold Check")
    print("-" * 60)
    print(f"{'Metric':<30}{'Actual':>10}{'Limit':>10}{'Status':>10}")
    print("-" * 60)
    for item in result.verdict.results:
        actual = "n/a" if item.observed is None else f"{item.observed:.4g}"
        limit = f"{item.spec.operator}{item.spec.limit:g}"
        status = "PASS" if item.passed else "FAIL"
        print(f"{item.spec.label:<30}{actual:>10}{limit:>10}{status:>10}")
    print("-" * 60)
    print(f"Overall: {'PASS' if result.passed else 'FAIL'}")


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: load the profile, run or check it, and report.

    Returns:
        ``EXIT_PASS`` (0) if all thresholds are met,
        ``EXIT_THRESHOLD_BREACH`` (1) if any are exceeded, or
        ``EXIT_SCRIPT_ERROR`` (2) on configuration or unexpected errors.
    """
    args = parse_args(argv)

    try:
        config = _load(args)
        configure_logging(config.log_level)
        load_run = prepare(config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    if args.command == "check":
        print_schedule(load_run)
        return EXIT_PASS

    try:
        result = load_run.execute()
    except Exception as exc:  # pragma: no cover - last-resort CLI guard
        logger.exception("Run failed")
        print(f"Run failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    print_summary(result)
    try:
        result.verdict.raise_for_failures()
    except ThresholdViolation as exc:
        logger.error("%s", exc)
        return EXIT_THRESHOLD_BREACH
    return EXIT_PASS


if __name__ == "__main__":
    raise SystemExit(main())
