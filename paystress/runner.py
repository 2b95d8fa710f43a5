"""
Wire a :class:`~paystress.config.RunConfig` into a complete run.

``prepare`` does every check that can fail before load starts
(schedule shape, scenario weights, threshold syntax and metric names),
so a bad profile is rejected without a single request reaching the
gateway.  ``LoadRun.execute`` then drives the scheduler, finalizes the
metrics sink and evaluates the thresholds.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable

from paystress import metrics
from paystress.config import RunConfig
from paystress.helpers import OrderNumberGenerator
from paystress.schedule import LoadSchedule
from paystress.scenarios import Scenario, ScenarioDispatcher, TargetClient, default_scenarios
from paystress.scheduler import RunStats, VirtualUserScheduler
from paystress.thresholds import ThresholdSpec, Verdict, evaluate, parse_thresholds, validate_against

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    """Everything a finished run exposes: metrics, verdict and bookkeeping."""

    snapshot: metrics.MetricsSnapshot
    verdict: Verdict
    stats: RunStats

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    @property
    def total_requests(self) -> int:
        return self.snapshot.counter(metrics.HTTP_REQS)

    @property
    def successful_requests(self) -> int:
        """HTTP calls answered with ``200``."""
        return self.snapshot.rate(metrics.CHECKS).trues

    @property
    def failed_requests(self) -> int:
        """HTTP calls that got another status, timed out or never connected."""
        return self.snapshot.rate(metrics.CHECKS).falses

    @property
    def failed_iterations(self) -> int:
        """Scenario invocations counted in the ``errors`` rate, crashes included."""
        return self.snapshot.rate(metrics.ERRORS).trues

    @property
    def requests_per_second(self) -> float:
        duration = self.stats.duration
        return self.total_requests / duration if duration > 0 else 0.0


class LoadRun:
    """A validated, ready-to-execute run.  Build one with :func:`prepare`."""

    def __init__(
        self,
        config: RunConfig,
        schedule: LoadSchedule,
        dispatcher: ScenarioDispatcher,
        thresholds: tuple[ThresholdSpec, ...],
        target_factory: Callable[[], TargetClient],
        rng: random.Random,
    ):
        self.config = config
        self.schedule = schedule
        self.dispatcher = dispatcher
        self.sink = dispatcher.sink
        self.thresholds = thresholds
        self.scheduler = VirtualUserScheduler(
            schedule,
            dispatcher,
            target_factory,
            tick_interval=config.tick_interval,
            pacing=config.pacing,
            rng=rng,
            # An in-flight request can take at most one timeout to finish.
            stop_timeout=config.request_timeout + config.pacing[1] + 1.0,
        )

    def stop(self) -> None:
        """Ask a running :meth:`execute` to wind down gracefully."""
        self.scheduler.stop()

    def execute(self) -> RunResult:
        stats = self.scheduler.run()
        snapshot = self.sink.close()
        verdict = evaluate(snapshot, self.thresholds)
        if verdict.passed:
            logger.info("All %d thresholds passed", len(self.thresholds))
        else:
            logger.warning(
                "%d of %d thresholds failed: %s",
                len(verdict.failures),
                len(self.thresholds),
                ", ".join(str(spec) for spec in verdict.failures),
            )
        return RunResult(snapshot=snapshot, verdict=verdict, stats=stats)


def prepare(
    config: RunConfig,
    scenarios: list[Scenario] | None = None,
    target_factory: Callable[[], TargetClient] | None = None,
    rng: random.Random | None = None,
) -> LoadRun:
    """
    Validate *config* and assemble a :class:`LoadRun`.

    Args:
        config: The merged run configuration.
        scenarios: Scenario set to use instead of the four built-ins.
        target_factory: Builds one :class:`TargetClient` per virtual
            user; defaults to a fresh ``requests`` session against
            ``config.base_url``.
        rng: Master random source; defaults to ``Random(config.seed)``.

    Raises:
        ConfigurationError: If anything about the run is invalid.
    """
    schedule = LoadSchedule(config.stages, start_target=config.start_target)

    sink = metrics.create_default_sink()
    if scenarios is None:
        scenarios = default_scenarios(config.weights, order_numbers=OrderNumberGenerator())
    dispatcher = ScenarioDispatcher(scenarios, sink)

    thresholds = parse_thresholds(config.thresholds)
    validate_against(thresholds, sink.snapshot())

    if target_factory is None:
        def target_factory() -> TargetClient:
            return TargetClient(config.base_url, timeout=config.request_timeout)

    logger.info("Prepared run against %s: %r", config.base_url, schedule)
    return LoadRun(
        config,
        schedule,
        dispatcher,
        thresholds,
        target_factory,
        rng if rng is not None else random.Random(config.seed),
    )


def run(config: RunConfig, **kwargs) -> RunResult:
    """Prepare and execute a run in one call."""
    return prepare(config, **kwargs).execute()
