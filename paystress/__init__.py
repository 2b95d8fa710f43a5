"""
Staged load generator for the payment gateway API.

Drives concurrent virtual users against the gateway's four endpoints
(``/health``, ``/channels``, ``/pay``, ``/query``) along a ramp/plateau
schedule, aggregates every outcome in a thread-safe metrics sink, and
gates the run on k6-style thresholds.

Data flow::

    LoadSchedule ─▶ VirtualUserScheduler ─▶ VirtualUser loops
        ─▶ ScenarioDispatcher ─▶ gateway (HTTP) ─▶ MetricsSink ─▶ evaluate()
"""

from paystress.config import RunConfig, load_run_config
from paystress.exceptions import ConfigurationError, PaystressError, ThresholdViolation
from paystress.metrics import MetricsSink, MetricsSnapshot
from paystress.runner import RunResult, prepare, run
from paystress.schedule import LoadSchedule, Stage
from paystress.scenarios import Outcome, Scenario, ScenarioDispatcher, TargetClient
from paystress.scheduler import VirtualUser, VirtualUserScheduler, VUState
from paystress.thresholds import ThresholdSpec, Verdict, evaluate, parse_thresholds

__all__ = [
    "ConfigurationError",
    "LoadSchedule",
    "MetricsSink",
    "MetricsSnapshot",
    "Outcome",
    "PaystressError",
    "RunConfig",
    "RunResult",
    "Scenario",
    "ScenarioDispatcher",
    "Stage",
    "TargetClient",
    "ThresholdSpec",
    "ThresholdViolation",
    "VUState",
    "Verdict",
    "VirtualUser",
    "VirtualUserScheduler",
    "evaluate",
    "load_run_config",
    "parse_thresholds",
    "prepare",
    "run",
]
