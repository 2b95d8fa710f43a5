"""
Scenarios and the dispatcher that runs one per virtual-user turn.

A scenario is a named, weighted unit of traffic against the payment
gateway.  The four built-in scenarios are:

- **health**: ``GET /health``
- **channels**: ``GET /channels``
- **pay**: ``POST /pay`` with a fresh order number (counted in
  ``payment_requests``)
- **query**: ``POST /query`` for a fixed order (counted in
  ``query_requests``)

A scenario succeeds iff the gateway answers ``200``.  Anything else,
including timeouts and refused connections, is a failed
:class:`Outcome`; failures are data, never exceptions, and nothing is
retried.

Each virtual user owns one :class:`TargetClient` (a ``requests``
session bound to the base URL) and one random source; the
:class:`ScenarioDispatcher` itself is stateless apart from the shared
metrics sink, so one dispatcher serves the whole run.
"""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urljoin

import requests

from paystress import metrics
from paystress.exceptions import ConfigurationError, RequestFailure
from paystress.helpers import OrderNumberGenerator, generate_order_no, payment_payload, query_payload

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


# =====================================================================
# HTTP access to the target
# =====================================================================


@dataclass(frozen=True)
class CallResult:
    """What one HTTP call produced: a status, or the reason there was none."""

    status: int | None
    latency_ms: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == 200

    def failure(self) -> RequestFailure | None:
        """Return a :class:`RequestFailure` describing the call, or ``None`` on success."""
        if self.ok:
            return None
        if self.status is None:
            return RequestFailure(self.error or "request failed")
        return RequestFailure(f"Expected 200, got {self.status}", status=self.status)


class TargetClient:
    """
    One virtual user's connection to the gateway under test.

    Wraps a ``requests.Session`` (connection pooling, keep-alive) and
    applies the per-request timeout.  ``call`` never raises for
    transport problems: timeouts and connection errors come back as a
    :class:`CallResult` with ``status=None``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def url_for(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def call(self, method: str, path: str, json: Any = None) -> CallResult:
        """Issue one request and time it from send to full response."""
        url = self.url_for(path)
        headers = JSON_HEADERS if json is not None else None
        started = time.perf_counter()
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            latency_ms = (time.perf_counter() - started) * 1000.0
            logger.debug("%s %s timed out after %.0f ms", method, url, latency_ms)
            return CallResult(None, latency_ms, "Request timed out")
        except requests.RequestException as exc:
            latency_ms = (time.perf_counter() - started) * 1000.0
            logger.debug("%s %s failed: %s", method, url, exc)
            return CallResult(None, latency_ms, f"Connection error: {exc.__class__.__name__}")

        latency_ms = (time.perf_counter() - started) * 1000.0
        if response.status_code != 200:
            logger.debug("%s %s returned %s", method, url, response.status_code)
        return CallResult(response.status_code, latency_ms)

    def close(self) -> None:
        self.session.close()


# =====================================================================
# Scenarios
# =====================================================================


@dataclass(frozen=True)
class Outcome:
    """
    Result of one scenario invocation.

    ``latency_ms`` spans the scenario's own request(s) only; ``timestamp``
    is the wall-clock completion time.
    """

    scenario: str
    success: bool
    latency_ms: float
    timestamp: float
    status: int | None = None
    error: str | None = None
    requests: int = 1


Action = Callable[[TargetClient, random.Random], CallResult]


@dataclass(frozen=True)
class Scenario:
    """
    A named, weighted request pattern.

    Attributes:
        name: Identifier used in weight tables and logs.
        action: Callable issuing the scenario's request against a
            :class:`TargetClient` and returning its :class:`CallResult`.
        weight: Relative selection weight (non-negative).
        counter: Optional counter metric incremented once per run of
            this scenario.
    """

    name: str
    action: Action = field(repr=False)
    weight: float = 1.0
    counter: str | None = None

    def execute(self, target: TargetClient, rng: random.Random) -> Outcome:
        """Run the scenario once and describe what happened."""
        result = self.action(target, rng)
        failure = result.failure()
        return Outcome(
            scenario=self.name,
            success=failure is None,
            latency_ms=result.latency_ms,
            timestamp=time.time(),
            status=result.status,
            error=str(failure) if failure is not None else None,
        )


def _health(target: TargetClient, rng: random.Random) -> CallResult:
    return target.call("GET", "/health")


def _channels(target: TargetClient, rng: random.Random) -> CallResult:
    return target.call("GET", "/channels")


def make_pay_action(order_numbers: OrderNumberGenerator = generate_order_no) -> Action:
    """Build the ``pay`` action around a (shared) order-number generator."""

    def _pay(target: TargetClient, rng: random.Random) -> CallResult:
        return target.call("POST", "/pay", json=payment_payload(rng, order_numbers))

    return _pay


def _query(target: TargetClient, rng: random.Random) -> CallResult:
    return target.call("POST", "/query", json=query_payload())


def default_scenarios(
    weights: Mapping[str, float] | None = None,
    order_numbers: OrderNumberGenerator = generate_order_no,
) -> list[Scenario]:
    """
    Return the four gateway scenarios, equally weighted unless *weights* says otherwise.

    Raises:
        ConfigurationError: If *weights* names a scenario that does not exist.
    """
    weights = dict(weights or {})
    catalogue = [
        Scenario("health", _health),
        Scenario("channels", _channels),
        Scenario("pay", make_pay_action(order_numbers), counter=metrics.PAYMENT_REQUESTS),
        Scenario("query", _query, counter=metrics.QUERY_REQUESTS),
    ]

    unknown = set(weights) - {scenario.name for scenario in catalogue}
    if unknown:
        raise ConfigurationError(f"Unknown scenario(s) in weight table: {', '.join(sorted(unknown))}")

    return [
        Scenario(s.name, s.action, float(weights.get(s.name, s.weight)), s.counter)
        for s in catalogue
    ]


def integer_weights(weights: Mapping[str, float], names: Iterable[str]) -> dict[str, int]:
    """
    Scale relative weights to the smallest whole numbers with the same ratios.

    Locust only accepts integer task weights.  Names missing from
    *weights* count as ``1`` and zero weights are dropped, matching
    :func:`default_scenarios`.  Ratios are kept to within 1/100 and
    no positive weight drops below 1/100.

    Raises:
        ConfigurationError: If a weight is negative or none is positive.
    """
    fractions: dict[str, Fraction] = {}
    for name in names:
        value = weights.get(name, 1)
        if value < 0:
            raise ConfigurationError(f"Scenario weights must be non-negative, got {name}={value}")
        if value > 0:
            fractions[name] = max(Fraction(value).limit_denominator(100), Fraction(1, 100))
    if not fractions:
        raise ConfigurationError("At least one scenario needs a positive weight")

    scale = math.lcm(*(fraction.denominator for fraction in fractions.values()))
    scaled = {name: int(fraction * scale) for name, fraction in fractions.items()}
    divisor = math.gcd(*scaled.values())
    return {name: value // divisor for name, value in scaled.items()}


# =====================================================================
# Dispatcher
# =====================================================================


class ScenarioDispatcher:
    """
    Pick a scenario by weight, run it, and record the outcome.

    Every invocation writes to the sink:

    - ``iterations`` counter, +1
    - ``http_reqs`` counter and ``http_req_duration`` trend (ms), only
      when the scenario reached the gateway
    - ``checks`` rate, one observation per HTTP call (true on ``200``)
    - ``errors`` rate, one observation per invocation (true on failure,
      including scenarios that raised before reaching the gateway)
    - the scenario's own counter, if it has one
    """

    def __init__(self, scenarios: Iterable[Scenario], sink: metrics.MetricsSink):
        self.scenarios = tuple(scenarios)
        if not self.scenarios:
            raise ConfigurationError("At least one scenario is required")

        names = [scenario.name for scenario in self.scenarios]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate scenario names: {names}")

        self.weights = tuple(scenario.weight for scenario in self.scenarios)
        if any(weight < 0 for weight in self.weights):
            raise ConfigurationError("Scenario weights must be non-negative")
        if sum(self.weights) <= 0:
            raise ConfigurationError("At least one scenario needs a positive weight")

        self.sink = sink
        for scenario in self.scenarios:
            if scenario.counter:
                sink.add_counter(scenario.counter)

    def select(self, rng: random.Random) -> Scenario:
        """Choose one scenario with probability proportional to its weight."""
        return rng.choices(self.scenarios, weights=self.weights, k=1)[0]

    def execute(self, target: TargetClient, rng: random.Random) -> Outcome:
        """Select and run one scenario, then push its outcome to the sink."""
        scenario = self.select(rng)
        try:
            outcome = scenario.execute(target, rng)
        except Exception as exc:
            # A broken scenario must not kill the virtual user's loop.
            logger.exception("Scenario %s raised", scenario.name)
            outcome = Outcome(
                scenario=scenario.name,
                success=False,
                latency_ms=0.0,
                timestamp=time.time(),
                error=f"{exc.__class__.__name__}: {exc}",
                requests=0,
            )
        self.record(scenario, outcome)
        return outcome

    def record(self, scenario: Scenario, outcome: Outcome) -> None:
        sink = self.sink
        sink.increment(metrics.ITERATIONS)
        if outcome.requests:
            sink.increment(metrics.HTTP_REQS, outcome.requests)
            sink.observe(metrics.HTTP_REQ_DURATION, outcome.latency_ms)
            sink.record(metrics.CHECKS, outcome.success)
        sink.record(metrics.ERRORS, not outcome.success)
        if scenario.counter:
            sink.increment(scenario.counter)
