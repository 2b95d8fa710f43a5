"""
Thread-safe metrics sink shared by every virtual user.

Three metric kinds are supported:

- **Counter**: monotonic integer (``payment_requests``, ``http_reqs``)
- **Rate**: fraction of ``True`` observations (``errors``, ``checks``)
- **Trend**: raw samples for percentile thresholds
  (``http_req_duration``, milliseconds)

The sink is the single shared mutable object in a run.  All writes go
through one lock; ``snapshot()`` copies the current values under the
same lock and hands back a frozen view, so readers never see a
half-applied write.  ``close()`` finalizes the sink at the end of a
run; later writes raise :class:`~paystress.exceptions.MetricsClosedError`.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from paystress.exceptions import MetricsClosedError, MetricTypeError

# Metric names written by the scenario dispatcher.
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
ITERATIONS = "iterations"
CHECKS = "checks"
ERRORS = "errors"
PAYMENT_REQUESTS = "payment_requests"
QUERY_REQUESTS = "query_requests"


class MetricKind(str, Enum):
    """The three metric kinds a sink can hold."""

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


def percentile(samples: tuple[float, ...] | list[float], pct: float) -> float:
    """
    Percentile by linear interpolation between closest ranks.

    Uses the ``(n - 1) * pct / 100`` rank, the same method as numpy's
    default and k6's ``p(N)``.  *samples* must already be sorted.

    Raises:
        ValueError: If *samples* is empty or *pct* is outside 0..100.
    """
    if not samples:
        raise ValueError("percentile of empty sample set")
    if not 0 <= pct <= 100:
        raise ValueError(f"percentile must be within 0..100, got {pct}")

    rank = (len(samples) - 1) * pct / 100.0
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(samples[lower])
    weight = rank - lower
    return samples[lower] + (samples[upper] - samples[lower]) * weight


@dataclass(frozen=True)
class RateValue:
    """Frozen read-out of a Rate metric."""

    trues: int
    total: int

    @property
    def rate(self) -> float:
        return self.trues / self.total if self.total else 0.0

    @property
    def falses(self) -> int:
        return self.total - self.trues


@dataclass(frozen=True)
class TrendValue:
    """Frozen read-out of a Trend metric (samples sorted ascending)."""

    samples: tuple[float, ...]

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def min(self) -> float:
        return self.samples[0]

    @property
    def max(self) -> float:
        return self.samples[-1]

    @property
    def avg(self) -> float:
        return sum(self.samples) / len(self.samples)

    @property
    def med(self) -> float:
        return percentile(self.samples, 50)

    def percentile(self, pct: float) -> float:
        return percentile(self.samples, pct)


class MetricsSnapshot:
    """
    Immutable view of every metric at one instant.

    Returned by :meth:`MetricsSink.snapshot`; safe to hand to the
    threshold evaluator or to print after the run.
    """

    def __init__(
        self,
        counters: Mapping[str, int],
        rates: Mapping[str, RateValue],
        trends: Mapping[str, TrendValue],
    ):
        self._counters = MappingProxyType(dict(counters))
        self._rates = MappingProxyType(dict(rates))
        self._trends = MappingProxyType(dict(trends))

    @property
    def counters(self) -> Mapping[str, int]:
        return self._counters

    @property
    def rates(self) -> Mapping[str, RateValue]:
        return self._rates

    @property
    def trends(self) -> Mapping[str, TrendValue]:
        return self._trends

    def names(self) -> list[str]:
        return sorted({*self._counters, *self._rates, *self._trends})

    def kind_of(self, name: str) -> MetricKind | None:
        """Return the kind *name* was declared as, or ``None`` if unknown."""
        if name in self._counters:
            return MetricKind.COUNTER
        if name in self._rates:
            return MetricKind.RATE
        if name in self._trends:
            return MetricKind.TREND
        return None

    def counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def rate(self, name: str) -> RateValue:
        return self._rates.get(name, RateValue(0, 0))

    def trend(self, name: str) -> TrendValue:
        return self._trends.get(name, TrendValue(()))

    def observations(self, name: str) -> int:
        """Number of data points recorded under *name* (0 when undeclared)."""
        kind = self.kind_of(name)
        if kind is MetricKind.COUNTER:
            return self.counter(name)
        if kind is MetricKind.RATE:
            return self.rate(name).total
        if kind is MetricKind.TREND:
            return self.trend(name).count
        return 0

    def as_dict(self) -> dict[str, Any]:
        """Plain-dict summary, suitable for JSON or YAML output."""
        result: dict[str, Any] = {}
        for name, value in self._counters.items():
            result[name] = {"type": MetricKind.COUNTER.value, "count": value}
        for name, value in self._rates.items():
            result[name] = {
                "type": MetricKind.RATE.value,
                "rate": value.rate,
                "passes": value.trues,
                "fails": value.falses,
            }
        for name, value in self._trends.items():
            entry: dict[str, Any] = {"type": MetricKind.TREND.value, "count": value.count}
            if value.count:
                entry.update(
                    avg=value.avg,
                    min=value.min,
                    med=value.med,
                    max=value.max,
                    p90=value.percentile(90),
                    p95=value.percentile(95),
                )
            result[name] = entry
        return result


class MetricsSink:
    """
    Concurrent-safe accumulator passed by reference to every virtual user.

    Metrics should be declared up front with the ``add_*`` methods so
    that thresholds can be validated before load starts and so that
    untouched metrics still show up (as zero) in the final snapshot.
    Writing to an undeclared name declares it on the fly.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._kinds: dict[str, MetricKind] = {}
        self._counters: dict[str, int] = {}
        self._rates: dict[str, list[int]] = {}
        self._trends: dict[str, list[float]] = {}
        self._closed = False

    # ---- declaration ---------------------------------------------------

    def _declare(self, name: str, kind: MetricKind) -> None:
        existing = self._kinds.get(name)
        if existing is None:
            self._kinds[name] = kind
            if kind is MetricKind.COUNTER:
                self._counters[name] = 0
            elif kind is MetricKind.RATE:
                self._rates[name] = [0, 0]
            else:
                self._trends[name] = []
        elif existing is not kind:
            raise MetricTypeError(f"Metric {name!r} is a {existing.value}, not a {kind.value}")

    def add_counter(self, name: str) -> None:
        with self._lock:
            self._declare(name, MetricKind.COUNTER)

    def add_rate(self, name: str) -> None:
        with self._lock:
            self._declare(name, MetricKind.RATE)

    def add_trend(self, name: str) -> None:
        with self._lock:
            self._declare(name, MetricKind.TREND)

    # ---- writes --------------------------------------------------------

    def _check_open(self, name: str) -> None:
        if self._closed:
            raise MetricsClosedError(f"Metrics sink is closed; dropped write to {name!r}")

    def increment(self, name: str, value: int = 1) -> None:
        """Atomically add *value* (default 1) to counter *name*."""
        if value < 0:
            raise ValueError("Counters are monotonic; increment must be non-negative")
        with self._lock:
            self._check_open(name)
            self._declare(name, MetricKind.COUNTER)
            self._counters[name] += value

    def record(self, name: str, observation: bool) -> None:
        """Atomically add one true/false observation to rate *name*."""
        with self._lock:
            self._check_open(name)
            self._declare(name, MetricKind.RATE)
            bucket = self._rates[name]
            bucket[1] += 1
            if observation:
                bucket[0] += 1

    def observe(self, name: str, value: float) -> None:
        """Atomically append one sample to trend *name*."""
        with self._lock:
            self._check_open(name)
            self._declare(name, MetricKind.TREND)
            self._trends[name].append(float(value))

    # ---- lifecycle -----------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> MetricsSnapshot:
        """Finalize the sink and return the final snapshot."""
        with self._lock:
            self._closed = True
        return self.snapshot()

    def snapshot(self) -> MetricsSnapshot:
        """Copy every metric under the lock into a frozen :class:`MetricsSnapshot`."""
        with self._lock:
            counters = dict(self._counters)
            rates = {name: RateValue(t, n) for name, (t, n) in self._rates.items()}
            trends = {name: list(samples) for name, samples in self._trends.items()}
        # Sorted outside the lock.
        return MetricsSnapshot(
            counters,
            rates,
            {name: TrendValue(tuple(sorted(samples))) for name, samples in trends.items()},
        )


def create_default_sink() -> MetricsSink:
    """Return a sink with every metric the built-in scenarios write to."""
    sink = MetricsSink()
    sink.add_counter(HTTP_REQS)
    sink.add_counter(ITERATIONS)
    sink.add_counter(PAYMENT_REQUESTS)
    sink.add_counter(QUERY_REQUESTS)
    sink.add_rate(ERRORS)
    sink.add_rate(CHECKS)
    sink.add_trend(HTTP_REQ_DURATION)
    return sink
