"""
Post-run threshold evaluation.

Thresholds use the k6 expression syntax so existing profiles carry
over unchanged::

    thresholds:
      http_req_duration: ["p(95)<500"]   # 95% of requests under 500 ms
      errors: ["rate<0.1"]               # error rate under 10%

Supported aggregations per metric kind:

- **trend**: ``avg``, ``min``, ``max``, ``med``, ``p(N)``, ``count``
- **rate**: ``rate``, ``count``
- **counter**: ``count``

Percentiles use linear interpolation between closest ranks (see
:func:`paystress.metrics.percentile`).  A threshold whose metric has no
observations at all passes vacuously: a run that never exercised a
metric has nothing to violate.

Evaluation is a pure function of the final snapshot; calling
:func:`evaluate` twice on the same snapshot gives the same verdict.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from paystress.exceptions import ConfigurationError, ThresholdViolation
from paystress.metrics import MetricKind, MetricsSnapshot

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>avg|min|max|med|count|rate|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<limit>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

VALID_AGGREGATIONS = {
    MetricKind.TREND: {"avg", "min", "max", "med", "p", "count"},
    MetricKind.RATE: {"rate", "count"},
    MetricKind.COUNTER: {"count"},
}


@dataclass(frozen=True)
class ThresholdSpec:
    """One parsed threshold, e.g. ``http_req_duration: p(95)<500``."""

    metric: str
    aggregation: str
    operator: str
    limit: float
    percentile: float | None = None
    expression: str = ""

    @property
    def label(self) -> str:
        """Column label for summaries, e.g. ``http_req_duration p(95)``."""
        if self.aggregation == "p":
            return f"{self.metric} p({self.percentile:g})"
        return f"{self.metric} {self.aggregation}"

    def __str__(self) -> str:
        return f"{self.metric}: {self.expression}"


def parse_expression(metric: str, expression: str) -> ThresholdSpec:
    """
    Parse one k6-style threshold expression for *metric*.

    Raises:
        ConfigurationError: If the expression does not match the grammar
            or the percentile is outside 0..100.
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ConfigurationError(f"Invalid threshold for {metric!r}: {expression!r}")

    aggregation = match.group("agg")
    pct = None
    if aggregation.startswith("p("):
        aggregation = "p"
        pct = float(match.group("pct"))
        if not 0 <= pct <= 100:
            raise ConfigurationError(f"Percentile out of range in {expression!r}")

    return ThresholdSpec(
        metric=metric,
        aggregation=aggregation,
        operator=match.group("op"),
        limit=float(match.group("limit")),
        percentile=pct,
        expression=expression.strip(),
    )


def parse_thresholds(mapping: Mapping[str, Iterable[str]]) -> tuple[ThresholdSpec, ...]:
    """Parse a ``{metric: [expression, ...]}`` mapping into specs, in order."""
    specs = []
    for metric, expressions in mapping.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            specs.append(parse_expression(metric, expression))
    return tuple(specs)


def validate_against(specs: Iterable[ThresholdSpec], snapshot: MetricsSnapshot) -> None:
    """
    Check specs against the declared metrics before any load is sent.

    Raises:
        ConfigurationError: If a spec names an unknown metric or uses an
            aggregation that does not apply to the metric's kind.
    """
    for spec in specs:
        kind = snapshot.kind_of(spec.metric)
        if kind is None:
            raise ConfigurationError(f"Threshold references unknown metric {spec.metric!r}")
        if spec.aggregation not in VALID_AGGREGATIONS[kind]:
            raise ConfigurationError(
                f"Aggregation {spec.aggregation!r} is not valid for {kind.value} metric "
                f"{spec.metric!r}"
            )


def observed_value(spec: ThresholdSpec, snapshot: MetricsSnapshot) -> float | None:
    """
    Compute the value *spec* compares against its limit.

    Returns:
        The aggregated value, or ``None`` when the metric has no
        observations.

    Raises:
        ConfigurationError: If the aggregation does not apply to the
            metric's kind.
    """
    kind = snapshot.kind_of(spec.metric)
    if kind is None or snapshot.observations(spec.metric) == 0:
        return None
    if spec.aggregation not in VALID_AGGREGATIONS[kind]:
        raise ConfigurationError(
            f"Aggregation {spec.aggregation!r} is not valid for {kind.value} metric {spec.metric!r}"
        )

    if kind is MetricKind.COUNTER:
        return float(snapshot.counter(spec.metric))

    if kind is MetricKind.RATE:
        rate = snapshot.rate(spec.metric)
        return float(rate.total) if spec.aggregation == "count" else rate.rate

    trend = snapshot.trend(spec.metric)
    if spec.aggregation == "p":
        return trend.percentile(spec.percentile)
    if spec.aggregation == "count":
        return float(trend.count)
    return float(getattr(trend, spec.aggregation))


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of one spec: the value seen and whether it met the limit."""

    spec: ThresholdSpec
    observed: float | None
    passed: bool


@dataclass(frozen=True)
class Verdict:
    """Overall pass/fail plus the thresholds that were not met."""

    passed: bool
    failures: tuple[ThresholdSpec, ...]
    results: tuple[ThresholdResult, ...]

    @property
    def failed_metrics(self) -> list[str]:
        """Distinct metric names with at least one unmet threshold, in order."""
        seen: list[str] = []
        for spec in self.failures:
            if spec.metric not in seen:
                seen.append(spec.metric)
        return seen

    def raise_for_failures(self) -> None:
        """Raise :class:`ThresholdViolation` if any threshold was not met."""
        if self.passed:
            return
        raise ThresholdViolation(
            "Thresholds not met: " + ", ".join(str(spec) for spec in self.failures),
            failures=self.failures,
        )


def evaluate(snapshot: MetricsSnapshot, specs: Iterable[ThresholdSpec]) -> Verdict:
    """
    Evaluate every spec against *snapshot*.

    A verdict with no specs passes.  Specs whose metric has no
    observations pass vacuously.
    """
    results = []
    for spec in specs:
        value = observed_value(spec, snapshot)
        passed = True if value is None else _OPERATORS[spec.operator](value, spec.limit)
        results.append(ThresholdResult(spec=spec, observed=value, passed=passed))

    failures = tuple(result.spec for result in results if not result.passed)
    return Verdict(passed=not failures, failures=failures, results=tuple(results))
