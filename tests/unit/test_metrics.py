"""
Unit tests for the metrics sink.

Covers per-kind accumulation, concurrent writers, snapshot
immutability and the finalize-then-read-only lifecycle.
"""

from __future__ import annotations

import threading

import pytest

from paystress.exceptions import MetricsClosedError, MetricTypeError
from paystress.metrics import MetricKind, MetricsSink, percentile

pytestmark = pytest.mark.unit


def test_counter_rate_and_trend_accumulate():
    sink = MetricsSink()

    sink.increment("payment_requests")
    sink.increment("payment_requests", 2)
    sink.record("errors", True)
    sink.record("errors", False)
    sink.record("errors", False)
    sink.record("errors", False)
    sink.observe("http_req_duration", 30)
    sink.observe("http_req_duration", 10)

    snapshot = sink.snapshot()
    assert snapshot.counter("payment_requests") == 3
    assert snapshot.rate("errors").rate == 0.25
    assert snapshot.rate("errors").trues == 1
    assert snapshot.rate("errors").falses == 3
    assert snapshot.trend("http_req_duration").samples == (10.0, 30.0)


def test_declared_metrics_appear_in_snapshot_with_zero_values(sink):
    """Test that predeclared but untouched metrics still show up."""
    snapshot = sink.snapshot()

    assert snapshot.kind_of("payment_requests") is MetricKind.COUNTER
    assert snapshot.kind_of("errors") is MetricKind.RATE
    assert snapshot.kind_of("http_req_duration") is MetricKind.TREND
    assert snapshot.counter("query_requests") == 0
    assert snapshot.observations("http_req_duration") == 0
    assert snapshot.kind_of("nope") is None


def test_writing_a_name_as_another_kind_fails():
    sink = MetricsSink()
    sink.add_counter("errors")

    with pytest.raises(MetricTypeError):
        sink.record("errors", True)


def test_counters_are_monotonic():
    sink = MetricsSink()

    with pytest.raises(ValueError):
        sink.increment("http_reqs", -1)


def test_concurrent_writers_lose_no_updates():
    """Test that eight threads hammering one sink produce exact totals."""
    sink = MetricsSink()
    per_thread = 1000
    workers = 8

    def _work():
        for i in range(per_thread):
            sink.increment("http_reqs")
            sink.record("errors", i % 10 == 0)
            sink.observe("http_req_duration", float(i))

    threads = [threading.Thread(target=_work) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = sink.snapshot()
    assert snapshot.counter("http_reqs") == per_thread * workers
    assert snapshot.rate("errors").total == per_thread * workers
    assert snapshot.rate("errors").trues == (per_thread // 10) * workers
    assert snapshot.trend("http_req_duration").count == per_thread * workers


def test_snapshot_is_a_frozen_copy():
    """Test that later writes don't leak into an earlier snapshot."""
    sink = MetricsSink()
    sink.increment("http_reqs")
    snapshot = sink.snapshot()

    sink.increment("http_reqs")

    assert snapshot.counter("http_reqs") == 1
    with pytest.raises(TypeError):
        snapshot.counters["http_reqs"] = 99


def test_close_finalizes_the_sink():
    sink = MetricsSink()
    sink.increment("http_reqs")

    final = sink.close()

    assert sink.closed
    assert final.counter("http_reqs") == 1
    with pytest.raises(MetricsClosedError):
        sink.increment("http_reqs")
    with pytest.raises(MetricsClosedError):
        sink.observe("http_req_duration", 1.0)


def test_as_dict_summarises_every_kind():
    sink = MetricsSink()
    sink.increment("payment_requests")
    sink.record("errors", False)
    for value in (10, 20, 30, 40):
        sink.observe("http_req_duration", value)

    summary = sink.snapshot().as_dict()

    assert summary["payment_requests"] == {"type": "counter", "count": 1}
    assert summary["errors"]["rate"] == 0.0
    assert summary["http_req_duration"]["avg"] == 25.0
    assert summary["http_req_duration"]["med"] == 25.0


class TestPercentile:
    """Pin the interpolation method used for ``p(N)`` thresholds."""

    def test_linear_interpolation_between_ranks(self):
        assert percentile([10, 20, 30, 40], 50) == 25.0
        assert percentile(list(range(1, 101)), 95) == pytest.approx(95.05)

    def test_exact_rank_returns_sample(self):
        assert percentile([1, 2, 3, 4, 5], 50) == 3.0
        assert percentile([1, 2, 3, 4, 5], 0) == 1.0
        assert percentile([1, 2, 3, 4, 5], 100) == 5.0

    def test_single_sample(self):
        assert percentile([42], 95) == 42.0

    def test_empty_and_out_of_range(self):
        with pytest.raises(ValueError):
            percentile([], 95)
        with pytest.raises(ValueError):
            percentile([1, 2], 101)
