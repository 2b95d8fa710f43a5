"""
Shared pytest fixtures for the load generator test suite.

Unit tests never touch the network: they use :class:`FakeTarget`, a
stand-in for :class:`~paystress.scenarios.TargetClient` that answers
from a per-path status table.  Integration tests run the Flask stub
gateway from :mod:`tests.stub_gateway` on a real socket in a
background thread.

Key Concepts Demonstrated:
- Fixture factories for configurable fakes
- Live-server fixture on an ephemeral port
- Deterministic ``random.Random`` seeds for reproducible selection
"""

from __future__ import annotations

import os
import random
import threading
import time
from collections.abc import Callable, Generator

import pytest
from flask import Flask
from werkzeug.serving import make_server

os.environ["PAYSTRESS_ENV"] = "testing"

from paystress.metrics import MetricsSink, create_default_sink
from paystress.scenarios import CallResult, Scenario
from tests.stub_gateway import create_app


class FakeTarget:
    """Minimal stand-in for ``TargetClient`` that records every call."""

    def __init__(self, statuses: dict[str, int | None] | None = None, latency_ms: float = 5.0):
        self.statuses = statuses or {}
        self.latency_ms = latency_ms
        self.calls: list[tuple[str, str, object]] = []
        self.closed = False
        self._lock = threading.Lock()

    def call(self, method: str, path: str, json=None) -> CallResult:
        with self._lock:
            self.calls.append((method, path, json))
        status = self.statuses.get(path, 200)
        if status is None:
            return CallResult(None, self.latency_ms, "Connection error: ConnectionError")
        return CallResult(status, self.latency_ms)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sink() -> MetricsSink:
    """Provide a sink with the default metric set declared."""
    return create_default_sink()


@pytest.fixture
def rng() -> random.Random:
    """Provide a seeded random source so selection is reproducible."""
    return random.Random(1234)


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def make_target() -> Callable[..., FakeTarget]:
    """Factory for fake targets with a per-path status table."""
    return FakeTarget


@pytest.fixture
def timed_scenario() -> Callable[..., Scenario]:
    """
    Factory for scenarios that take a fixed amount of wall time.

    Used by scheduler tests that need requests to be "in flight" long
    enough to observe scale-down behaviour.
    """

    def _make(name: str = "timed", duration: float = 0.01, status: int = 200) -> Scenario:
        def _action(target, rng) -> CallResult:
            time.sleep(duration)
            return CallResult(status, duration * 1000.0)

        return Scenario(name, _action)

    return _make


@pytest.fixture
def live_gateway() -> Generator[Callable[..., tuple[str, Flask]], None, None]:
    """
    Start stub gateways on ephemeral ports; yield a factory returning ``(base_url, app)``.

    Every server started through the factory is shut down when the
    test finishes.
    """
    servers = []

    def _start(failures: dict[str, int] | None = None, delays: dict[str, float] | None = None):
        app = create_app(failures=failures, delays=delays)
        server = make_server("127.0.0.1", 0, app, threaded=True)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append((server, thread))
        return f"http://127.0.0.1:{server.server_port}/api/v1", app

    yield _start

    for server, thread in servers:
        server.shutdown()
        thread.join(timeout=5)
