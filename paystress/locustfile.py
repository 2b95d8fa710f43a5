"""
Locust entry point running the same profile as ``paystress run``.

For operators who want Locust's web UI or distributed workers instead
of the built-in scheduler.  The stage table, scenario weights and
pacing come from the same YAML profile, and request bodies come from
:mod:`paystress.helpers`, so both runners send identical traffic::

    PAYSTRESS_PROFILE=stress_profile.yml \\
        locust -f paystress/locustfile.py --host http://localhost:8080/api/v1

Thresholds are not evaluated here; Locust reports its own statistics.
"""

from __future__ import annotations

import os

from locust import HttpUser, LoadTestShape, between

from paystress.config import load_run_config
from paystress.helpers import payment_payload, query_payload
from paystress.scenarios import integer_weights
from paystress.schedule import LoadSchedule

RUN_CONFIG = load_run_config(os.environ.get("PAYSTRESS_PROFILE"))
SCHEDULE = LoadSchedule(RUN_CONFIG.stages, start_target=RUN_CONFIG.start_target)


def _expect_200(response) -> None:
    if response.status_code != 200:
        response.failure(f"Expected 200, got {response.status_code}")
    else:
        response.success()


def health(user: "PaymentGatewayUser") -> None:
    with user.client.get("/health", name="/health [GET]", catch_response=True) as response:
        _expect_200(response)


def channels(user: "PaymentGatewayUser") -> None:
    with user.client.get("/channels", name="/channels [GET]", catch_response=True) as response:
        _expect_200(response)


def pay(user: "PaymentGatewayUser") -> None:
    with user.client.post(
        "/pay",
        json=payment_payload(),
        name="/pay [POST]",
        catch_response=True,
    ) as response:
        _expect_200(response)


def query(user: "PaymentGatewayUser") -> None:
    with user.client.post(
        "/query",
        json=query_payload(),
        name="/query [POST]",
        catch_response=True,
    ) as response:
        _expect_200(response)


_TASKS = {"health": health, "channels": channels, "pay": pay, "query": query}


class PaymentGatewayUser(HttpUser):
    """One virtual user picking a weighted endpoint per iteration."""

    host = RUN_CONFIG.base_url
    wait_time = between(*RUN_CONFIG.pacing)
    tasks = {
        _TASKS[name]: weight
        for name, weight in integer_weights(RUN_CONFIG.weights, _TASKS).items()
    }


class StagedShape(LoadTestShape):
    """Follow the profile's stages; stop once the last one has elapsed."""

    def tick(self):
        run_time = self.get_run_time()
        if run_time > SCHEDULE.total_duration:
            return None
        # Spawn fast enough to land on each target within one tick.
        spawn_rate = max(1, SCHEDULE.max_target)
        return SCHEDULE.target_at(run_time), spawn_rate
