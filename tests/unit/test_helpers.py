"""
Unit tests for payload factories and order-number generation.
"""

from __future__ import annotations

import random
import re
import threading

import pytest

from paystress.helpers import (
    PAYMENT_CHANNELS,
    OrderNumberGenerator,
    order_prefix,
    payment_payload,
    query_payload,
)

pytestmark = pytest.mark.unit

ORDER_NO = re.compile(r"^TEST_(WECHAT|ALIPAY|UNIONPAY)_\d+_[0-9a-z]{9}$")


def test_order_number_shape():
    generator = OrderNumberGenerator(clock=lambda: 1_700_000_000.5)

    order_no = generator("TEST_WECHAT", random.Random(7))

    prefix, timestamp, suffix = order_no.rsplit("_", 2)
    assert prefix == "TEST_WECHAT"
    assert timestamp == "1700000000500"
    assert re.fullmatch(r"[0-9a-z]{9}", suffix)


def test_timestamp_component_never_goes_backwards():
    """Test that a wall clock stepping back does not lower the timestamp."""
    readings = iter([2.0, 1.0, 3.0])
    generator = OrderNumberGenerator(clock=lambda: next(readings))

    stamps = [int(generator("P", random.Random(i)).split("_")[1]) for i in range(3)]

    assert stamps == [2000, 2000, 3000]


def test_same_seed_gives_same_suffix():
    """Test that the random component comes from the injected source."""
    generator = OrderNumberGenerator(clock=lambda: 1.0)

    first = generator("P", random.Random(99))
    second = generator("P", random.Random(99))

    assert first == second


def test_two_threads_generate_unique_order_numbers():
    """Test that 2 x 1000 concurrently generated order numbers never collide."""
    generator = OrderNumberGenerator()
    results: list[list[str]] = [[], []]

    def _generate(slot: int) -> None:
        source = random.Random(slot + 1)
        for _ in range(1000):
            results[slot].append(generator("TEST_ALIPAY", source))

    threads = [threading.Thread(target=_generate, args=(slot,)) for slot in (0, 1)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    combined = results[0] + results[1]
    assert len(combined) == 2000
    assert len(set(combined)) == 2000


def test_payment_payload_matches_gateway_schema():
    payload = payment_payload(random.Random(3))

    assert set(payload) == {
        "channel",
        "out_trade_no",
        "total_amount",
        "subject",
        "scene",
        "notify_url",
    }
    assert payload["channel"] in PAYMENT_CHANNELS
    assert payload["out_trade_no"].startswith(order_prefix(payload["channel"]) + "_")
    assert ORDER_NO.match(payload["out_trade_no"])
    assert payload["total_amount"] == 0.01
    assert payload["scene"] == "app"


def test_payment_payload_covers_every_channel():
    source = random.Random(11)

    channels = {payment_payload(source)["channel"] for _ in range(200)}

    assert channels == set(PAYMENT_CHANNELS)


def test_query_payload_is_fixed():
    assert query_payload() == {"channel": "wechat", "out_trade_no": "TEST_ORDER_12345"}
