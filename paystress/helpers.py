"""
Payload factories and order-number generation for the payment scenarios.

Keeping request bodies in one place means the native scheduler and the
Locust entry point send byte-for-byte the same traffic, and the data
strategy can be tuned without touching scenario code.

Order numbers follow the ``<PREFIX>_<ms timestamp>_<9 random chars>``
shape the gateway's own stress tooling used.  The timestamp part never
moves backwards within a process, but the scheme is still only
*probabilistically* unique: two calls in the same millisecond rely on
the 9-character base-36 suffix (36**9, about 1e14 values) to differ.
Nothing detects or corrects a collision.
"""

from __future__ import annotations

import random
import string
import threading
import time
from typing import Any, Callable

PAYMENT_CHANNELS = ("wechat", "alipay", "unionpay")

# The query scenario always looks up the same order.
QUERY_CHANNEL = "wechat"
QUERY_ORDER_NO = "TEST_ORDER_12345"

PAYMENT_AMOUNT = 0.01
PAYMENT_SUBJECT = "Stress Test Payment"
PAYMENT_SCENE = "app"
NOTIFY_URL = "https://example.com/notify"

ORDER_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
ORDER_SUFFIX_LENGTH = 9


class OrderNumberGenerator:
    """
    Build ``<prefix>_<ms>_<suffix>`` order numbers.

    The millisecond component is clamped so it never decreases, even if
    the wall clock is stepped back during a run.  One instance is shared
    by every virtual user of a run; the clamp is guarded by a lock.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = 0

    def _timestamp_ms(self) -> int:
        now_ms = int(self._clock() * 1000)
        with self._lock:
            if now_ms < self._last_ms:
                now_ms = self._last_ms
            self._last_ms = now_ms
        return now_ms

    def __call__(self, prefix: str, rng: random.Random | None = None) -> str:
        source = rng if rng is not None else random
        suffix = "".join(source.choices(ORDER_SUFFIX_ALPHABET, k=ORDER_SUFFIX_LENGTH))
        return f"{prefix}_{self._timestamp_ms()}_{suffix}"


generate_order_no = OrderNumberGenerator()


def order_prefix(channel: str) -> str:
    """Scenario prefix for an order paid through *channel*, e.g. ``TEST_ALIPAY``."""
    return f"TEST_{channel.upper()}"


def random_channel(rng: random.Random | None = None) -> str:
    """Pick one of the supported payment channels uniformly."""
    source = rng if rng is not None else random
    return source.choice(PAYMENT_CHANNELS)


def payment_payload(
    rng: random.Random | None = None,
    order_numbers: OrderNumberGenerator = generate_order_no,
) -> dict[str, Any]:
    """
    Build a ``POST /pay`` body for a random channel with a fresh order number.

    Returns:
        A JSON-serialisable dictionary matching the gateway's payment
        request schema.
    """
    channel = random_channel(rng)
    return {
        "channel": channel,
        "out_trade_no": order_numbers(order_prefix(channel), rng),
        "total_amount": PAYMENT_AMOUNT,
        "subject": PAYMENT_SUBJECT,
        "scene": PAYMENT_SCENE,
        "notify_url": NOTIFY_URL,
    }


def query_payload() -> dict[str, Any]:
    """Build the ``POST /query`` body."""
    return {"channel": QUERY_CHANNEL, "out_trade_no": QUERY_ORDER_NO}
