"""
Stub payment gateway used as the load target in integration tests.

Implements the four routes the load generator calls, counts every hit
per route, and can be told to fail or slow down specific routes so
tests can drive the error-rate and latency thresholds.
"""

from __future__ import annotations

import threading
import time
from collections import Counter

from flask import Blueprint, Flask, current_app, jsonify, request

gateway_bp = Blueprint("stub_gateway", __name__, url_prefix="/api/v1")


def _hit(route: str):
    """Count the hit, apply configured delay, and return a failure response if configured."""
    with current_app.config["HITS_LOCK"]:
        current_app.config["HITS"][route] += 1

    delay = current_app.config["DELAYS"].get(route, 0.0)
    if delay:
        time.sleep(delay)

    status = current_app.config["FAILURES"].get(route)
    if status is not None:
        return jsonify({"error": f"{route} unavailable"}), status
    return None


@gateway_bp.route("/health", methods=["GET"])
def health():
    failure = _hit("health")
    if failure is not None:
        return failure
    return jsonify({"status": "ok"}), 200


@gateway_bp.route("/channels", methods=["GET"])
def channels():
    failure = _hit("channels")
    if failure is not None:
        return failure
    return jsonify({"channels": ["wechat", "alipay", "unionpay"]}), 200


@gateway_bp.route("/pay", methods=["POST"])
def pay():
    failure = _hit("pay")
    if failure is not None:
        return failure

    body = request.get_json(silent=True) or {}
    with current_app.config["HITS_LOCK"]:
        current_app.config["ORDER_NUMBERS"].append(body.get("out_trade_no"))
    return jsonify({"code": 0, "out_trade_no": body.get("out_trade_no")}), 200


@gateway_bp.route("/query", methods=["POST"])
def query():
    failure = _hit("query")
    if failure is not None:
        return failure

    body = request.get_json(silent=True) or {}
    return jsonify({"out_trade_no": body.get("out_trade_no"), "trade_status": "WAIT_BUYER_PAY"}), 200


def create_app(
    failures: dict[str, int] | None = None,
    delays: dict[str, float] | None = None,
) -> Flask:
    """
    Build the stub gateway.

    Args:
        failures: Route name -> HTTP status to return instead of 200.
        delays: Route name -> seconds to sleep before answering.
    """
    app = Flask(__name__)
    app.config.update(
        TESTING=True,
        HITS=Counter(),
        HITS_LOCK=threading.Lock(),
        ORDER_NUMBERS=[],
        FAILURES=dict(failures or {}),
        DELAYS=dict(delays or {}),
    )
    app.register_blueprint(gateway_bp)
    return app
