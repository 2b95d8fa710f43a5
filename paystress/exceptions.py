"""
Exception hierarchy for the load generator.

Only configuration-time problems are allowed to abort a run.  Request
failures (non-200 responses, timeouts, refused connections) never
surface as exceptions outside the scenario layer; they become failed
outcomes and feed the ``errors`` rate instead.
"""

from __future__ import annotations


class PaystressError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(PaystressError):
    """
    Raised when a run cannot start because its configuration is invalid.

    Examples: an empty stage list, negative durations or targets, an
    empty scenario set, or a malformed threshold expression.  Always
    raised before the first virtual user is spawned.
    """


class RequestFailure(PaystressError):
    """
    A single HTTP call did not return ``200``.

    Carried on the :class:`~paystress.scenarios.Outcome` as data; the
    scenario layer builds these but never lets them propagate.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MetricTypeError(PaystressError):
    """A metric name was written to as a different kind than it was declared."""


class MetricsClosedError(PaystressError):
    """A write reached the metrics sink after it was finalized."""


class InvalidTransition(PaystressError):
    """A virtual user was asked to make a lifecycle transition it cannot make."""


class ThresholdViolation(PaystressError):
    """
    Raised after a run when one or more thresholds were not met.

    Attributes:
        failures: The unmet :class:`~paystress.thresholds.ThresholdSpec` objects.
    """

    def __init__(self, message: str, failures: tuple = ()):
        super().__init__(message)
        self.failures = failures
