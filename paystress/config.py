"""
Load generator configuration.

Two layers of configuration feed a run:

1. **Environment classes** (``Config`` and its subclasses) hold the
   operational defaults: target base URL, request timeout, pacing
   range, reconciliation tick and log level.  Each value can be
   overridden by an environment variable, following 12-factor
   conventions.
2. **Run profiles** are YAML files describing the load shape itself:
   stages, thresholds, scenario weights.  Any operational value may
   also be set in the profile, in which case it wins over the class
   default.

``load_run_config`` merges both layers into a frozen :class:`RunConfig`
and validates it.  Every problem is reported as a
:class:`~paystress.exceptions.ConfigurationError` so the run never
starts with a half-valid setup.
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from paystress.exceptions import ConfigurationError

# Profile shipped with the package: the seven-stage stress ramp.
DEFAULT_PROFILE_PATH = Path(__file__).resolve().parent / "stress_profile.yml"


class Config:
    """
    Base (shared) configuration.

    All environment-specific classes inherit from ``Config`` so that
    common defaults only need to be stated once.
    """

    # Root URL of the payment gateway API under test.
    BASE_URL: str = os.environ.get("PAYSTRESS_BASE_URL", "http://localhost:8080/api/v1")

    # Seconds before a single HTTP call is abandoned and counted as failed.
    REQUEST_TIMEOUT: float = float(os.environ.get("PAYSTRESS_REQUEST_TIMEOUT", "30"))

    # Think-time range (seconds) between two iterations of one virtual user.
    PACING_MIN: float = float(os.environ.get("PAYSTRESS_PACING_MIN", "0"))
    PACING_MAX: float = float(os.environ.get("PAYSTRESS_PACING_MAX", "2"))

    # How often the scheduler reconciles the running population.
    TICK_INTERVAL: float = float(os.environ.get("PAYSTRESS_TICK_INTERVAL", "1"))

    LOG_LEVEL: str = os.environ.get("PAYSTRESS_LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Local runs against a gateway on the developer's machine."""

    LOG_LEVEL: str = os.environ.get("PAYSTRESS_LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """
    Test-suite overrides.

    Short timeouts and a fast tick keep scheduler tests quick; the base
    URL points at a non-routable host so nothing leaks to a real
    gateway.
    """

    BASE_URL: str = os.environ.get("TEST_PAYSTRESS_BASE_URL", "http://gateway.test/api/v1")
    REQUEST_TIMEOUT: float = float(os.environ.get("TEST_PAYSTRESS_REQUEST_TIMEOUT", "1"))
    PACING_MIN: float = 0.0
    PACING_MAX: float = 0.01
    TICK_INTERVAL: float = 0.05


class ProductionConfig(Config):
    """Runs launched from CI against a shared environment."""

    LOG_LEVEL: str = os.environ.get("PAYSTRESS_LOG_LEVEL", "WARNING")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": Config,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"``, ``"production"``.
            When *None*, ``PAYSTRESS_ENV`` is consulted.

    Returns:
        The matching ``Config`` subclass, or ``Config`` itself if the
        key is unrecognised.
    """
    if env is None:
        env = os.environ.get("PAYSTRESS_ENV", "default")
    return config.get(env, config["default"])


# =====================================================================
# Duration parsing
# =====================================================================

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Convert a duration to seconds.

    Accepts plain numbers (already seconds) or k6 style strings such as
    ``"30s"``, ``"1m"``, ``"1m30s"``, ``"250ms"`` or ``"1h"``.

    Raises:
        ConfigurationError: If the value is negative or unparseable.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if pos == 0 or pos != len(text):
                raise ConfigurationError(f"Invalid duration: {value!r}") from None
    else:
        raise ConfigurationError(f"Invalid duration: {value!r}")

    if not math.isfinite(seconds) or seconds < 0:
        raise ConfigurationError(f"Duration must be finite and non-negative: {value!r}")
    return seconds


# =====================================================================
# Run configuration
# =====================================================================


@dataclass(frozen=True)
class RunConfig:
    """Everything a single run needs, validated and immutable."""

    base_url: str
    stages: tuple[tuple[float, int], ...]
    thresholds: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    weights: Mapping[str, float] = field(default_factory=dict)
    request_timeout: float = 30.0
    pacing: tuple[float, float] = (0.0, 2.0)
    tick_interval: float = 1.0
    start_target: int = 0
    seed: int | None = None
    log_level: str = "INFO"


def _as_float(data: Mapping[str, Any], key: str, default: float) -> float:
    raw = data.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be numeric, got {raw!r}") from exc
    if not math.isfinite(value):
        raise ConfigurationError(f"{key} must be finite, got {raw!r}")
    return value


def _parse_stages(raw: Any) -> tuple[tuple[float, int], ...]:
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("Profile must define a non-empty 'stages' list")

    stages = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping) or "duration" not in item or "target" not in item:
            raise ConfigurationError(
                f"Stage {index} must be a mapping with 'duration' and 'target'"
            )
        target = item["target"]
        if isinstance(target, bool) or not isinstance(target, int):
            raise ConfigurationError(f"Stage {index} target must be an integer, got {target!r}")
        stages.append((parse_duration(item["duration"]), target))
    return tuple(stages)


def _parse_thresholds(raw: Any) -> dict[str, tuple[str, ...]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("'thresholds' must map metric names to expressions")

    thresholds: dict[str, tuple[str, ...]] = {}
    for metric, expressions in raw.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        if not isinstance(expressions, list) or not all(isinstance(e, str) for e in expressions):
            raise ConfigurationError(f"Thresholds for {metric!r} must be a list of strings")
        thresholds[str(metric)] = tuple(expressions)
    return thresholds


def _parse_weights(raw: Any) -> dict[str, float]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("'weights' must map scenario names to numbers")
    return {str(name): _as_float(raw, name, 0.0) for name in raw}


def build_run_config(
    data: Mapping[str, Any],
    env: str | None = None,
    **overrides: Any,
) -> RunConfig:
    """
    Build a :class:`RunConfig` from an already-parsed profile mapping.

    Values in *data* override the environment class defaults, and
    non-``None`` keyword *overrides* (typically CLI flags) override
    both.
    """
    defaults = get_config(env)
    merged = dict(data)
    merged.update({key: value for key, value in overrides.items() if value is not None})

    pacing_raw = merged.get("pacing", {}) or {}
    if not isinstance(pacing_raw, Mapping):
        raise ConfigurationError("'pacing' must be a mapping with 'min' and 'max'")
    pacing = (
        parse_duration(pacing_raw.get("min", defaults.PACING_MIN)),
        parse_duration(pacing_raw.get("max", defaults.PACING_MAX)),
    )
    if pacing[0] > pacing[1]:
        raise ConfigurationError(f"Pacing min {pacing[0]} exceeds max {pacing[1]}")

    request_timeout = parse_duration(merged.get("request_timeout", defaults.REQUEST_TIMEOUT))
    if request_timeout <= 0:
        raise ConfigurationError("request_timeout must be positive")

    tick_interval = parse_duration(merged.get("tick_interval", defaults.TICK_INTERVAL))
    if tick_interval <= 0:
        raise ConfigurationError("tick_interval must be positive")

    start_target = merged.get("start_target", 0)
    if isinstance(start_target, bool) or not isinstance(start_target, int) or start_target < 0:
        raise ConfigurationError(f"start_target must be a non-negative integer, got {start_target!r}")

    seed = merged.get("seed")
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        raise ConfigurationError(f"seed must be an integer, got {seed!r}")

    base_url = str(merged.get("base_url") or defaults.BASE_URL).rstrip("/")

    log_level = str(merged.get("log_level") or defaults.LOG_LEVEL).upper()
    # getLevelName maps a registered level name back to its number.
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Unknown log level: {log_level!r}")

    return RunConfig(
        base_url=base_url,
        stages=_parse_stages(merged.get("stages")),
        thresholds=_parse_thresholds(merged.get("thresholds")),
        weights=_parse_weights(merged.get("weights")),
        request_timeout=request_timeout,
        pacing=pacing,
        tick_interval=tick_interval,
        start_target=start_target,
        seed=seed,
        log_level=log_level,
    )


def load_run_config(
    path: Path | str | None = None,
    env: str | None = None,
    **overrides: Any,
) -> RunConfig:
    """
    Read a YAML run profile and merge it with environment defaults.

    Args:
        path: Profile file.  Defaults to the bundled ``stress_profile.yml``.
        env: Environment name passed to :func:`get_config`.
        **overrides: Values that take precedence over the file (``None``
            values are ignored).

    Raises:
        ConfigurationError: If the file is missing, is not valid YAML,
            or describes an invalid run.
    """
    profile_path = Path(path) if path is not None else DEFAULT_PROFILE_PATH
    try:
        with profile_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read profile {profile_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Profile {profile_path} is not valid YAML: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Profile {profile_path} must contain a mapping")

    return build_run_config(data, env=env, **overrides)
