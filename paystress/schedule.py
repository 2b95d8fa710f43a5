"""
Load schedule: how many virtual users should be running at time ``t``.

A schedule is an ordered list of stages.  Each stage names a duration
and the concurrency to reach by its end.  Inside a stage the target is
interpolated linearly from the previous stage's target (or the
schedule's starting level for the first stage) to the stage's own
target; when both ends are equal the stage is a flat plateau.

The default ramp used by the bundled profile::

    0s ──30s──▶ 50 ──1m──▶ 50 ──30s──▶ 100 ──1m──▶ 100 ──30s──▶ 200 ...

``target_at`` is a pure function of elapsed time; the schedule holds no
clock and no mutable state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator

from paystress.exceptions import ConfigurationError


@dataclass(frozen=True)
class Stage:
    """One segment of the schedule: reach ``target`` users over ``duration`` seconds."""

    duration: float
    target: int

    def __post_init__(self) -> None:
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            raise ConfigurationError(f"Stage target must be an integer, got {self.target!r}")
        if self.target < 0:
            raise ConfigurationError(f"Stage target must be non-negative, got {self.target}")
        if not math.isfinite(self.duration) or self.duration < 0:
            raise ConfigurationError(
                f"Stage duration must be a finite non-negative number, got {self.duration}"
            )


class LoadSchedule:
    """
    Immutable sequence of stages with cumulative boundaries.

    Past the end of the last stage the target drops to ``0``: the run is
    over and every virtual user should be winding down.  At exactly
    ``total_duration`` the last stage's target is still returned so the
    closing value of the final ramp is observable.
    """

    def __init__(self, stages: Iterable[Stage | tuple[float, int]], start_target: int = 0):
        try:
            normalised = tuple(
                stage if isinstance(stage, Stage) else Stage(float(stage[0]), stage[1])
                for stage in stages
            )
        except (TypeError, ValueError, IndexError) as exc:
            raise ConfigurationError(f"Invalid stage: {exc}") from exc
        if not normalised:
            raise ConfigurationError("Load schedule needs at least one stage")
        if isinstance(start_target, bool) or not isinstance(start_target, int) or start_target < 0:
            raise ConfigurationError(
                f"Start target must be a non-negative integer, got {start_target!r}"
            )

        self._stages = normalised
        self._start_target = start_target

        boundaries = []
        elapsed = 0.0
        for stage in normalised:
            elapsed += stage.duration
            boundaries.append(elapsed)
        self._ends = tuple(boundaries)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def start_target(self) -> int:
        return self._start_target

    @property
    def total_duration(self) -> float:
        """Sum of all stage durations, in seconds."""
        return self._ends[-1]

    @property
    def max_target(self) -> int:
        """Highest concurrency the schedule ever asks for."""
        return max([self._start_target] + [stage.target for stage in self._stages])

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __repr__(self) -> str:
        parts = ", ".join(f"{s.duration:g}s->{s.target}" for s in self._stages)
        return f"LoadSchedule([{parts}], start_target={self._start_target})"

    def stage_at(self, t: float) -> int | None:
        """
        Return the index of the stage active at *t*, or ``None`` past the end.

        Stage ``i`` covers ``[start_i, end_i)``; the final instant
        ``t == total_duration`` belongs to the last stage.
        """
        if t < 0:
            raise ConfigurationError(f"Elapsed time must be non-negative, got {t}")
        if t > self.total_duration:
            return None

        for index, end in enumerate(self._ends):
            if t < end:
                return index
        # t == total_duration: the closing instant of the final stage.
        return len(self._stages) - 1

    def target_at(self, t: float) -> int:
        """
        Target concurrency at *t* seconds after the run started.

        Raises:
            ConfigurationError: If *t* is negative.
        """
        index = self.stage_at(t)
        if index is None:
            return 0

        stage = self._stages[index]
        previous = self._start_target if index == 0 else self._stages[index - 1].target
        if stage.duration == 0 or previous == stage.target:
            return stage.target

        stage_start = self._ends[index] - stage.duration
        progress = min(1.0, (t - stage_start) / stage.duration)
        value = previous + (stage.target - previous) * progress
        # Round half up so ramps hit each integer level at a fixed point.
        return int(math.floor(value + 0.5))
