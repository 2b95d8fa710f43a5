"""
Virtual-user scheduler.

Keeps the number of running virtual users equal to what the
:class:`~paystress.schedule.LoadSchedule` asks for.  Every
``tick_interval`` seconds the scheduler compares the running population
with the schedule's target and:

- **scales up** by spawning ``target - running`` new users, or
- **scales down** by asking the most recently started
  ``running - target`` users to stop.

Each virtual user is a thread with an explicit lifecycle::

    IDLE ──start()──▶ RUNNING ──stop()──▶ STOPPING ──loop exits──▶ TERMINATED

A ``RUNNING`` user repeatedly invokes the scenario dispatcher and then
sleeps a random pacing delay.  A stop request is only honoured between
iterations: the in-flight scenario always completes, and the pacing
sleep is cut short.  Scenario failures never end a loop; they were
already recorded as failed outcomes by the dispatcher.

When the schedule's total duration has elapsed (or :meth:`stop` is
called, e.g. on Ctrl+C), every user is asked to stop and ``run`` waits
for all of them to terminate before returning.
"""

from __future__ import annotations

import itertools
import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from paystress.exceptions import ConfigurationError, InvalidTransition
from paystress.schedule import LoadSchedule
from paystress.scenarios import Outcome, ScenarioDispatcher, TargetClient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class VUState(str, Enum):
    """Lifecycle states of a virtual user."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINATED = "terminated"


_ALLOWED_TRANSITIONS = {
    VUState.IDLE: {VUState.RUNNING, VUState.TERMINATED},
    VUState.RUNNING: {VUState.STOPPING},
    VUState.STOPPING: {VUState.TERMINATED},
    VUState.TERMINATED: set(),
}


class VirtualUser:
    """
    One simulated client looping over scenarios.

    Owns its own :class:`TargetClient`, random source and iteration
    counter; nothing here is shared with other users except the
    dispatcher's metrics sink.

    Attributes:
        vu_id: 1-based identifier, in spawn order.
        iterations: Completed scenario invocations.
        last_outcome: The most recent :class:`Outcome`, if any.
        last_completed_at: Clock reading when the last scenario finished.
        terminated_at: Clock reading at the ``TERMINATED`` transition.
    """

    def __init__(
        self,
        vu_id: int,
        dispatcher: ScenarioDispatcher,
        target: TargetClient,
        rng: random.Random,
        pacing: tuple[float, float] = (0.0, 2.0),
        clock: Clock = time.monotonic,
    ):
        self.vu_id = vu_id
        self.dispatcher = dispatcher
        self.target = target
        self.rng = rng
        self.pacing = pacing
        self._clock = clock

        self.iterations = 0
        self.last_outcome: Outcome | None = None
        self.last_completed_at: float | None = None
        self.started_at: float | None = None
        self.terminated_at: float | None = None

        self._state = VUState.IDLE
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"<VirtualUser {self.vu_id} {self._state.value} iterations={self.iterations}>"

    @property
    def state(self) -> VUState:
        return self._state

    def _transition(self, new_state: VUState) -> None:
        with self._state_lock:
            if new_state not in _ALLOWED_TRANSITIONS[self._state]:
                raise InvalidTransition(
                    f"VU {self.vu_id}: cannot go from {self._state.value} to {new_state.value}"
                )
            self._state = new_state

    def start(self) -> None:
        """Move to ``RUNNING`` and launch the loop thread."""
        self._transition(VUState.RUNNING)
        self.started_at = self._clock()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"vu-{self.vu_id}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """
        Ask the user to stop after its current iteration.

        Idempotent: stopping a user that is already stopping or
        terminated is a no-op.  An ``IDLE`` user terminates immediately.
        """
        if self._state is VUState.IDLE:
            self._terminate()
            return
        self._begin_stopping()

    def _begin_stopping(self) -> bool:
        with self._state_lock:
            if self._state is not VUState.RUNNING:
                return False
            self._state = VUState.STOPPING
        self._stop_event.set()
        return True

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the loop thread; return ``True`` once the user is terminated."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self._state is VUState.TERMINATED

    def pacing_delay(self) -> float:
        low, high = self.pacing
        return self.rng.uniform(low, high)

    def _terminate(self) -> None:
        self.terminated_at = self._clock()
        self._transition(VUState.TERMINATED)
        self.target.close()

    def _loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                outcome = self.dispatcher.execute(self.target, self.rng)
                self.last_outcome = outcome
                self.last_completed_at = self._clock()
                self.iterations += 1
                if self._stop_event.is_set():
                    break
                self._stop_event.wait(self.pacing_delay())
        except Exception:
            logger.exception("VU %s loop crashed", self.vu_id)
            self._begin_stopping()
        finally:
            self._terminate()


@dataclass(frozen=True)
class RunStats:
    """Bookkeeping from one scheduler run."""

    started_at: float
    finished_at: float
    users_spawned: int
    peak_users: int
    iterations: int
    aborted: bool = False

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at


class VirtualUserScheduler:
    """
    Drive a population of :class:`VirtualUser` objects along a schedule.

    Args:
        schedule: The load profile to follow.
        dispatcher: Shared scenario dispatcher (owns the metrics sink).
        target_factory: Called once per spawned user to build its own
            :class:`TargetClient`.
        tick_interval: Seconds between reconciliations.
        pacing: ``(min, max)`` think-time between iterations, seconds.
        rng: Master random source; each user gets a child ``Random``
            seeded from it, so one seed reproduces a whole run's choices.
        clock: Monotonic clock, injectable for tests.
        stop_timeout: Seconds to wait for each user to finish its
            in-flight request at shutdown (``None`` waits forever).
    """

    def __init__(
        self,
        schedule: LoadSchedule,
        dispatcher: ScenarioDispatcher,
        target_factory: Callable[[], TargetClient],
        tick_interval: float = 1.0,
        pacing: tuple[float, float] = (0.0, 2.0),
        rng: random.Random | None = None,
        clock: Clock = time.monotonic,
        stop_timeout: float | None = None,
    ):
        if tick_interval <= 0:
            raise ConfigurationError(f"tick_interval must be positive, got {tick_interval}")
        low, high = pacing
        if low < 0 or high < low:
            raise ConfigurationError(f"Invalid pacing range: {pacing}")

        self.schedule = schedule
        self.dispatcher = dispatcher
        self.target_factory = target_factory
        self.tick_interval = tick_interval
        self.pacing = (float(low), float(high))
        self.rng = rng if rng is not None else random.Random()
        self.stop_timeout = stop_timeout
        self._clock = clock

        self._ids = itertools.count(1)
        self._active: list[VirtualUser] = []
        self._retired: list[VirtualUser] = []
        self._abort = threading.Event()
        self._started_at: float | None = None
        self._peak = 0
        self._last_stage: int | None = None

    # ---- observation ---------------------------------------------------

    def users(self) -> list[VirtualUser]:
        """Every user this scheduler has created, active or retired."""
        return self._retired + self._active

    def running_count(self) -> int:
        return sum(1 for user in self._active if user.state is VUState.RUNNING)

    def active_count(self) -> int:
        """Users not yet terminated (running or stopping)."""
        return sum(1 for user in self._active if user.state is not VUState.TERMINATED)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    # ---- control -------------------------------------------------------

    def stop(self) -> None:
        """Request a graceful end of the run (safe to call from any thread)."""
        self._abort.set()

    def _spawn(self) -> VirtualUser:
        user = VirtualUser(
            vu_id=next(self._ids),
            dispatcher=self.dispatcher,
            target=self.target_factory(),
            rng=random.Random(self.rng.getrandbits(64)),
            pacing=self.pacing,
            clock=self._clock,
        )
        self._active.append(user)
        user.start()
        return user

    def _prune(self) -> None:
        finished = [user for user in self._active if user.state is VUState.TERMINATED]
        if finished:
            self._retired.extend(finished)
            self._active = [user for user in self._active if user.state is not VUState.TERMINATED]

    def reconcile(self, target: int) -> int:
        """
        Bring the running population to *target*.

        Returns:
            The change applied: positive when users were spawned,
            negative when users were asked to stop.
        """
        self._prune()
        running = [user for user in self._active if user.state is VUState.RUNNING]
        delta = target - len(running)

        if delta > 0:
            for _ in range(delta):
                self._spawn()
            logger.debug("Scaled up by %d to %d users", delta, target)
        elif delta < 0:
            # Newest first.
            for user in reversed(running[target:]):
                user.stop()
            logger.debug("Scaling down by %d to %d users", -delta, target)

        self._peak = max(self._peak, self.running_count())
        return delta

    def _log_stage(self, elapsed: float) -> None:
        index = self.schedule.stage_at(elapsed)
        if index is not None and index != self._last_stage:
            stage = self.schedule.stages[index]
            logger.info(
                "Stage %d/%d: %d users over %gs",
                index + 1,
                len(self.schedule),
                stage.target,
                stage.duration,
            )
            self._last_stage = index

    def run(self) -> RunStats:
        """
        Follow the schedule to its end, then stop every user and wait for them.

        Returns:
            A :class:`RunStats` summary.  ``aborted`` is ``True`` when
            the run was cut short by :meth:`stop` or ``KeyboardInterrupt``.
        """
        if self._started_at is not None:
            raise RuntimeError("A scheduler can only run once")

        total = self.schedule.total_duration
        self._started_at = self._clock()
        logger.info(
            "Starting run: %d stages, %gs total, up to %d users",
            len(self.schedule),
            total,
            self.schedule.max_target,
        )

        try:
            while not self._abort.is_set():
                elapsed = self.elapsed()
                if elapsed >= total:
                    break
                self._log_stage(elapsed)
                self.reconcile(self.schedule.target_at(elapsed))
                self._abort.wait(min(self.tick_interval, max(total - elapsed, 0.0)))
        except KeyboardInterrupt:
            logger.warning("Interrupted; stopping virtual users gracefully")
            self._abort.set()

        aborted = self._abort.is_set()
        self.shutdown()
        finished_at = self._clock()

        users = self.users()
        stats = RunStats(
            started_at=self._started_at,
            finished_at=finished_at,
            users_spawned=len(users),
            peak_users=self._peak,
            iterations=sum(user.iterations for user in users),
            aborted=aborted,
        )
        logger.info(
            "Run finished after %.1fs: %d users spawned, %d iterations",
            stats.duration,
            stats.users_spawned,
            stats.iterations,
        )
        return stats

    def shutdown(self) -> None:
        """Stop every active user and wait until all have terminated."""
        for user in self._active:
            user.stop()
        for user in self._active:
            if not user.join(self.stop_timeout):
                logger.warning("VU %s did not finish within %ss", user.vu_id, self.stop_timeout)
        self._prune()
