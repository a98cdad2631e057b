"""Abacus routines: the one-minute timed drill and the cumulative 1-100 drill.

Timed drill
    The user repeatedly adds (or subtracts) one increment on the abacus,
    starting from a given number, until the countdown ends.  They then enter
    the number on their abacus.  Any value reachable by whole repetitions is
    accepted and the repetition count is reported.

Cumulative drill
    Ten checkpoints; checkpoint ``k`` asks for ``1 + 2 + ... + 10k``.

Both engines are deterministic given a seeded RNG and an injected clock.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .clock import Clock, Deadline
from .device import HapticKind, Haptics, NullHaptics, NullWakeLock, WakeLock
from .scoring import ScoreTracker
from .sequence import Operation, RandomSource, magnitude_range, parse_integer

logger = logging.getLogger(__name__)

TIMED_DRILL_DURATION_S = 60.0
# A subtraction drill starts high enough for this many repetitions.
SUBTRACTION_HEADROOM = 160
CUMULATIVE_CHECKPOINTS = 10


def _best_effort(label: str, fn: Callable[..., object], *args: object) -> None:
    try:
        fn(*args)
    except Exception:
        logger.debug("%s failed", label, exc_info=True)


@dataclass(frozen=True, slots=True)
class TimedDrillConfig:
    operation: Operation
    digit_count: int
    duration_s: float = TIMED_DRILL_DURATION_S

    def summary(self) -> str:
        verb = "add" if self.operation is Operation.ADD else "subtract"
        return f"{verb} {self.digit_count}-digit for {int(round(self.duration_s))}s"


@dataclass(frozen=True, slots=True)
class TimedDrillPlan:
    start_number: int
    increment: int
    operation: Operation


@dataclass(frozen=True, slots=True)
class TimedDrillResult:
    start_number: int
    end_value: int
    increment: int
    repetitions: int


def plan_timed_drill(config: TimedDrillConfig, *, rng: RandomSource) -> TimedDrillPlan:
    lo, hi = magnitude_range(config.digit_count)
    increment = rng.randint(lo, hi)
    if config.operation is Operation.ADD:
        start = rng.randint(1, 50)
    else:
        start = increment * SUBTRACTION_HEADROOM + rng.randint(0, 99)
    return TimedDrillPlan(start_number=start, increment=increment, operation=config.operation)


def check_end_value(plan: TimedDrillPlan, end_value: int) -> int | None:
    """Repetitions needed to reach ``end_value``, or None if it is off the sequence."""

    diff = end_value - plan.start_number
    if plan.operation is Operation.ADD and diff <= 0:
        return None
    if plan.operation is Operation.SUBTRACT and diff >= 0:
        return None
    if abs(diff) % plan.increment != 0:
        return None
    return abs(diff) // plan.increment


class TimedDrillStatus(str, Enum):
    SETUP = "setup"
    RUNNING = "running"
    INPUT = "input"
    RESULT = "result"


class TimedDrill:
    def __init__(
        self,
        config: TimedDrillConfig,
        *,
        clock: Clock,
        tracker: ScoreTracker,
        wake_lock: WakeLock | None = None,
        haptics: Haptics | None = None,
        rng: RandomSource | None = None,
    ) -> None:
        if config.digit_count < 1:
            raise ValueError("digit_count must be >= 1")
        if config.duration_s <= 0:
            raise ValueError("duration_s must be > 0")
        self._config = config
        self._clock = clock
        self._tracker = tracker
        self._wake_lock: WakeLock = NullWakeLock() if wake_lock is None else wake_lock
        self._haptics: Haptics = NullHaptics() if haptics is None else haptics
        self._rng: RandomSource = random.Random() if rng is None else rng

        self._status = TimedDrillStatus.SETUP
        self._plan: TimedDrillPlan | None = None
        self._deadline: Deadline | None = None
        self._wake_held = False
        self._result: TimedDrillResult | None = None

    @property
    def status(self) -> TimedDrillStatus:
        return self._status

    @property
    def plan(self) -> TimedDrillPlan | None:
        return self._plan

    @property
    def result(self) -> TimedDrillResult | None:
        return self._result

    def time_remaining_s(self) -> float:
        if self._status is TimedDrillStatus.SETUP:
            return float(self._config.duration_s)
        if self._status is TimedDrillStatus.RUNNING:
            assert self._deadline is not None
            return self._deadline.remaining_s()
        return 0.0

    def start(self) -> TimedDrillPlan | None:
        if self._status is not TimedDrillStatus.SETUP:
            return None
        self._plan = plan_timed_drill(self._config, rng=self._rng)
        self._deadline = Deadline(self._clock, self._config.duration_s)
        self._status = TimedDrillStatus.RUNNING
        self._acquire_wake_lock()
        return self._plan

    def update(self) -> None:
        if self._status is not TimedDrillStatus.RUNNING:
            return
        assert self._deadline is not None
        if self._deadline.expired():
            self._release_wake_lock()
            self._status = TimedDrillStatus.INPUT
            _best_effort("haptic notify", self._haptics.notify, HapticKind.WARNING)

    def submit_end_value(self, raw: str) -> TimedDrillResult | None:
        """Accept the value on the abacus if it lies on the drill's sequence."""

        if self._status is not TimedDrillStatus.INPUT:
            return None
        assert self._plan is not None
        end_value = parse_integer(raw)
        repetitions = None if end_value is None else check_end_value(self._plan, end_value)
        if end_value is None or repetitions is None:
            _best_effort("haptic notify", self._haptics.notify, HapticKind.ERROR)
            return None

        self._result = TimedDrillResult(
            start_number=self._plan.start_number,
            end_value=end_value,
            increment=self._plan.increment,
            repetitions=repetitions,
        )
        self._status = TimedDrillStatus.RESULT
        _best_effort("haptic notify", self._haptics.notify, HapticKind.SUCCESS)
        self._tracker.record_outcome(True, config_summary=f"{self._config.summary()}: {repetitions} reps")
        return self._result

    def cancel(self) -> None:
        self._release_wake_lock()
        self._status = TimedDrillStatus.SETUP
        self._plan = None
        self._deadline = None
        self._result = None

    def _acquire_wake_lock(self) -> None:
        if self._wake_held:
            return
        self._wake_held = True
        _best_effort("wake lock acquire", self._wake_lock.acquire)

    def _release_wake_lock(self) -> None:
        if not self._wake_held:
            return
        self._wake_held = False
        _best_effort("wake lock release", self._wake_lock.release)


def triangular(n: int) -> int:
    return n * (n + 1) // 2


class CumulativeStatus(str, Enum):
    PLAYING = "playing"
    FEEDBACK = "feedback"
    FINISHED = "finished"


class CumulativeDrill:
    def __init__(self, *, tracker: ScoreTracker, haptics: Haptics | None = None) -> None:
        self._tracker = tracker
        self._haptics: Haptics = NullHaptics() if haptics is None else haptics
        self._checkpoint = 1
        self._status = CumulativeStatus.PLAYING
        self._last_correct: bool | None = None

    @property
    def checkpoint(self) -> int:
        return self._checkpoint

    @property
    def status(self) -> CumulativeStatus:
        return self._status

    @property
    def last_correct(self) -> bool | None:
        return self._last_correct

    @property
    def target(self) -> int:
        """Upper end of the range being summed at this checkpoint."""
        return self._checkpoint * 10

    @property
    def expected(self) -> int:
        return triangular(self.target)

    def submit(self, raw: str) -> bool | None:
        if self._status is not CumulativeStatus.PLAYING:
            return None
        value = parse_integer(raw)
        correct = value is not None and value == self.expected
        self._last_correct = correct
        self._status = CumulativeStatus.FEEDBACK
        _best_effort("haptic notify", self._haptics.notify, HapticKind.SUCCESS if correct else HapticKind.ERROR)
        self._tracker.record_outcome(correct, config_summary=f"1-{self.target}")
        return correct

    def next(self) -> None:
        """Advance after a correct answer; retry the checkpoint after a wrong one."""

        if self._status is not CumulativeStatus.FEEDBACK:
            return
        if self._last_correct:
            if self._checkpoint >= CUMULATIVE_CHECKPOINTS:
                self._status = CumulativeStatus.FINISHED
                return
            self._checkpoint += 1
        self._last_correct = None
        self._status = CumulativeStatus.PLAYING
