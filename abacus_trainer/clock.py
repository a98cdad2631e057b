from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Playback pacing, drill countdowns and timeouts read time through this
    interface so tests can drive them with a fake clock.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class Deadline:
    """A point in time measured against an injected clock."""

    def __init__(self, clock: Clock, duration_s: float) -> None:
        self._clock = clock
        self._ends_at = clock.now() + max(0.0, float(duration_s))

    @property
    def ends_at(self) -> float:
        return self._ends_at

    def remaining_s(self) -> float:
        return max(0.0, self._ends_at - self._clock.now())

    def expired(self) -> bool:
        return self._clock.now() >= self._ends_at
