from __future__ import annotations

from dataclasses import dataclass

import pytest

from abacus_trainer.abacus_drills import (
    CUMULATIVE_CHECKPOINTS,
    CumulativeDrill,
    CumulativeStatus,
    TimedDrill,
    TimedDrillConfig,
    TimedDrillPlan,
    TimedDrillStatus,
    check_end_value,
    plan_timed_drill,
    triangular,
)
from abacus_trainer.device import HapticKind
from abacus_trainer.scoring import InMemoryHistoryStore, PracticeType, ScoreTracker
from abacus_trainer.sequence import Operation


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


class ScriptedRng:
    def __init__(self, ints: list[int]) -> None:
        self._ints = list(ints)

    def randint(self, a: int, b: int) -> int:
        value = self._ints.pop(0)
        assert a <= value <= b
        return value

    def random(self) -> float:
        raise AssertionError("drills never draw floats")


class CountingWakeLock:
    def __init__(self) -> None:
        self.acquired = 0
        self.released = 0

    def acquire(self) -> None:
        self.acquired += 1

    def release(self) -> None:
        self.released += 1


class CountingHaptics:
    def __init__(self) -> None:
        self.notices: list[HapticKind] = []

    def pulse(self, intensity: float) -> None:
        return

    def notify(self, kind: HapticKind) -> None:
        self.notices.append(kind)


def test_addition_plan_starts_low() -> None:
    plan = plan_timed_drill(TimedDrillConfig(Operation.ADD, 1), rng=ScriptedRng([7, 23]))
    assert plan == TimedDrillPlan(start_number=23, increment=7, operation=Operation.ADD)


def test_subtraction_plan_leaves_headroom() -> None:
    plan = plan_timed_drill(TimedDrillConfig(Operation.SUBTRACT, 2), rng=ScriptedRng([12, 40]))
    assert plan.increment == 12
    assert plan.start_number == 12 * 160 + 40


def test_check_end_value_accepts_whole_repetitions_only() -> None:
    add = TimedDrillPlan(start_number=10, increment=7, operation=Operation.ADD)
    assert check_end_value(add, 10 + 7 * 30) == 30
    assert check_end_value(add, 11) is None
    assert check_end_value(add, 10) is None
    assert check_end_value(add, 3) is None

    sub = TimedDrillPlan(start_number=1000, increment=8, operation=Operation.SUBTRACT)
    assert check_end_value(sub, 1000 - 8 * 12) == 12
    assert check_end_value(sub, 1008) is None
    assert check_end_value(sub, 1000) is None


def test_timed_drill_full_flow() -> None:
    clock = FakeClock()
    history = InMemoryHistoryStore()
    lock = CountingWakeLock()
    haptics = CountingHaptics()
    drill = TimedDrill(
        TimedDrillConfig(Operation.ADD, 1, duration_s=60.0),
        clock=clock,
        tracker=ScoreTracker(practice_type=PracticeType.TIMED_DRILL, history=history),
        wake_lock=lock,
        haptics=haptics,
        rng=ScriptedRng([6, 4]),
    )
    assert drill.time_remaining_s() == 60.0
    assert drill.submit_end_value("10") is None

    plan = drill.start()
    assert plan is not None
    assert (plan.start_number, plan.increment) == (4, 6)
    assert drill.status is TimedDrillStatus.RUNNING
    assert lock.acquired == 1
    assert drill.start() is None

    clock.advance(30.0)
    drill.update()
    assert drill.status is TimedDrillStatus.RUNNING
    assert drill.time_remaining_s() == pytest.approx(30.0)

    clock.advance(30.5)
    drill.update()
    assert drill.status is TimedDrillStatus.INPUT
    assert lock.released == 1
    assert haptics.notices == [HapticKind.WARNING]
    assert drill.time_remaining_s() == 0.0

    assert drill.submit_end_value("abc") is None
    assert drill.submit_end_value("5") is None
    assert drill.status is TimedDrillStatus.INPUT
    assert haptics.notices[-2:] == [HapticKind.ERROR, HapticKind.ERROR]

    result = drill.submit_end_value(str(4 + 6 * 45))
    assert result is not None
    assert result.repetitions == 45
    assert drill.status is TimedDrillStatus.RESULT
    assert haptics.notices[-1] is HapticKind.SUCCESS

    (record,) = history.query_recent()
    assert record.is_correct is True
    assert record.config_summary == "add 1-digit for 60s: 45 reps"


def test_timed_drill_cancel_releases_wake_lock_once() -> None:
    lock = CountingWakeLock()
    drill = TimedDrill(
        TimedDrillConfig(Operation.SUBTRACT, 1),
        clock=FakeClock(),
        tracker=ScoreTracker(practice_type=PracticeType.TIMED_DRILL),
        wake_lock=lock,
        rng=ScriptedRng([3, 0]),
    )
    drill.start()
    drill.cancel()
    drill.cancel()
    assert drill.status is TimedDrillStatus.SETUP
    assert drill.plan is None
    assert (lock.acquired, lock.released) == (1, 1)


def test_timed_drill_rejects_bad_config() -> None:
    tracker = ScoreTracker(practice_type=PracticeType.TIMED_DRILL)
    with pytest.raises(ValueError):
        TimedDrill(TimedDrillConfig(Operation.ADD, 0), clock=FakeClock(), tracker=tracker)
    with pytest.raises(ValueError):
        TimedDrill(TimedDrillConfig(Operation.ADD, 1, duration_s=0), clock=FakeClock(), tracker=tracker)


def test_triangular_numbers() -> None:
    assert triangular(10) == 55
    assert triangular(100) == 5050


def test_cumulative_drill_retries_then_advances_to_the_end() -> None:
    history = InMemoryHistoryStore()
    haptics = CountingHaptics()
    drill = CumulativeDrill(
        tracker=ScoreTracker(practice_type=PracticeType.CUMULATIVE, history=history),
        haptics=haptics,
    )
    assert (drill.checkpoint, drill.target, drill.expected) == (1, 10, 55)

    assert drill.submit("54") is False
    assert drill.status is CumulativeStatus.FEEDBACK
    assert drill.submit("55") is None
    drill.next()
    assert drill.checkpoint == 1
    assert drill.status is CumulativeStatus.PLAYING

    for checkpoint in range(1, CUMULATIVE_CHECKPOINTS + 1):
        assert drill.checkpoint == checkpoint
        assert drill.submit(str(triangular(checkpoint * 10))) is True
        drill.next()

    assert drill.status is CumulativeStatus.FINISHED
    assert drill.checkpoint == CUMULATIVE_CHECKPOINTS
    assert drill.expected == 5050
    assert haptics.notices[0] is HapticKind.ERROR
    assert haptics.notices[1:] == [HapticKind.SUCCESS] * CUMULATIVE_CHECKPOINTS

    records = history.query_recent()
    assert len(records) == CUMULATIVE_CHECKPOINTS + 1
    assert records[0].config_summary == "1-100"
    assert records[-1].config_summary == "1-10"
    assert records[-1].is_correct is False
