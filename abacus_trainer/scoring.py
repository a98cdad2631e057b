from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Protocol

logger = logging.getLogger(__name__)


class PracticeType(StrEnum):
    LISTENING = "listening"
    FLASH = "flash"
    TIMED_DRILL = "timed_drill"
    CUMULATIVE = "cumulative"


@dataclass(frozen=True, slots=True)
class ScoreRecord:
    timestamp: datetime
    practice_type: PracticeType
    is_correct: bool
    config_summary: str


class HistoryStore(Protocol):
    def append(self, record: ScoreRecord) -> None: ...
    def query_recent(self, limit: int | None = None) -> list[ScoreRecord]: ...
    def clear(self) -> None: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryHistoryStore:
    """Newest-first history kept in memory (headless runs and tests)."""

    def __init__(self, *, max_records: int = 50) -> None:
        self._max_records = int(max_records)
        self._records: list[ScoreRecord] = []

    def append(self, record: ScoreRecord) -> None:
        self._records.insert(0, record)
        del self._records[self._max_records :]

    def query_recent(self, limit: int | None = None) -> list[ScoreRecord]:
        if limit is None:
            return list(self._records)
        return self._records[: max(0, int(limit))]

    def clear(self) -> None:
        self._records.clear()


class ScoreTracker:
    """Running score for one practice screen.

    Every graded round is also forwarded to the history store.  The store is
    best-effort: a failing write is logged and the round still counts.
    """

    def __init__(
        self,
        *,
        practice_type: PracticeType,
        history: HistoryStore | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._practice_type = PracticeType(practice_type)
        self._history = history
        self._now = now
        self._correct = 0
        self._total = 0

    @property
    def practice_type(self) -> PracticeType:
        return self._practice_type

    @property
    def correct(self) -> int:
        return self._correct

    @property
    def total(self) -> int:
        return self._total

    def record_outcome(self, is_correct: bool, *, config_summary: str) -> ScoreRecord:
        self._total += 1
        if is_correct:
            self._correct += 1

        record = ScoreRecord(
            timestamp=self._now(),
            practice_type=self._practice_type,
            is_correct=bool(is_correct),
            config_summary=str(config_summary),
        )
        if self._history is not None:
            try:
                self._history.append(record)
            except Exception:
                logger.warning("Failed to persist %s result", self._practice_type.value, exc_info=True)
        return record

    def reset(self) -> None:
        self._correct = 0
        self._total = 0
