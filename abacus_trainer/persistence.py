from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from pathlib import Path

from .scoring import PracticeType, ScoreRecord

SCHEMA_VERSION = 1
DEFAULT_MAX_RECORDS = 50

HISTORY_PATH_ENV = "ABACUS_HISTORY_PATH"


def default_history_path() -> Path:
    explicit = os.environ.get(HISTORY_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".abacus_trainer_history.db"


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS score_record (
                id INTEGER PRIMARY KEY,
                recorded_at_utc TEXT NOT NULL,
                practice_type TEXT NOT NULL,
                is_correct INTEGER NOT NULL,
                config_summary TEXT NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def _to_utc_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


class SqliteHistoryStore:
    """Append-only practice history that keeps only the newest records."""

    def __init__(self, path: Path, *, max_records: int = DEFAULT_MAX_RECORDS) -> None:
        if max_records < 1:
            raise ValueError("max_records must be >= 1")
        self._path = Path(path)
        self._max_records = int(max_records)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: ScoreRecord) -> None:
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO score_record(recorded_at_utc, practice_type, is_correct, config_summary)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        _to_utc_iso(record.timestamp),
                        str(record.practice_type.value),
                        1 if record.is_correct else 0,
                        str(record.config_summary),
                    ),
                )
                conn.execute(
                    """
                    DELETE FROM score_record
                    WHERE id NOT IN (SELECT id FROM score_record ORDER BY id DESC LIMIT ?)
                    """,
                    (self._max_records,),
                )
        finally:
            conn.close()

    def query_recent(self, limit: int | None = None) -> list[ScoreRecord]:
        n = self._max_records if limit is None else max(0, int(limit))
        conn = open_db(self._path)
        try:
            rows = conn.execute(
                """
                SELECT recorded_at_utc, practice_type, is_correct, config_summary
                FROM score_record ORDER BY id DESC LIMIT ?
                """,
                (n,),
            ).fetchall()
        finally:
            conn.close()

        return [
            ScoreRecord(
                timestamp=datetime.fromisoformat(str(recorded_at)),
                practice_type=PracticeType(str(practice_type)),
                is_correct=bool(is_correct),
                config_summary=str(summary),
            )
            for recorded_at, practice_type, is_correct, summary in rows
        ]

    def clear(self) -> None:
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute("DELETE FROM score_record;")
        finally:
            conn.close()


def compute_streak(records: list[ScoreRecord], *, today: date | None = None, tz: tzinfo | None = None) -> int:
    """Count consecutive practice days ending today.

    A streak is still alive if the last practice was yesterday; it is zero once
    a full calendar day has been missed.  Days are calendar days in ``tz``
    (local time when omitted).
    """

    days = {r.timestamp.astimezone(tz).date() for r in records}
    if not days:
        return 0
    if today is None:
        today = datetime.now(tz).date()

    day = today
    if day not in days:
        day = today - timedelta(days=1)
        if day not in days:
            return 0

    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


@dataclass(frozen=True, slots=True)
class HistorySummary:
    total: int
    correct: int
    accuracy_by_type: dict[PracticeType, int | None]


def summarize_history(records: list[ScoreRecord]) -> HistorySummary:
    """Totals plus per-type accuracy in whole percent (None when unplayed)."""

    accuracy: dict[PracticeType, int | None] = {}
    for practice_type in PracticeType:
        rounds = [r for r in records if r.practice_type is practice_type]
        if not rounds:
            accuracy[practice_type] = None
            continue
        correct = sum(1 for r in rounds if r.is_correct)
        accuracy[practice_type] = int(round(100.0 * correct / len(rounds)))

    return HistorySummary(
        total=len(records),
        correct=sum(1 for r in records if r.is_correct),
        accuracy_by_type=accuracy,
    )
