from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .scoring import PracticeType
from .session import (
    DEFAULT_DIGIT_COUNT,
    DEFAULT_TERM_COUNT,
    FONT_SIZES,
    PresentationStyle,
    clamp_pace,
    default_pace,
)

logger = logging.getLogger(__name__)

PREFERENCES_PATH_ENV = "ABACUS_PREFERENCES_PATH"


def style_for(practice_type: PracticeType) -> PresentationStyle:
    if practice_type is PracticeType.LISTENING:
        return PresentationStyle.SPEECH
    return PresentationStyle.VISUAL


@dataclass(frozen=True, slots=True)
class PracticeSetup:
    """Last-used setup screen values for one practice type.

    Digit and term counts are kept as the raw text the user typed; they are
    validated only when a session starts.
    """

    digits_text: str
    terms_text: str
    pace: float
    voice_index: int = 0
    font_size: str = "medium"
    addition_only: bool = False

    @classmethod
    def defaults(cls, practice_type: PracticeType) -> "PracticeSetup":
        return cls(
            digits_text=str(DEFAULT_DIGIT_COUNT),
            terms_text=str(DEFAULT_TERM_COUNT),
            pace=default_pace(style_for(practice_type)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "digits": self.digits_text,
            "terms": self.terms_text,
            "pace": float(self.pace),
            "voice_index": int(self.voice_index),
            "font_size": self.font_size,
            "addition_only": bool(self.addition_only),
        }

    @classmethod
    def from_dict(cls, data: object, practice_type: PracticeType) -> "PracticeSetup":
        base = cls.defaults(practice_type)
        if not isinstance(data, dict):
            return base
        style = style_for(practice_type)
        font_size = str(data.get("font_size", base.font_size))
        return cls(
            digits_text=str(data.get("digits", base.digits_text)).strip(),
            terms_text=str(data.get("terms", base.terms_text)).strip(),
            pace=clamp_pace(style, _as_float(data.get("pace"), base.pace)),
            voice_index=max(0, _as_int(data.get("voice_index"), 0)),
            font_size=font_size if font_size in FONT_SIZES else base.font_size,
            addition_only=bool(data.get("addition_only", False)),
        )


class PreferencesStore:
    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = path
        self._setups: dict[PracticeType, PracticeSetup] = {}
        self._load()

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(PREFERENCES_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".abacus_trainer_preferences.json"

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable preferences file %s", self._path, exc_info=True)
            return
        if not isinstance(payload, dict):
            return
        raw_setups = payload.get("setups")
        if not isinstance(raw_setups, dict):
            return
        for key, value in raw_setups.items():
            try:
                practice_type = PracticeType(str(key))
            except ValueError:
                continue
            self._setups[practice_type] = PracticeSetup.from_dict(value, practice_type)

    def save(self) -> None:
        payload = {
            "version": self._version,
            "setups": {pt.value: setup.to_dict() for pt, setup in self._setups.items()},
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            logger.warning("Failed to save preferences to %s", self._path, exc_info=True)

    def setup_for(self, practice_type: PracticeType) -> PracticeSetup:
        found = self._setups.get(practice_type)
        if found is None:
            return PracticeSetup.defaults(practice_type)
        return found

    def update_setup(self, practice_type: PracticeType, **changes: Any) -> PracticeSetup:
        updated = replace(self.setup_for(practice_type), **changes)
        # Round-trip through from_dict so stored values are always clamped.
        updated = PracticeSetup.from_dict(updated.to_dict(), practice_type)
        self._setups[practice_type] = updated
        self.save()
        return updated


def _as_float(value: object, fallback: float) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


def _as_int(value: object, fallback: int) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
