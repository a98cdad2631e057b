"""Practice-session state machine for listening and flash practice.

    CONFIGURING -> PRESENTING -> AWAITING_ANSWER -> FEEDBACK
         ^             |                               |
         +---- cancel -+            next_round --------+--> PRESENTING
         +------------------------- return_to_setup ---+

``PracticeSession`` owns one generated sequence at a time and drives a
``PlaybackChannel`` through it, one term after another.  Like the other
engines in this package it never sleeps: the UI calls ``update()`` every
frame and all timing comes from the channel's clock.  The state is checked
before every term, so once a round is cancelled no new term starts.  A
failing channel is logged and the round goes back to setup.

The wake lock is held exactly while the session is PRESENTING.  Device and
persistence collaborators are best-effort; their failures are logged and
never end a session.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .device import HapticKind, Haptics, NullHaptics, NullWakeLock, WakeLock
from .playback import Pacing, PlaybackChannel
from .scoring import ScoreTracker
from .sequence import GeneratedSequence, OperationMode, RandomSource, SequenceItem, generate_sequence, parse_integer

logger = logging.getLogger(__name__)

SPEECH_PACE_MIN = 0.5
SPEECH_PACE_MAX = 2.0
SPEECH_PACE_DEFAULT = 1.0

VISUAL_PACE_MIN_MS = 100.0
VISUAL_PACE_MAX_MS = 2000.0
VISUAL_PACE_DEFAULT_MS = 1000.0

DEFAULT_DIGIT_COUNT = 1
DEFAULT_TERM_COUNT = 5

START_PULSE_INTENSITY = 0.3


class SessionState(str, Enum):
    CONFIGURING = "configuring"
    PRESENTING = "presenting"
    AWAITING_ANSWER = "awaiting_answer"
    FEEDBACK = "feedback"


class PresentationStyle(str, Enum):
    SPEECH = "speech"
    VISUAL = "visual"


FONT_SIZES = ("small", "medium", "large")


@dataclass(frozen=True, slots=True)
class SessionConfig:
    digit_count: int
    term_count: int
    pace: float
    presentation_style: PresentationStyle
    operation_mode: OperationMode = OperationMode.MIXED
    voice_id: str | None = None
    font_size: str = "medium"

    def is_valid(self) -> bool:
        return self.digit_count >= 1 and self.term_count >= 2

    @property
    def pacing(self) -> Pacing:
        return Pacing(pace=self.pace, voice_id=self.voice_id)

    def summary(self) -> str:
        """Short description stored with each graded round."""

        digits = "digit" if self.digit_count == 1 else "digits"
        if self.presentation_style is PresentationStyle.SPEECH:
            speed = f"{self.pace:.1f}x"
        else:
            speed = f"{int(round(self.pace))}ms"
        text = f"{self.digit_count} {digits} x {self.term_count} terms @ {speed}"
        if self.operation_mode is OperationMode.ADDITION_ONLY:
            text += " (+ only)"
        return text


def clamp_pace(style: PresentationStyle, pace: float) -> float:
    if style is PresentationStyle.SPEECH:
        lo, hi = SPEECH_PACE_MIN, SPEECH_PACE_MAX
    else:
        lo, hi = VISUAL_PACE_MIN_MS, VISUAL_PACE_MAX_MS
    return max(lo, min(hi, float(pace)))


def default_pace(style: PresentationStyle) -> float:
    if style is PresentationStyle.SPEECH:
        return SPEECH_PACE_DEFAULT
    return VISUAL_PACE_DEFAULT_MS


def parse_session_config(
    digits_text: str,
    terms_text: str,
    *,
    presentation_style: PresentationStyle,
    pace: float | None = None,
    operation_mode: OperationMode = OperationMode.MIXED,
    voice_id: str | None = None,
    font_size: str = "medium",
) -> SessionConfig | None:
    """Build a config from raw text fields, or None if it cannot start.

    Non-numeric counts, fewer than one digit and fewer than two terms are all
    rejected the same way; the caller simply keeps the start action disabled.
    """

    digits = parse_integer(digits_text)
    terms = parse_integer(terms_text)
    if digits is None or terms is None:
        return None
    if digits < 1 or terms < 2:
        return None

    style = PresentationStyle(presentation_style)
    return SessionConfig(
        digit_count=digits,
        term_count=terms,
        pace=clamp_pace(style, default_pace(style) if pace is None else pace),
        presentation_style=style,
        operation_mode=OperationMode(operation_mode),
        voice_id=voice_id,
        font_size=font_size if font_size in FONT_SIZES else "medium",
    )


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    state: SessionState
    display_text: str | None
    terms_presented: int
    term_count: int
    expected_answer: int | None
    last_answer: str | None
    last_correct: bool | None
    correct: int
    total: int


class PracticeSession:
    def __init__(
        self,
        *,
        channel: PlaybackChannel,
        tracker: ScoreTracker,
        wake_lock: WakeLock | None = None,
        haptics: Haptics | None = None,
        rng: RandomSource | None = None,
    ) -> None:
        self._channel = channel
        self._tracker = tracker
        self._wake_lock: WakeLock = NullWakeLock() if wake_lock is None else wake_lock
        self._haptics: Haptics = NullHaptics() if haptics is None else haptics
        self._rng: RandomSource = random.Random() if rng is None else rng

        self._state = SessionState.CONFIGURING
        self._config: SessionConfig | None = None
        self._sequence: GeneratedSequence | None = None
        self._cursor = 0
        self._wake_held = False

        self._last_answer: str | None = None
        self._last_correct: bool | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> SessionConfig | None:
        return self._config

    @property
    def sequence(self) -> GeneratedSequence | None:
        return self._sequence

    @property
    def tracker(self) -> ScoreTracker:
        return self._tracker

    def start(self, config: SessionConfig | None) -> bool:
        """Begin presenting a fresh sequence.  Returns False if nothing started."""

        if self._state is not SessionState.CONFIGURING:
            return False
        if config is None or not config.is_valid():
            return False
        self._config = config
        self._begin_presenting()
        return True

    def start_from_text(
        self,
        digits_text: str,
        terms_text: str,
        *,
        presentation_style: PresentationStyle,
        pace: float | None = None,
        operation_mode: OperationMode = OperationMode.MIXED,
        voice_id: str | None = None,
        font_size: str = "medium",
    ) -> bool:
        config = parse_session_config(
            digits_text,
            terms_text,
            presentation_style=presentation_style,
            pace=pace,
            operation_mode=operation_mode,
            voice_id=voice_id,
            font_size=font_size,
        )
        return self.start(config)

    def update(self) -> None:
        if self._state is not SessionState.PRESENTING:
            return
        assert self._sequence is not None
        assert self._config is not None

        try:
            while not self._channel.busy():
                if self._state is not SessionState.PRESENTING:
                    return
                if self._cursor >= len(self._sequence.items):
                    self._finish_presenting()
                    return
                items = self._sequence.items
                previous = items[self._cursor - 1] if self._cursor > 0 else None
                self._channel.present(
                    items[self._cursor],
                    index=self._cursor,
                    previous=previous,
                    pacing=self._config.pacing,
                )
                self._cursor += 1
        except Exception:
            logger.exception("Presentation failed; returning to setup")
            self._abort_presenting()

    def cancel(self) -> None:
        """Stop the round and go back to setup.  Safe to call repeatedly."""

        if self._state is SessionState.PRESENTING:
            self._abort_presenting()
        elif self._state is SessionState.AWAITING_ANSWER:
            self._state = SessionState.CONFIGURING
            self._sequence = None

    def submit_answer(self, raw: str) -> bool | None:
        """Grade a typed answer.  Returns None when no answer is expected."""

        if self._state is not SessionState.AWAITING_ANSWER:
            return None
        assert self._sequence is not None
        assert self._config is not None

        value = parse_integer(raw)
        is_correct = value is not None and value == self._sequence.expected_answer

        self._last_answer = str(raw)
        self._last_correct = is_correct
        self._state = SessionState.FEEDBACK

        self._device_call(self._haptics.notify, HapticKind.SUCCESS if is_correct else HapticKind.ERROR)
        self._tracker.record_outcome(is_correct, config_summary=self._config.summary())
        return is_correct

    def next_round(self) -> bool:
        if self._state is not SessionState.FEEDBACK:
            return False
        self._begin_presenting()
        return True

    def return_to_setup(self) -> None:
        if self._state is not SessionState.FEEDBACK:
            return
        self._state = SessionState.CONFIGURING
        self._sequence = None

    def leave(self) -> None:
        """The user left the practice screen: stop everything, reset the score."""

        self.cancel()
        self._state = SessionState.CONFIGURING
        self._sequence = None
        self._tracker.reset()

    def snapshot(self) -> SessionSnapshot:
        seq = self._sequence
        show_result = self._state is SessionState.FEEDBACK
        return SessionSnapshot(
            state=self._state,
            display_text=self._channel.display_text if self._state is SessionState.PRESENTING else None,
            terms_presented=self._cursor,
            term_count=0 if self._config is None else self._config.term_count,
            expected_answer=seq.expected_answer if (show_result and seq is not None) else None,
            last_answer=self._last_answer if show_result else None,
            last_correct=self._last_correct if show_result else None,
            correct=self._tracker.correct,
            total=self._tracker.total,
        )

    def items(self) -> tuple[SequenceItem, ...]:
        return () if self._sequence is None else self._sequence.items

    def _begin_presenting(self) -> None:
        assert self._config is not None
        self._sequence = generate_sequence(
            self._config.digit_count,
            self._config.term_count,
            self._config.operation_mode,
            rng=self._rng,
        )
        self._cursor = 0
        self._last_answer = None
        self._last_correct = None
        self._state = SessionState.PRESENTING
        self._acquire_wake_lock()
        self._device_call(self._haptics.pulse, START_PULSE_INTENSITY)
        logger.debug("Presenting %s", self._config.summary())

    def _finish_presenting(self) -> None:
        self._release_wake_lock()
        self._state = SessionState.AWAITING_ANSWER

    def _abort_presenting(self) -> None:
        try:
            self._channel.cancel()
        except Exception:
            logger.warning("Channel cancel failed", exc_info=True)
        self._release_wake_lock()
        self._state = SessionState.CONFIGURING
        self._sequence = None

    def _acquire_wake_lock(self) -> None:
        if self._wake_held:
            return
        self._wake_held = True
        self._device_call(self._wake_lock.acquire)

    def _release_wake_lock(self) -> None:
        if not self._wake_held:
            return
        self._wake_held = False
        self._device_call(self._wake_lock.release)

    @staticmethod
    def _device_call(fn: Callable[..., object], *args: object) -> None:
        try:
            fn(*args)
        except Exception:
            logger.debug("Device call %s failed", getattr(fn, "__qualname__", fn), exc_info=True)
