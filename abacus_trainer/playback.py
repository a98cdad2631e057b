"""Presentation channels for practice sequences.

A channel presents one term at a time.  Each term becomes a short timeline of
steps (show, blank, speak, pause) that the channel works through as it is
polled; ``busy()`` stays true until the last step of the term has elapsed.
Nothing here sleeps: time comes from the injected ``Clock`` and progress is
made only when the owner polls, which keeps the session loop cooperative and
the channels testable with a fake clock.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .clock import Clock
from .sequence import Operation, SequenceItem, render_term
from .speech import SpeechEngine

logger = logging.getLogger(__name__)

VISUAL_WARM_UP_S = 0.8
VISUAL_GAP_S = 0.15

SPEECH_GAP_S = 0.6
SPEECH_OPERATOR_GAP_S = 1.0
SPEECH_FALLBACK_S = 0.25
SPEECH_MAX_UTTERANCE_S = 12.0


@dataclass(frozen=True, slots=True)
class Pacing:
    """Per-session presentation settings.

    ``pace`` is a display duration in milliseconds for the visual channel and
    a speech-rate multiplier for the speech channel.
    """

    pace: float
    voice_id: str | None = None


class PlaybackChannel(Protocol):
    @property
    def display_text(self) -> str | None: ...

    def present(self, item: SequenceItem, *, index: int, previous: SequenceItem | None, pacing: Pacing) -> None: ...
    def busy(self) -> bool: ...
    def cancel(self) -> None: ...


class StepKind(str, Enum):
    SHOW = "show"
    BLANK = "blank"
    SPEAK = "speak"
    PAUSE = "pause"


@dataclass(frozen=True, slots=True)
class Step:
    kind: StepKind
    text: str = ""
    duration_s: float = 0.0


class _TimelineChannel:
    """Runs queued steps strictly one after another against a clock."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._steps: deque[Step] = deque()
        self._active: Step | None = None
        self._active_until: float | None = None
        self._display: str | None = None

    @property
    def display_text(self) -> str | None:
        return self._display

    def busy(self) -> bool:
        self._advance()
        return self._active is not None or bool(self._steps)

    def cancel(self) -> None:
        self._steps.clear()
        self._active = None
        self._active_until = None
        self._display = None

    def _enqueue(self, steps: list[Step]) -> None:
        if self._active is not None or self._steps:
            raise RuntimeError("previous term is still being presented")
        self._steps.extend(steps)
        self._advance()

    def _advance(self) -> None:
        while True:
            now = self._clock.now()
            if self._active is not None:
                if not self._step_done(self._active, now):
                    return
                self._active = None
                self._active_until = None
            if not self._steps:
                return
            step = self._steps.popleft()
            self._active = step
            self._start_step(step, now)

    def _start_step(self, step: Step, now: float) -> None:
        if step.kind is StepKind.SHOW:
            self._display = step.text
        elif step.kind is StepKind.BLANK:
            self._display = None
        self._active_until = now + step.duration_s

    def _step_done(self, step: Step, now: float) -> bool:
        assert self._active_until is not None
        return now >= self._active_until


class VisualChannel(_TimelineChannel):
    """Flash-card presentation: show the signed term, then blank briefly."""

    def present(self, item: SequenceItem, *, index: int, previous: SequenceItem | None, pacing: Pacing) -> None:
        _ = previous
        steps: list[Step] = []
        if index == 0:
            steps.append(Step(StepKind.BLANK, duration_s=VISUAL_WARM_UP_S))
        steps.append(Step(StepKind.SHOW, text=render_term(item), duration_s=max(0.0, float(pacing.pace)) / 1000.0))
        steps.append(Step(StepKind.BLANK, duration_s=VISUAL_GAP_S))
        self._enqueue(steps)


class SpeechChannel(_TimelineChannel):
    """Spoken presentation through a speech engine.

    Subtractions are announced with "Minus"; "Plus" is only said when the
    sign flips back from a subtraction.  Consecutive additions are separated
    by silence alone.  Gaps shrink as the speech rate grows.
    """

    def __init__(self, clock: Clock, engine: SpeechEngine) -> None:
        super().__init__(clock)
        self._engine = engine
        self._pacing = Pacing(pace=1.0)
        self._fallback_until: float | None = None
        self._last_spoken: str | None = None

    @property
    def last_spoken(self) -> str | None:
        return self._last_spoken

    def present(self, item: SequenceItem, *, index: int, previous: SequenceItem | None, pacing: Pacing) -> None:
        self._pacing = pacing
        rate = max(0.1, float(pacing.pace))
        steps: list[Step] = []
        if index > 0:
            if item.operation is Operation.SUBTRACT:
                steps.append(Step(StepKind.SPEAK, text="Minus"))
            elif previous is not None and previous.operation is Operation.SUBTRACT:
                steps.append(Step(StepKind.SPEAK, text="Plus"))
            else:
                steps.append(Step(StepKind.PAUSE, duration_s=SPEECH_OPERATOR_GAP_S / rate))
        steps.append(Step(StepKind.SPEAK, text=verbalize(item.value)))
        steps.append(Step(StepKind.PAUSE, duration_s=SPEECH_GAP_S / rate))
        self._enqueue(steps)

    def cancel(self) -> None:
        super().cancel()
        self._fallback_until = None
        try:
            self._engine.stop()
        except Exception:
            logger.debug("Speech engine stop failed", exc_info=True)

    def _start_step(self, step: Step, now: float) -> None:
        if step.kind is not StepKind.SPEAK:
            super()._start_step(step, now)
            return
        self._fallback_until = None
        self._active_until = now + SPEECH_MAX_UTTERANCE_S
        self._last_spoken = step.text
        try:
            self._engine.speak(step.text, rate=self._pacing.pace, voice_id=self._pacing.voice_id)
        except Exception:
            logger.debug("Speech engine failed on %r; using fallback delay", step.text, exc_info=True)
            self._fallback_until = now + SPEECH_FALLBACK_S

    def _step_done(self, step: Step, now: float) -> bool:
        if step.kind is not StepKind.SPEAK:
            return super()._step_done(step, now)
        if self._fallback_until is not None:
            return now >= self._fallback_until
        assert self._active_until is not None
        if now >= self._active_until:
            logger.debug("Utterance %r exceeded %.1fs; cutting it off", step.text, SPEECH_MAX_UTTERANCE_S)
            self._stop_engine_quietly()
            return True
        try:
            return not self._engine.is_speaking()
        except Exception:
            logger.debug("Speech engine poll failed; using fallback delay", exc_info=True)
            self._fallback_until = now + SPEECH_FALLBACK_S
            return False

    def _stop_engine_quietly(self) -> None:
        try:
            self._engine.stop()
        except Exception:
            logger.debug("Speech engine stop failed", exc_info=True)


_ONES = (
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine",
    "ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen",
    "seventeen", "eighteen", "nineteen",
)
_TENS = ("", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety")
_SCALES = ((10**12, "trillion"), (10**9, "billion"), (10**6, "million"), (1000, "thousand"))


def verbalize(n: int) -> str:
    """Spell out a non-negative integer in English words."""

    if n < 0:
        return "minus " + verbalize(-n)
    if n < 20:
        return _ONES[n]
    if n < 100:
        tens, ones = divmod(n, 10)
        return _TENS[tens] if ones == 0 else f"{_TENS[tens]}-{_ONES[ones]}"
    if n < 1000:
        hundreds, rest = divmod(n, 100)
        head = f"{_ONES[hundreds]} hundred"
        return head if rest == 0 else f"{head} {verbalize(rest)}"
    for scale, name in _SCALES:
        if n >= scale:
            head, rest = divmod(n, scale)
            words = f"{verbalize(head)} {name}"
            return words if rest == 0 else f"{words} {verbalize(rest)}"
    raise AssertionError("unreachable")
