"""Device side effects: keep-awake and haptic feedback.

Both are best-effort.  Callers in the practice core additionally guard every
call, so a missing display or controller only degrades feedback.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol

import pygame

logger = logging.getLogger(__name__)


class HapticKind(StrEnum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class WakeLock(Protocol):
    def acquire(self) -> None: ...
    def release(self) -> None: ...


class Haptics(Protocol):
    def pulse(self, intensity: float) -> None: ...
    def notify(self, kind: HapticKind) -> None: ...


class NullWakeLock:
    def acquire(self) -> None:
        return

    def release(self) -> None:
        return


class NullHaptics:
    def pulse(self, intensity: float) -> None:
        return

    def notify(self, kind: HapticKind) -> None:
        return


class ScreenSaverWakeLock:
    """Keeps the display awake by suppressing the screensaver while held."""

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        if self._held:
            return
        self._held = True
        self._set_allow_screensaver(False)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self._set_allow_screensaver(True)

    @staticmethod
    def _set_allow_screensaver(allow: bool) -> None:
        try:
            pygame.display.set_allow_screensaver(allow)
        except pygame.error:
            logger.debug("Screensaver control unavailable", exc_info=True)


# (low, high, duration_ms) rumble bursts per notification kind.
_NOTIFY_PATTERNS: dict[HapticKind, tuple[float, float, int]] = {
    HapticKind.SUCCESS: (0.25, 0.55, 120),
    HapticKind.WARNING: (0.55, 0.35, 220),
    HapticKind.ERROR: (0.85, 0.85, 320),
}


def _iter_connected_joysticks() -> list[pygame.joystick.Joystick]:
    joysticks: list[pygame.joystick.Joystick] = []
    try:
        count = int(pygame.joystick.get_count())
    except pygame.error:
        return joysticks
    for idx in range(count):
        try:
            js = pygame.joystick.Joystick(idx)
            if not js.get_init():
                js.init()
            joysticks.append(js)
        except pygame.error:
            continue
    return joysticks


class JoystickRumbleHaptics:
    """Haptic feedback through the rumble motors of connected controllers."""

    pulse_duration_ms = 40

    def pulse(self, intensity: float) -> None:
        level = max(0.0, min(1.0, float(intensity)))
        self._rumble(level, level, self.pulse_duration_ms)

    def notify(self, kind: HapticKind) -> None:
        low, high, duration_ms = _NOTIFY_PATTERNS[HapticKind(kind)]
        self._rumble(low, high, duration_ms)

    @staticmethod
    def _rumble(low: float, high: float, duration_ms: int) -> None:
        for js in _iter_connected_joysticks():
            try:
                js.rumble(low, high, duration_ms)
            except pygame.error:
                logger.debug("Rumble failed on %s", js.get_name(), exc_info=True)
