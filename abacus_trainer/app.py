"""Pygame UI shell for the Abacus Trainer.

Screens:
- Listening practice (spoken sequences)
- Flash practice (flashed sequences)
- Abacus routines (one-minute timed drill, cumulative 1-100)
- Progress (accuracy per practice type, day streak, recent rounds)

Deterministic sequencing/timing/scoring lives in the core modules; screens
only translate key presses into engine calls and draw engine snapshots.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .abacus_drills import (
    CumulativeDrill,
    CumulativeStatus,
    TimedDrill,
    TimedDrillConfig,
    TimedDrillStatus,
)
from .clock import Clock, RealClock
from .device import Haptics, JoystickRumbleHaptics, ScreenSaverWakeLock, WakeLock
from .persistence import SqliteHistoryStore, compute_streak, default_history_path, summarize_history
from .playback import PlaybackChannel, SpeechChannel, VisualChannel
from .preferences import PreferencesStore, style_for
from .scoring import HistoryStore, PracticeType, ScoreTracker
from .sequence import Operation, OperationMode
from .session import (
    FONT_SIZES,
    SPEECH_PACE_MAX,
    SPEECH_PACE_MIN,
    VISUAL_PACE_MAX_MS,
    VISUAL_PACE_MIN_MS,
    PracticeSession,
    PresentationStyle,
    SessionState,
    clamp_pace,
)
from .speech import SilentSpeechEngine, SpeechEngine, SubprocessSpeechEngine, resolve_voice

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)
GOOD = (150, 230, 170)
BAD = (240, 160, 160)

FLASH_FONT_PX = {"small": 96, "medium": 160, "large": 220}

SPEECH_PACE_STEP = 0.1
VISUAL_PACE_STEP_MS = 50.0
TIMED_DRILL_MAX_DIGITS = 5


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


@dataclass(frozen=True, slots=True)
class Services:
    """Process-wide collaborators shared by all screens."""

    clock: Clock
    speech: SpeechEngine
    wake_lock: WakeLock
    haptics: Haptics
    history: HistoryStore
    preferences: PreferencesStore


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


def _draw_frame(
    surface: pygame.Surface,
    *,
    title: str,
    tag: str,
    footer: str,
    title_font: pygame.font.Font,
    hint_font: pygame.font.Font,
) -> pygame.Rect:
    """Draw the shared panel chrome and return the content area."""

    w, h = surface.get_size()
    surface.fill(BG)

    frame_margin = max(10, min(26, w // 34))
    frame = pygame.Rect(
        frame_margin,
        frame_margin,
        max(260, w - frame_margin * 2),
        max(220, h - frame_margin * 2),
    )
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)

    header_h = max(34, min(52, h // 8))
    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
    pygame.draw.rect(surface, HEADER_BG, header)
    pygame.draw.line(surface, BORDER, (header.x, header.bottom), (header.right, header.bottom), 1)

    tag_surf = hint_font.render(tag, True, TEXT_MUTED)
    surface.blit(tag_surf, (header.x + 12, header.y + (header.h - tag_surf.get_height()) // 2))
    title_surf = title_font.render(title, True, TEXT_MAIN)
    surface.blit(title_surf, title_surf.get_rect(center=(frame.centerx, header.centery)))

    foot = hint_font.render(_fit_label(hint_font, footer, frame.w - 20), True, TEXT_MUTED)
    surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))

    top = header.bottom + max(16, h // 30)
    bottom = frame.bottom - max(44, h // 12)
    return pygame.Rect(frame.x + max(14, w // 44), top, frame.w - max(28, w // 22), max(120, bottom - top))


def _blit_lines(
    surface: pygame.Surface,
    font: pygame.font.Font,
    lines: list[tuple[str, tuple[int, int, int]]],
    *,
    x: int,
    y: int,
    spacing: int = 6,
) -> int:
    for text, color in lines:
        surf = font.render(text, True, color)
        surface.blit(surf, (x, y))
        y += surf.get_height() + spacing
    return y


def _is_confirm(key: int) -> bool:
    return key in (pygame.K_RETURN, pygame.K_KP_ENTER)


def _edit_number_text(text: str, event: pygame.event.Event, *, allow_minus: bool = False, max_len: int = 12) -> str:
    """Apply a KEYDOWN to a numeric text field."""

    if event.key == pygame.K_BACKSPACE:
        return text[:-1]
    ch = getattr(event, "unicode", "") or ""
    if len(ch) == 1 and "0" <= ch <= "9" and len(text) < max_len:
        return text + ch
    if allow_minus and ch == "-" and text == "":
        return "-"
    return text


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            self._handle_key(event.key)
            return

        if event.type == pygame.JOYHATMOTION:
            _, y = event.value
            if y == 1:
                self._move(-1)
            elif y == -1:
                self._move(1)
            return

        if event.type == pygame.JOYBUTTONDOWN:
            # Common mapping: 0 = select, 1 = back/cancel.
            if event.button == 0:
                self._activate()
            elif event.button == 1:
                self._back()

    def _handle_key(self, key: int) -> None:
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        list_rect = _draw_frame(
            surface,
            title=self._title,
            tag="MENU",
            footer="Enter/Space: Select  |  Esc/Backspace: Back  |  D-pad + Button0/1",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        pygame.draw.rect(surface, (6, 13, 92), list_rect)
        pygame.draw.rect(surface, (78, 102, 170), list_rect, 1)

        item_count = max(1, len(self._items))
        gap = max(4, min(10, list_rect.h // max(10, item_count * 3)))
        row_h = max(30, min(44, (list_rect.h - gap * (item_count + 1)) // item_count))
        total_h = row_h * item_count + gap * (item_count - 1)
        y = list_rect.y + max(8, (list_rect.h - total_h) // 2)

        for idx, item in enumerate(self._items):
            row = pygame.Rect(list_rect.x + 12, y, list_rect.w - 24, row_h)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, ACTIVE_BG, row)
                pygame.draw.rect(surface, (120, 142, 196), row, 2)
            else:
                pygame.draw.rect(surface, (9, 20, 106), row)
                pygame.draw.rect(surface, (62, 84, 152), row, 1)

            color = ACTIVE_TEXT if selected else TEXT_MAIN
            label = _fit_label(self._item_font, item.label, row.w - 20)
            text = self._item_font.render(label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap


class PracticeScreen:
    """Setup, playback, answer entry and feedback for one practice type."""

    def __init__(self, app: App, *, practice_type: PracticeType, services: Services) -> None:
        self._app = app
        self._practice_type = practice_type
        self._services = services
        self._style = style_for(practice_type)

        channel: PlaybackChannel
        if self._style is PresentationStyle.SPEECH:
            channel = SpeechChannel(services.clock, services.speech)
        else:
            channel = VisualChannel(services.clock)
        self._session = PracticeSession(
            channel=channel,
            tracker=ScoreTracker(practice_type=practice_type, history=services.history),
            wake_lock=services.wake_lock,
            haptics=services.haptics,
            rng=random.Random(),
        )

        self._setup = services.preferences.setup_for(practice_type)
        self._voices: list[str] = []
        if self._style is PresentationStyle.SPEECH:
            self._voices = services.speech.voices()
        self._fields = ["digits", "terms", "pace", "voice" if self._style is PresentationStyle.SPEECH else "font", "mode", "start"]
        self._field = 0
        self._answer = ""
        self._message = ""

        self._title_font = pygame.font.Font(None, 42)
        self._body_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)
        self._flash_fonts: dict[str, pygame.font.Font] = {}

    @property
    def session(self) -> PracticeSession:
        return self._session

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        state = self._session.state
        if state is SessionState.CONFIGURING:
            self._handle_setup_key(event)
        elif state is SessionState.PRESENTING:
            if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_SPACE):
                self._session.cancel()
        elif state is SessionState.AWAITING_ANSWER:
            if event.key == pygame.K_ESCAPE:
                self._session.cancel()
            elif _is_confirm(event.key):
                if self._session.submit_answer(self._answer) is not None:
                    self._answer = ""
            else:
                self._answer = _edit_number_text(self._answer, event, allow_minus=True)
        elif state is SessionState.FEEDBACK:
            if _is_confirm(event.key) or event.key == pygame.K_SPACE:
                self._session.next_round()
            elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._session.return_to_setup()

    def _handle_setup_key(self, event: pygame.event.Event) -> None:
        key = event.key
        field = self._fields[self._field]
        if key == pygame.K_ESCAPE:
            self._session.leave()
            self._app.pop()
        elif key in (pygame.K_UP, pygame.K_DOWN):
            delta = -1 if key == pygame.K_UP else 1
            self._field = (self._field + delta) % len(self._fields)
        elif key in (pygame.K_LEFT, pygame.K_RIGHT):
            self._adjust(field, -1 if key == pygame.K_LEFT else 1)
        elif _is_confirm(key):
            self._start()
        elif field in ("digits", "terms"):
            attr = "digits_text" if field == "digits" else "terms_text"
            text = _edit_number_text(getattr(self._setup, attr), event, max_len=2)
            self._update_setup(**{attr: text})

    def _adjust(self, field: str, delta: int) -> None:
        setup = self._setup
        if field == "pace":
            step = SPEECH_PACE_STEP if self._style is PresentationStyle.SPEECH else VISUAL_PACE_STEP_MS
            pace = round(setup.pace + delta * step, 2)
            self._update_setup(pace=clamp_pace(self._style, pace))
        elif field == "voice":
            count = len(self._voices)
            if count:
                self._update_setup(voice_index=(setup.voice_index + delta) % count)
        elif field == "font":
            idx = FONT_SIZES.index(setup.font_size) if setup.font_size in FONT_SIZES else 1
            self._update_setup(font_size=FONT_SIZES[(idx + delta) % len(FONT_SIZES)])
        elif field == "mode":
            self._update_setup(addition_only=not setup.addition_only)

    def _update_setup(self, **changes: object) -> None:
        self._setup = self._services.preferences.update_setup(self._practice_type, **changes)

    def _start(self) -> None:
        setup = self._setup
        voice_id = None
        if self._style is PresentationStyle.SPEECH:
            voice_id = resolve_voice(self._voices, setup.voice_index)
        started = self._session.start_from_text(
            setup.digits_text,
            setup.terms_text,
            presentation_style=self._style,
            pace=setup.pace,
            operation_mode=OperationMode.ADDITION_ONLY if setup.addition_only else OperationMode.MIXED,
            voice_id=voice_id,
            font_size=setup.font_size,
        )
        self._message = "" if started else "Enter at least 1 digit and 2 terms."
        self._answer = ""

    def render(self, surface: pygame.Surface) -> None:
        if self._style is PresentationStyle.SPEECH and not self._voices:
            self._voices = self._services.speech.voices()
        self._session.update()
        snap = self._session.snapshot()
        title = "Listening Practice" if self._style is PresentationStyle.SPEECH else "Flash Practice"
        footers = {
            SessionState.CONFIGURING: "Up/Down: Field  |  Left/Right: Adjust  |  Enter: Start  |  Esc: Back",
            SessionState.PRESENTING: "Esc/Space: Stop",
            SessionState.AWAITING_ANSWER: "Type the total  |  Enter: Submit  |  Esc: Stop",
            SessionState.FEEDBACK: "Enter: Next  |  Esc: Setup",
        }
        content = _draw_frame(
            surface,
            title=title,
            tag=f"SCORE {snap.correct}/{snap.total}",
            footer=footers[snap.state],
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        if snap.state is SessionState.CONFIGURING:
            self._render_setup(surface, content)
        elif snap.state is SessionState.PRESENTING:
            self._render_presenting(surface, content, snap.display_text)
        elif snap.state is SessionState.AWAITING_ANSWER:
            lines = [("What is the total?", TEXT_MAIN), (self._answer or "_", TEXT_MAIN)]
            _blit_lines(surface, self._title_font, lines, x=content.x + 20, y=content.y + 40, spacing=20)
        else:
            good = bool(snap.last_correct)
            lines = [
                ("Correct!" if good else "Incorrect", GOOD if good else BAD),
                (f"Answer: {snap.expected_answer}", TEXT_MAIN),
                (f"You entered: {snap.last_answer or '-'}", TEXT_MUTED),
            ]
            _blit_lines(surface, self._title_font, lines, x=content.x + 20, y=content.y + 40, spacing=20)

    def _render_setup(self, surface: pygame.Surface, content: pygame.Rect) -> None:
        setup = self._setup
        if self._style is PresentationStyle.SPEECH:
            pace = f"{setup.pace:.1f}x  ({SPEECH_PACE_MIN:.1f}-{SPEECH_PACE_MAX:.1f})"
            if self._services.speech.voices_ready():
                voice = resolve_voice(self._voices, setup.voice_index) or "Default"
            else:
                voice = "loading..."
            extra = f"Voice: {voice}"
        else:
            pace = f"{int(setup.pace)} ms  ({int(VISUAL_PACE_MIN_MS)}-{int(VISUAL_PACE_MAX_MS)})"
            extra = f"Font size: {setup.font_size}"
        labels = [
            f"Digits: {setup.digits_text or '_'}",
            f"Terms: {setup.terms_text or '_'}",
            f"Speed: {pace}",
            extra,
            f"Operations: {'addition only' if setup.addition_only else 'mixed'}",
            "Start",
        ]
        lines = [(("> " if i == self._field else "  ") + label, ACTIVE_BG if i == self._field else TEXT_MUTED) for i, label in enumerate(labels)]
        y = _blit_lines(surface, self._body_font, lines, x=content.x + 20, y=content.y + 10, spacing=10)
        if self._message:
            _blit_lines(surface, self._hint_font, [(self._message, BAD)], x=content.x + 20, y=y + 10)

    def _render_presenting(self, surface: pygame.Surface, content: pygame.Rect, display: str | None) -> None:
        if self._style is PresentationStyle.SPEECH:
            text = self._title_font.render("Listen carefully...", True, TEXT_MAIN)
            surface.blit(text, text.get_rect(center=content.center))
            return
        if display is None:
            return
        size = self._setup.font_size if self._setup.font_size in FLASH_FONT_PX else "medium"
        font = self._flash_fonts.get(size)
        if font is None:
            font = pygame.font.Font(None, FLASH_FONT_PX[size])
            self._flash_fonts[size] = font
        text = font.render(display, True, TEXT_MAIN)
        surface.blit(text, text.get_rect(center=content.center))


class TimedDrillScreen:
    def __init__(self, app: App, *, services: Services) -> None:
        self._app = app
        self._services = services
        self._tracker = ScoreTracker(practice_type=PracticeType.TIMED_DRILL, history=services.history)
        self._operation = Operation.ADD
        self._digits = 1
        self._drill: TimedDrill | None = None
        self._input = ""
        self._message = ""
        self._title_font = pygame.font.Font(None, 42)
        self._body_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        drill = self._drill
        if event.key == pygame.K_ESCAPE:
            if drill is not None:
                drill.cancel()
                self._drill = None
            else:
                self._tracker.reset()
                self._app.pop()
            return

        if drill is None:
            if event.key in (pygame.K_LEFT, pygame.K_RIGHT):
                self._operation = Operation.SUBTRACT if self._operation is Operation.ADD else Operation.ADD
            elif event.key == pygame.K_UP:
                self._digits = min(TIMED_DRILL_MAX_DIGITS, self._digits + 1)
            elif event.key == pygame.K_DOWN:
                self._digits = max(1, self._digits - 1)
            elif _is_confirm(event.key):
                self._drill = TimedDrill(
                    TimedDrillConfig(operation=self._operation, digit_count=self._digits),
                    clock=self._services.clock,
                    tracker=self._tracker,
                    wake_lock=self._services.wake_lock,
                    haptics=self._services.haptics,
                )
                self._drill.start()
                self._input = ""
                self._message = ""
            return

        if drill.status is TimedDrillStatus.INPUT:
            if _is_confirm(event.key):
                if drill.submit_end_value(self._input) is None:
                    self._message = "That number doesn't fit the sequence! Try again."
            else:
                self._input = _edit_number_text(self._input, event, allow_minus=True, max_len=9)
        elif drill.status is TimedDrillStatus.RESULT and _is_confirm(event.key):
            self._drill = None

    def render(self, surface: pygame.Surface) -> None:
        drill = self._drill
        if drill is not None:
            drill.update()
        content = _draw_frame(
            surface,
            title="Timed Drill",
            tag="ABACUS",
            footer="Left/Right: +/-  |  Up/Down: Digits  |  Enter: Start/Submit  |  Esc: Back",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        x, y = content.x + 20, content.y + 20
        if drill is None:
            verb = "Add" if self._operation is Operation.ADD else "Subtract"
            lines = [(f"Operation: {verb}", TEXT_MAIN), (f"Digits: {self._digits}", TEXT_MAIN), ("Press Enter to start the 60s drill", TEXT_MUTED)]
            _blit_lines(surface, self._body_font, lines, x=x, y=y, spacing=14)
            return

        plan = drill.plan
        assert plan is not None
        verb = "Add" if plan.operation is Operation.ADD else "Subtract"
        if drill.status is TimedDrillStatus.RUNNING:
            lines = [
                (f"{int(drill.time_remaining_s() + 0.999)}s", TEXT_MAIN),
                (f"Start at {plan.start_number}", TEXT_MAIN),
                (f"{verb} {plan.increment} repeatedly", TEXT_MAIN),
            ]
            _blit_lines(surface, self._title_font, lines, x=x, y=y, spacing=18)
        elif drill.status is TimedDrillStatus.INPUT:
            lines = [("Time's up! Enter the number on your abacus:", TEXT_MAIN), (self._input or "_", TEXT_MAIN)]
            y = _blit_lines(surface, self._title_font, lines, x=x, y=y, spacing=18)
            if self._message:
                _blit_lines(surface, self._hint_font, [(self._message, BAD)], x=x, y=y + 10)
        else:
            result = drill.result
            assert result is not None
            lines = [("You performed approximately", TEXT_MAIN), (f"{result.repetitions} operations", GOOD), ("Enter: New drill", TEXT_MUTED)]
            _blit_lines(surface, self._title_font, lines, x=x, y=y, spacing=18)


class CumulativeScreen:
    def __init__(self, app: App, *, services: Services) -> None:
        self._app = app
        self._tracker = ScoreTracker(practice_type=PracticeType.CUMULATIVE, history=services.history)
        self._drill = CumulativeDrill(tracker=self._tracker, haptics=services.haptics)
        self._input = ""
        self._title_font = pygame.font.Font(None, 42)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_ESCAPE:
            self._tracker.reset()
            self._app.pop()
            return
        status = self._drill.status
        if status is CumulativeStatus.PLAYING:
            if _is_confirm(event.key):
                self._drill.submit(self._input)
            else:
                self._input = _edit_number_text(self._input, event, max_len=6)
        elif status is CumulativeStatus.FEEDBACK and _is_confirm(event.key):
            self._drill.next()
            self._input = ""
        elif status is CumulativeStatus.FINISHED and _is_confirm(event.key):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        drill = self._drill
        content = _draw_frame(
            surface,
            title="Cumulative 1-100",
            tag=f"CHECKPOINT {drill.checkpoint}/10",
            footer="Type the sum  |  Enter: Submit/Next  |  Esc: Back",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        x, y = content.x + 20, content.y + 20
        if drill.status is CumulativeStatus.FINISHED:
            lines = [("All checkpoints complete!", GOOD), ("1 + 2 + ... + 100 = 5050", TEXT_MAIN)]
        elif drill.status is CumulativeStatus.PLAYING:
            lines = [(f"Sum of 1 to {drill.target}?", TEXT_MAIN), (self._input or "_", TEXT_MAIN)]
        elif drill.last_correct:
            lines = [("Correct!", GOOD), ("Enter: Next checkpoint", TEXT_MUTED)]
        else:
            lines = [("Incorrect", BAD), (f"Sum of 1 to {drill.target} is {drill.expected}", TEXT_MAIN), ("Enter: Try again", TEXT_MUTED)]
        _blit_lines(surface, self._title_font, lines, x=x, y=y, spacing=18)


class ProgressScreen:
    _recent_rows = 8

    def __init__(self, app: App, *, services: Services) -> None:
        self._app = app
        self._history = services.history
        self._records = self._history.query_recent()
        self._title_font = pygame.font.Font(None, 42)
        self._body_font = pygame.font.Font(None, 28)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
        elif event.key == pygame.K_c:
            self._history.clear()
            self._records = self._history.query_recent()

    def render(self, surface: pygame.Surface) -> None:
        records = self._records
        summary = summarize_history(records)
        streak = compute_streak(records)
        content = _draw_frame(
            surface,
            title="Your Progress",
            tag=f"STREAK {streak}",
            footer="C: Clear history  |  Esc: Back",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        lines: list[tuple[str, tuple[int, int, int]]] = [(f"{streak} day streak  |  {summary.correct}/{summary.total} correct", TEXT_MAIN)]
        for practice_type, accuracy in summary.accuracy_by_type.items():
            shown = "-" if accuracy is None else f"{accuracy}%"
            lines.append((f"{practice_type.value.replace('_', ' ').title()}: {shown}", TEXT_MUTED))
        if not records:
            lines.append(("No practice sessions yet.", TEXT_MUTED))
        for record in records[: self._recent_rows]:
            stamp = record.timestamp.astimezone().strftime("%d %b %H:%M")
            mark = "ok " if record.is_correct else "x  "
            lines.append((f"{mark}{stamp}  {record.practice_type.value}  {record.config_summary}", GOOD if record.is_correct else BAD))
        _blit_lines(surface, self._body_font, lines, x=content.x + 20, y=content.y + 6, spacing=4)


def _init_joysticks() -> None:
    # Safe on platforms with no joystick support.
    try:
        count = pygame.joystick.get_count()
    except pygame.error:
        return

    for i in range(count):
        try:
            js = pygame.joystick.Joystick(i)
            js.init()
        except pygame.error:
            continue


def _default_speech_engine(clock: Clock) -> SpeechEngine:
    engine = SubprocessSpeechEngine()
    if engine.enabled:
        logger.info("Using speech backend %s", engine.backend)
        return engine
    return SilentSpeechEngine(clock)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    history: HistoryStore | None = None,
    preferences: PreferencesStore | None = None,
) -> int:
    pygame.init()
    _init_joysticks()

    pygame.display.set_caption("Abacus Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    real_clock = RealClock()
    services = Services(
        clock=real_clock,
        speech=_default_speech_engine(real_clock),
        wake_lock=ScreenSaverWakeLock(),
        haptics=JoystickRumbleHaptics(),
        history=SqliteHistoryStore(default_history_path()) if history is None else history,
        preferences=PreferencesStore(PreferencesStore.default_path()) if preferences is None else preferences,
    )

    abacus_menu = MenuScreen(
        app,
        "Abacus",
        [
            MenuItem("Timed Drill", lambda: app.push(TimedDrillScreen(app, services=services))),
            MenuItem("Cumulative 1-100", lambda: app.push(CumulativeScreen(app, services=services))),
            MenuItem("Back", app.pop),
        ],
    )

    main_items = [
        MenuItem("Listening", lambda: app.push(PracticeScreen(app, practice_type=PracticeType.LISTENING, services=services))),
        MenuItem("Flash", lambda: app.push(PracticeScreen(app, practice_type=PracticeType.FLASH, services=services))),
        MenuItem("Abacus", lambda: app.push(abacus_menu)),
        MenuItem("Progress", lambda: app.push(ProgressScreen(app, services=services))),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Main Menu", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        services.speech.stop()
        services.wake_lock.release()
        pygame.quit()

    return 0
