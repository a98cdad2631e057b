from __future__ import annotations

from dataclasses import dataclass

import pytest

from abacus_trainer import speech
from abacus_trainer.speech import (
    SilentSpeechEngine,
    SpeechEngineError,
    SubprocessSpeechEngine,
    parse_voice_listing,
    resolve_voice,
    speech_disabled,
    words_per_minute,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def test_disabled_engine_refuses_to_speak() -> None:
    engine = SubprocessSpeechEngine(env={"ABACUS_DISABLE_TTS": "1"})
    assert engine.enabled is False
    assert engine.voices() == []
    assert engine.is_speaking() is False
    with pytest.raises(SpeechEngineError):
        engine.speak("seven")
    engine.stop()


def test_dummy_audio_driver_disables_speech() -> None:
    assert speech_disabled({"SDL_AUDIODRIVER": "dummy"}) is True
    assert speech_disabled({"ABACUS_DISABLE_TTS": "1"}) is True
    assert speech_disabled({}) is False
    assert SubprocessSpeechEngine(env={"SDL_AUDIODRIVER": "dummy"}).backend is None


def test_blank_text_is_ignored_even_without_backend() -> None:
    engine = SubprocessSpeechEngine(env={"ABACUS_DISABLE_TTS": "1"})
    engine.speak("   ")
    assert engine.is_speaking() is False


def test_words_per_minute_scales_with_rate_and_has_a_floor() -> None:
    assert words_per_minute(1.0) == 176
    assert words_per_minute(2.0) == 352
    assert words_per_minute(0.5) == 88
    assert words_per_minute(0.01) == 40


def test_resolve_voice_tolerates_missing_voices() -> None:
    voices = ["alex", "daniel"]
    assert resolve_voice(voices, 1) == "daniel"
    assert resolve_voice(voices, 5) is None
    assert resolve_voice(voices, None) is None
    assert resolve_voice([], 0) is None


def test_parse_espeak_voice_listing() -> None:
    out = (
        "Pty Language Age/Gender VoiceName          File          Other Languages\n"
        " 5  af             M  afrikaans            other/af\n"
        " 5  en-gb          M  default              default\n"
    )
    assert parse_voice_listing("espeak", out) == ["af", "en-gb"]


def test_parse_say_voice_listing() -> None:
    out = (
        "Alex                en_US    # Most people recognize me by my voice.\n"
        "Good News           en_US    # We have got the news.\n"
        "garbage line\n"
    )
    assert parse_voice_listing("say", out) == ["Alex", "Good News"]


def test_parse_plain_voice_listing() -> None:
    assert parse_voice_listing("powershell", "Microsoft David\n\n Microsoft Zira \n") == [
        "Microsoft David",
        "Microsoft Zira",
    ]


def test_silent_engine_keeps_utterance_timing() -> None:
    clock = FakeClock()
    engine = SilentSpeechEngine(clock)

    engine.speak("three hundred five", rate=1.0)
    assert engine.is_speaking() is True

    # Three words at 176 wpm is just over a second.
    clock.advance(1.0)
    assert engine.is_speaking() is True
    clock.advance(0.05)
    assert engine.is_speaking() is False

    engine.speak("seven", rate=2.0)
    engine.stop()
    assert engine.is_speaking() is False
    assert engine.spoken == ["three hundred five", "seven"]
    assert engine.voices() == []


ESPEAK_VOICES = (
    "Pty Language Age/Gender VoiceName          File          Other Languages\n"
    " 5  en-gb          M  default              default\n"
    " 5  fr-fr          M  french               roa/fr\n"
)


class FakeListingProcess:
    """Stands in for a voice listing subprocess writing to its stdout file."""

    outputs: list[str] = []
    finished = True
    launched: list[list[str]] = []
    terminated = 0

    def __init__(self, cmd: list[str], *, stdout, stderr) -> None:
        type(self).launched.append(list(cmd))
        stdout.write(type(self).outputs.pop(0).encode("utf-8"))

    def poll(self) -> int | None:
        return 0 if type(self).finished else None

    def terminate(self) -> None:
        type(self).terminated += 1

    def wait(self, timeout: float | None = None) -> int:
        return 0


@pytest.fixture
def espeak_engine(monkeypatch: pytest.MonkeyPatch) -> tuple[SubprocessSpeechEngine, FakeClock]:
    FakeListingProcess.outputs = []
    FakeListingProcess.finished = True
    FakeListingProcess.launched = []
    FakeListingProcess.terminated = 0
    monkeypatch.setattr(SubprocessSpeechEngine, "_backend_available", staticmethod(lambda name: name == "espeak"))
    monkeypatch.setattr(speech.subprocess, "Popen", FakeListingProcess)

    clock = FakeClock()
    engine = SubprocessSpeechEngine(env={"ABACUS_TTS_BACKEND": "espeak"}, clock=clock)
    assert engine.backend == "espeak"
    return engine, clock


def test_voice_list_loads_lazily_retries_when_empty_and_is_cached(espeak_engine) -> None:
    engine, clock = espeak_engine
    FakeListingProcess.outputs = ["", ESPEAK_VOICES]
    assert FakeListingProcess.launched == []

    assert engine.voices() == []
    assert engine.voices_ready() is False
    assert len(FakeListingProcess.launched) == 1

    # Retries wait a moment instead of relaunching every frame.
    assert engine.voices() == []
    assert len(FakeListingProcess.launched) == 1

    clock.advance(2.5)
    assert engine.voices() == ["en-gb", "fr-fr"]
    assert engine.voices_ready() is True
    assert FakeListingProcess.launched[-1] == ["espeak", "--voices"]

    clock.advance(60.0)
    assert engine.voices() == ["en-gb", "fr-fr"]
    assert len(FakeListingProcess.launched) == 2


def test_slow_voice_listing_never_blocks_and_times_out(espeak_engine) -> None:
    engine, clock = espeak_engine
    FakeListingProcess.outputs = ["", ESPEAK_VOICES]
    FakeListingProcess.finished = False

    assert engine.voices() == []
    clock.advance(1.0)
    assert engine.voices() == []
    assert len(FakeListingProcess.launched) == 1
    assert FakeListingProcess.terminated == 0

    clock.advance(5.0)
    assert engine.voices() == []
    assert FakeListingProcess.terminated == 1

    FakeListingProcess.finished = True
    clock.advance(2.5)
    assert engine.voices() == ["en-gb", "fr-fr"]
    assert len(FakeListingProcess.launched) == 2
