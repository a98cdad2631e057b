"""Speech synthesis collaborators used by the listening practice.

The practice core only needs to start an utterance, poll whether it is still
playing and stop it.  ``SubprocessSpeechEngine`` keeps synthesis out of
process so a crashing TTS backend cannot take the trainer down with it.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import re
import shutil
import subprocess
import sys
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol

from .clock import Clock, RealClock

logger = logging.getLogger(__name__)

DISABLE_TTS_ENV = "ABACUS_DISABLE_TTS"
TTS_BACKEND_ENV = "ABACUS_TTS_BACKEND"

BASE_WORDS_PER_MINUTE = 176

_SUPPORTED_BACKENDS = ("pyttsx3-subprocess", "say", "powershell", "espeak")

_PYTTSX3_SPEAK_SCRIPT = (
    "import sys\n"
    "txt, wpm, voice = sys.argv[1], int(sys.argv[2]), sys.argv[3]\n"
    "import pyttsx3\n"
    "e=pyttsx3.init()\n"
    "e.setProperty('rate', wpm)\n"
    "e.setProperty('volume', 0.95)\n"
    "if voice:\n"
    "    e.setProperty('voice', voice)\n"
    "e.say(txt)\n"
    "e.runAndWait()\n"
)

_PYTTSX3_VOICES_SCRIPT = (
    "import pyttsx3\n"
    "for v in pyttsx3.init().getProperty('voices'):\n"
    "    print(v.id)\n"
)

_POWERSHELL_SPEAK_SCRIPT = (
    "Add-Type -AssemblyName System.Speech; "
    "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
    "$s.Rate=[int]$args[1]; "
    "if ($args.Length -gt 2 -and $args[2]) { $s.SelectVoice($args[2]) }; "
    "$s.Speak($args[0]);"
)

_POWERSHELL_VOICES_SCRIPT = (
    "Add-Type -AssemblyName System.Speech; "
    "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
    "$s.GetInstalledVoices() | ForEach-Object { $_.VoiceInfo.Name }"
)

_SAY_VOICE_LINE = re.compile(r"^(?P<name>.+?)\s{2,}\S+\s+#")


class SpeechEngineError(RuntimeError):
    """Raised when an utterance cannot be started."""


class SpeechEngine(Protocol):
    def speak(self, text: str, *, rate: float = 1.0, voice_id: str | None = None) -> None: ...
    def is_speaking(self) -> bool: ...
    def stop(self) -> None: ...
    def voices(self) -> list[str]: ...
    def voices_ready(self) -> bool: ...


def words_per_minute(rate: float) -> int:
    return max(40, int(round(BASE_WORDS_PER_MINUTE * float(rate))))


def resolve_voice(voices: list[str], index: int | None) -> str | None:
    """Map a stored voice index onto the currently available voices.

    Voice lists load lazily and may still be empty, in which case the engine
    default is used.
    """

    if index is None or not voices:
        return None
    if 0 <= index < len(voices):
        return voices[index]
    return None


def speech_disabled(env: Mapping[str, str]) -> bool:
    if env.get(DISABLE_TTS_ENV, "0") == "1":
        return True
    # Keep automated/headless runs silent and stable.
    return env.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy"


class SilentSpeechEngine:
    """Engine that produces no sound but keeps utterance timing.

    Each utterance lasts as long as it would take to say at the requested
    rate, so silent and headless runs keep the same rhythm as spoken ones.
    The spoken texts are kept for captions.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._speaking_until: float | None = None
        self.spoken: list[str] = []

    def speak(self, text: str, *, rate: float = 1.0, voice_id: str | None = None) -> None:
        _ = voice_id
        words = max(1, len(str(text).split()))
        duration_s = 60.0 * words / float(words_per_minute(rate))
        self.spoken.append(str(text))
        self._speaking_until = self._clock.now() + duration_s

    def is_speaking(self) -> bool:
        if self._speaking_until is None:
            return False
        if self._clock.now() >= self._speaking_until:
            self._speaking_until = None
            return False
        return True

    def stop(self) -> None:
        self._speaking_until = None

    def voices(self) -> list[str]:
        return []

    def voices_ready(self) -> bool:
        return True


class SubprocessSpeechEngine:
    """Best-effort offline TTS via isolated subprocesses.

    One utterance plays at a time; starting a new one stops the previous one.
    A backend that fails to launch is dropped and the next one is tried.
    """

    _voice_list_timeout_s = 5.0
    _voice_retry_s = 2.0

    def __init__(self, *, env: Mapping[str, str] | None = None, clock: Clock | None = None) -> None:
        self._env = os.environ if env is None else env
        self._clock: Clock = RealClock() if clock is None else clock
        self._backends: list[str] = []
        self._backend: str | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None
        self._voices: list[str] = []
        self._voice_job: _VoiceListing | None = None
        self._voice_retry_at: float | None = None

        if speech_disabled(self._env):
            return

        self._backends = self._resolve_backends(self._env)
        self._backend = self._backends[0] if self._backends else None
        if self._backend is None:
            logger.info("No speech backend available; listening practice will be silent")

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> str | None:
        return self._backend

    def speak(self, text: str, *, rate: float = 1.0, voice_id: str | None = None) -> None:
        phrase = " ".join(str(text).strip().split())
        if phrase == "":
            return
        self.stop()

        while self._backend is not None:
            proc = self._launch_process(phrase, rate=rate, voice_id=voice_id)
            if proc is not None:
                self._active_proc = proc
                return
            self._drop_current_backend()

        raise SpeechEngineError("no speech backend available")

    def is_speaking(self) -> bool:
        proc = self._active_proc
        if proc is None:
            return False
        if proc.poll() is None:
            return True
        self._active_proc = None
        return False

    def stop(self) -> None:
        proc = self._active_proc
        self._active_proc = None
        if proc is not None:
            self._terminate_process(proc)

    def voices(self) -> list[str]:
        """Installed voices, or an empty list while they are still loading.

        Never blocks.  The first call starts a listing subprocess; later calls
        poll it.  An empty or failed listing is retried after a short delay,
        and a non-empty result is cached for the life of the engine.
        """

        if not self._voices and self._backend is not None:
            self._poll_voice_listing()
        return list(self._voices)

    def voices_ready(self) -> bool:
        return self._backend is None or bool(self._voices)

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
        except OSError:
            return
        try:
            proc.wait(timeout=0.5)
        except subprocess.TimeoutExpired:
            try:
                proc.kill()
            except OSError:
                pass

    @staticmethod
    def _resolve_backends(env: Mapping[str, str]) -> list[str]:
        forced = env.get(TTS_BACKEND_ENV, "").strip().lower()
        if forced in _SUPPORTED_BACKENDS and SubprocessSpeechEngine._backend_available(forced):
            return [forced]

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("pyttsx3-subprocess", "espeak"))

        seen: set[str] = set()
        resolved: list[str] = []
        for name in candidates:
            if name in seen:
                continue
            seen.add(name)
            if SubprocessSpeechEngine._backend_available(name):
                resolved.append(name)
        return resolved

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "say":
            return (shutil.which("say") is not None) or Path("/usr/bin/say").exists()
        if name == "powershell":
            return (shutil.which("powershell") is not None) or (shutil.which("pwsh") is not None)
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        if name == "espeak":
            return shutil.which("espeak") is not None
        return False

    def _drop_current_backend(self) -> None:
        backend = self._backend
        if backend is None:
            return
        logger.warning("Speech backend %s failed to launch; dropping it", backend)
        self._backends = [name for name in self._backends if name != backend]
        self._backend = self._backends[0] if self._backends else None
        self._voices = []
        self._voice_retry_at = None
        self._cancel_voice_listing()

    def _command(self, backend: str, text: str, *, rate: float, voice_id: str | None) -> list[str] | None:
        wpm = str(words_per_minute(rate))
        voice = voice_id or ""
        if backend == "pyttsx3-subprocess":
            return [sys.executable, "-c", _PYTTSX3_SPEAK_SCRIPT, text, wpm, voice]
        if backend == "say":
            cmd = [shutil.which("say") or "/usr/bin/say", "-r", wpm]
            if voice:
                cmd.extend(("-v", voice))
            cmd.append(text)
            return cmd
        if backend == "powershell":
            ps_bin = shutil.which("powershell") or shutil.which("pwsh")
            if ps_bin is None:
                return None
            ps_rate = max(-10, min(10, int(round((float(rate) - 1.0) * 10.0))))
            return [ps_bin, "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_SPEAK_SCRIPT, text, str(ps_rate), voice]
        if backend == "espeak":
            cmd = ["espeak", "-s", wpm]
            if voice:
                cmd.extend(("-v", voice))
            cmd.append(text)
            return cmd
        return None

    def _launch_process(self, text: str, *, rate: float, voice_id: str | None) -> subprocess.Popen[bytes] | None:
        backend = self._backend
        if backend is None:
            return None
        cmd = self._command(backend, text, rate=rate, voice_id=voice_id)
        if cmd is None:
            return None
        try:
            return subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError:
            logger.debug("Failed to launch %s", backend, exc_info=True)
            return None

    @staticmethod
    def _voice_list_command(backend: str) -> list[str] | None:
        if backend == "say":
            return [shutil.which("say") or "/usr/bin/say", "-v", "?"]
        if backend == "espeak":
            return ["espeak", "--voices"]
        if backend == "powershell":
            ps_bin = shutil.which("powershell") or shutil.which("pwsh")
            if ps_bin is None:
                return None
            return [ps_bin, "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_VOICES_SCRIPT]
        return [sys.executable, "-c", _PYTTSX3_VOICES_SCRIPT]

    def _poll_voice_listing(self) -> None:
        backend = self._backend
        if backend is None:
            return
        now = self._clock.now()

        job = self._voice_job
        if job is None:
            if self._voice_retry_at is not None and now < self._voice_retry_at:
                return
            job = self._start_voice_listing(backend, now)
            if job is None:
                self._voice_retry_at = now + self._voice_retry_s
                return
            self._voice_job = job

        if job.proc.poll() is None:
            if now - job.started_at >= self._voice_list_timeout_s:
                logger.debug("Voice listing for %s timed out", job.backend)
                self._cancel_voice_listing()
                self._voice_retry_at = now + self._voice_retry_s
            return

        self._voice_job = None
        try:
            job.output.seek(0)
            out = job.output.read().decode("utf-8", errors="replace")
        except OSError:
            logger.debug("Reading voice listing for %s failed", job.backend, exc_info=True)
            out = ""
        finally:
            job.output.close()

        self._voices = parse_voice_listing(job.backend, out)
        if self._voices:
            logger.info("Loaded %d voices from %s", len(self._voices), job.backend)
        else:
            self._voice_retry_at = now + self._voice_retry_s

    def _start_voice_listing(self, backend: str, now: float) -> _VoiceListing | None:
        cmd = self._voice_list_command(backend)
        if cmd is None:
            return None
        output = tempfile.TemporaryFile()
        try:
            proc = subprocess.Popen(cmd, stdout=output, stderr=subprocess.DEVNULL)
        except OSError:
            output.close()
            logger.debug("Voice listing failed to start for %s", backend, exc_info=True)
            return None
        return _VoiceListing(backend=backend, proc=proc, output=output, started_at=now)

    def _cancel_voice_listing(self) -> None:
        job = self._voice_job
        self._voice_job = None
        if job is None:
            return
        if job.proc.poll() is None:
            self._terminate_process(job.proc)
        job.output.close()


@dataclass
class _VoiceListing:
    backend: str
    proc: subprocess.Popen[bytes]
    output: IO[bytes]
    started_at: float


def parse_voice_listing(backend: str, output: str) -> list[str]:
    voices: list[str] = []
    lines = output.splitlines()
    if backend == "espeak":
        # Header row, then: Pty Language Age/Gender VoiceName File ...
        for line in lines[1:]:
            parts = line.split()
            if len(parts) >= 2:
                voices.append(parts[1])
        return voices
    if backend == "say":
        for line in lines:
            m = _SAY_VOICE_LINE.match(line)
            if m is not None:
                voices.append(m.group("name").strip())
        return voices
    return [line.strip() for line in lines if line.strip()]
