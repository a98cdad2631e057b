from __future__ import annotations

import json
from pathlib import Path

import pytest

from abacus_trainer.preferences import PREFERENCES_PATH_ENV, PracticeSetup, PreferencesStore
from abacus_trainer.scoring import PracticeType


def test_missing_file_gives_defaults_per_practice_type(tmp_path: Path) -> None:
    store = PreferencesStore(tmp_path / "prefs.json")

    listening = store.setup_for(PracticeType.LISTENING)
    flash = store.setup_for(PracticeType.FLASH)
    assert (listening.digits_text, listening.terms_text, listening.pace) == ("1", "5", 1.0)
    assert (flash.digits_text, flash.terms_text, flash.pace) == ("1", "5", 1000.0)
    assert flash.addition_only is False


def test_updates_persist_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "prefs.json"
    store = PreferencesStore(path)
    store.update_setup(PracticeType.FLASH, digits_text="3", terms_text="12", pace=450.0, font_size="large")
    store.update_setup(PracticeType.LISTENING, voice_index=2, addition_only=True)

    reloaded = PreferencesStore(path)
    flash = reloaded.setup_for(PracticeType.FLASH)
    assert (flash.digits_text, flash.terms_text, flash.pace, flash.font_size) == ("3", "12", 450.0, "large")
    listening = reloaded.setup_for(PracticeType.LISTENING)
    assert listening.voice_index == 2
    assert listening.addition_only is True
    assert not path.with_suffix(".json.tmp").exists()


def test_out_of_range_values_are_clamped(tmp_path: Path) -> None:
    store = PreferencesStore(tmp_path / "prefs.json")
    setup = store.update_setup(PracticeType.LISTENING, pace=9.0, voice_index=-4, font_size="enormous")
    assert setup.pace == 2.0
    assert setup.voice_index == 0
    assert setup.font_size == "medium"

    setup = store.update_setup(PracticeType.FLASH, pace=5.0)
    assert setup.pace == 100.0


def test_raw_count_text_is_kept_until_a_session_starts(tmp_path: Path) -> None:
    store = PreferencesStore(tmp_path / "prefs.json")
    setup = store.update_setup(PracticeType.FLASH, digits_text="", terms_text="1")
    assert (setup.digits_text, setup.terms_text) == ("", "1")


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "prefs.json"
    path.write_text("{not json", encoding="utf-8")

    store = PreferencesStore(path)
    assert store.setup_for(PracticeType.FLASH) == PracticeSetup.defaults(PracticeType.FLASH)


def test_unknown_keys_and_bad_values_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "prefs.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "setups": {
                    "flash": {"digits": 2, "pace": "fast", "voice_index": "x"},
                    "juggling": {"digits": "9"},
                },
            }
        ),
        encoding="utf-8",
    )

    store = PreferencesStore(path)
    flash = store.setup_for(PracticeType.FLASH)
    assert flash.digits_text == "2"
    assert flash.pace == 1000.0
    assert flash.voice_index == 0


def test_default_path_honours_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(PREFERENCES_PATH_ENV, str(tmp_path / "p.json"))
    assert PreferencesStore.default_path() == tmp_path / "p.json"
