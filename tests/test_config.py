from __future__ import annotations

import pytest

from orb.config import AppSettings
from orb.orchestrator.policies import TurnPolicies


def test_sections_are_built_from_flat_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
    monkeypatch.setenv("AUDIO_INPUT_DEVICE", "3")
    monkeypatch.setenv("AUTOLOOP_DEBOUNCE_MS", "500")
    monkeypatch.setenv("HIGHLIGHT_FACT_WEIGHT", "0.1")

    settings = AppSettings(_env_file=None)

    assert settings.groq.api_key == "gsk-test"
    assert settings.groq.tts_model == "playai-tts"
    assert settings.audio.input_device == 3
    assert settings.database.url.startswith("sqlite+aiosqlite://")

    policies = TurnPolicies.from_settings(settings.engine)
    assert policies.loop.debounce_s == pytest.approx(0.5)
    assert policies.highlight_ranking.weight == pytest.approx(0.1)
    assert policies.prompt_ranking.weight == pytest.approx(0.2)
    assert policies.gate.min_duration_s == pytest.approx(0.35)
    assert policies.voice == "Fritz-PlayAI"


def test_blank_device_means_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
    monkeypatch.setenv("AUDIO_INPUT_DEVICE", " ")

    assert AppSettings(_env_file=None).audio.input_device is None


def test_module_exports_only_settings_entry_points() -> None:
    import orb.config as config

    assert config.__all__ == ["AppSettings", "load_settings"]
    assert not hasattr(config, "project_root")
