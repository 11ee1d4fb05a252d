from __future__ import annotations

import pytest

from kaisight.config import AgentSettings, AppSettings
from kaisight.orchestrator.events import Severity
from kaisight.orchestrator.policies import RiskPolicy


def test_defaults_match_agent_timings() -> None:
    settings = AppSettings(_env_file=None)
    agent = settings.agent
    assert agent.activation_delay_seconds == 1.0
    assert agent.listening_timeout_seconds == 30.0
    assert agent.silence_timeout_seconds == 2.0
    assert agent.continuation_delay_seconds == 1.5
    assert agent.rearm_delay_seconds == 2.0
    assert agent.context_timeout_seconds == 300.0
    assert agent.activation_message == "Yes, I'm listening."

    assert settings.wakeword.phrases == ("hey kaisight", "kaisight", "assistant")
    assert settings.wakeword.base_threshold == 0.75
    assert settings.vad.silence_threshold_db == -30.0
    assert settings.vad.voice_threshold_db == -20.0
    assert settings.risk.interval_seconds == 60.0
    assert settings.kokoro.base_url is None


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WAKEWORD_PHRASES", " Hey Kai , Computer ,")
    monkeypatch.setenv("AGENT_LISTENING_TIMEOUT", "12.5")
    monkeypatch.setenv("AUDIO_INPUT_DEVICE", "3")
    monkeypatch.setenv("RISK_ESCALATION_WEBHOOK_URL", "https://example.test/hook")

    settings = AppSettings(_env_file=None)
    assert settings.wakeword.phrases == ("hey kai", "computer")
    assert settings.agent.listening_timeout_seconds == 12.5
    assert settings.audio.input_device == 3
    assert settings.risk.escalation_webhook_url == "https://example.test/hook"


def test_blank_phrase_list_falls_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WAKEWORD_PHRASES", " , ")
    settings = AppSettings(_env_file=None)
    assert settings.wakeword.phrases == ("hey kaisight", "kaisight", "assistant")


def test_risk_repeat_intervals_map_to_policy() -> None:
    risk = AppSettings(_env_file=None).risk
    policy = RiskPolicy.from_names(risk.guidance_interval_seconds, risk.repeat_intervals)
    assert policy.repeat_interval(Severity.CRITICAL) == 60.0
    assert policy.repeat_interval(Severity.HIGH) == 300.0
    assert policy.repeat_interval(Severity.MEDIUM) == 900.0


def test_agent_settings_are_plain_models() -> None:
    agent = AgentSettings(silence_timeout_seconds=0.5)
    assert agent.silence_timeout_seconds == 0.5
    assert "anything else" in agent.continuation_phrases
