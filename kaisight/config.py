from __future__ import annotations

import functools

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseModel):
    activation_delay_seconds: float = 1.0
    listening_timeout_seconds: float = 30.0
    silence_timeout_seconds: float = 2.0
    continuation_delay_seconds: float = 1.5
    rearm_delay_seconds: float = 2.0
    detector_retry_seconds: float = 5.0
    recognition_retry_seconds: float = 3.0
    history_turns: int = 5
    context_timeout_seconds: float = 300.0
    activation_message: str = "Yes, I'm listening."
    closing_message: str = "Okay, I'll stay quiet until you need me."
    continuation_phrases: tuple[str, ...] = ("what else", "anything else", "tell me more", "do you need")


class WakeWordSettings(BaseModel):
    phrases: tuple[str, ...] = ("hey kaisight", "kaisight", "assistant")
    base_threshold: float = 0.75
    max_false_positives: int = 3
    cooldown_seconds: float = 30.0


class VADSettings(BaseModel):
    silence_threshold_db: float = -30.0
    voice_threshold_db: float = -20.0
    min_speech_duration: float = 0.5
    noise_gain_db: float = 10.0
    threshold_ceiling_db: float = -10.0


class RiskSettings(BaseModel):
    interval_seconds: float = 60.0
    guidance_interval_seconds: float = 300.0
    inactivity_medium_seconds: float = 3600.0
    inactivity_high_seconds: float = 7200.0
    inactivity_critical_seconds: float = 14400.0
    lighting_medium_below: float = 0.1
    lighting_low_below: float = 0.25
    obstacle_memory_seconds: float = 3600.0
    escalation_webhook_url: str | None = None
    repeat_intervals: dict[str, float] = Field(
        default_factory=lambda: {"critical": 60.0, "high": 300.0, "medium": 900.0}
    )


class AudioSettings(BaseModel):
    sample_rate: int = 16_000
    frame_ms: int = 30
    input_device: str | int | None = None
    level_floor_db: float = -60.0


class TranscriptionSettings(BaseModel):
    vosk_model_path: str | None = None


class LLMSettings(BaseModel):
    ollama_host: str = "http://localhost:11434"
    model: str = "llama3.2"


class KokoroSettings(BaseModel):
    base_url: str | None = None
    api_key: str | None = None
    voice: str = "af_sky"


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = True
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    floating_ui_origin: str = "http://localhost:8010"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    AGENT_LISTENING_TIMEOUT: float = 30.0
    AGENT_SILENCE_TIMEOUT: float = 2.0
    AGENT_REARM_DELAY: float = 2.0
    AGENT_CONTEXT_TIMEOUT: float = 300.0
    WAKEWORD_PHRASES: str = "hey kaisight,kaisight,assistant"
    WAKEWORD_BASE_THRESHOLD: float = 0.75
    WAKEWORD_MAX_FALSE_POSITIVES: int = 3
    VAD_SILENCE_THRESHOLD_DB: float = -30.0
    VAD_VOICE_THRESHOLD_DB: float = -20.0
    VAD_MIN_SPEECH_SECONDS: float = 0.5
    RISK_INTERVAL_SECONDS: float = 60.0
    RISK_GUIDANCE_INTERVAL_SECONDS: float = 300.0
    RISK_ESCALATION_WEBHOOK_URL: str | None = None
    AUDIO_SAMPLE_RATE: int = 16_000
    AUDIO_FRAME_MS: int = 30
    AUDIO_INPUT_DEVICE: str | int | None = None
    VOSK_MODEL_PATH: str | None = None
    OLLAMA_HOST: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.2"
    KOKORO_API_URL: str | None = None
    KOKORO_API_KEY: str | None = None
    KOKORO_VOICE: str = "af_sky"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    FLOATING_UI_ORIGIN: str = "http://localhost:8010"

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @property
    def agent(self) -> AgentSettings:
        return AgentSettings(
            listening_timeout_seconds=self.AGENT_LISTENING_TIMEOUT,
            silence_timeout_seconds=self.AGENT_SILENCE_TIMEOUT,
            rearm_delay_seconds=self.AGENT_REARM_DELAY,
            context_timeout_seconds=self.AGENT_CONTEXT_TIMEOUT,
        )

    @property
    def wakeword(self) -> WakeWordSettings:
        phrases = tuple(p.strip().lower() for p in self.WAKEWORD_PHRASES.split(",") if p.strip())
        return WakeWordSettings(
            phrases=phrases or WakeWordSettings().phrases,
            base_threshold=self.WAKEWORD_BASE_THRESHOLD,
            max_false_positives=self.WAKEWORD_MAX_FALSE_POSITIVES,
        )

    @property
    def vad(self) -> VADSettings:
        return VADSettings(
            silence_threshold_db=self.VAD_SILENCE_THRESHOLD_DB,
            voice_threshold_db=self.VAD_VOICE_THRESHOLD_DB,
            min_speech_duration=self.VAD_MIN_SPEECH_SECONDS,
        )

    @property
    def risk(self) -> RiskSettings:
        return RiskSettings(
            interval_seconds=self.RISK_INTERVAL_SECONDS,
            guidance_interval_seconds=self.RISK_GUIDANCE_INTERVAL_SECONDS,
            escalation_webhook_url=self.RISK_ESCALATION_WEBHOOK_URL,
        )

    @property
    def audio(self) -> AudioSettings:
        return AudioSettings(
            sample_rate=self.AUDIO_SAMPLE_RATE,
            frame_ms=self.AUDIO_FRAME_MS,
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
        )

    @property
    def transcription(self) -> TranscriptionSettings:
        return TranscriptionSettings(vosk_model_path=self.VOSK_MODEL_PATH)

    @property
    def llm(self) -> LLMSettings:
        return LLMSettings(ollama_host=self.OLLAMA_HOST, model=self.OLLAMA_MODEL)

    @property
    def kokoro(self) -> KokoroSettings:
        return KokoroSettings(base_url=self.KOKORO_API_URL, api_key=self.KOKORO_API_KEY, voice=self.KOKORO_VOICE)

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(
            log_level=self.LOG_LEVEL,
            json_logs=self.LOG_JSON,
            otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT,
        )

    @property
    def ui(self) -> UISettings:
        return UISettings(floating_ui_origin=self.FLOATING_UI_ORIGIN)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


__all__ = [
    "AgentSettings",
    "AppSettings",
    "RiskSettings",
    "VADSettings",
    "WakeWordSettings",
    "load_settings",
]
