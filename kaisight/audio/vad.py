from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass

from kaisight.audio.levels import SILENCE_DB
from kaisight.errors import ConfigurationError
from kaisight.orchestrator.events import VoiceActivity, VoiceEnd, VoiceStart
from kaisight.telemetry.logging import get_logger


@dataclass(frozen=True, slots=True)
class VADThresholds:
    silence_db: float
    voice_db: float
    min_speech_duration: float


class VoiceActivityDetector:
    """Energy based speech start/end detection with hysteresis.

    Readings above the voice threshold open a speech segment, readings below
    the silence threshold close it. Anything in between keeps the current
    state. Ambient noise raises both thresholds (see `adjust_for_noise`).
    """

    def __init__(
        self,
        on_event: Callable[[VoiceActivity], None] | None = None,
        silence_threshold_db: float = -30.0,
        voice_threshold_db: float = -20.0,
        min_speech_duration: float = 0.5,
        noise_gain_db: float = 10.0,
        threshold_ceiling_db: float = -10.0,
    ) -> None:
        self._on_event = on_event
        self._noise_gain_db = noise_gain_db
        self._ceiling_db = threshold_ceiling_db
        self._logger = get_logger(__name__)
        self._config = VADThresholds(silence_threshold_db, voice_threshold_db, min_speech_duration)
        self._validate(self._config)
        self._noise_level = 0.0
        self._active = False
        self._started_at: float | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def config(self) -> VADThresholds:
        return self._config

    def set_listener(self, on_event: Callable[[VoiceActivity], None] | None) -> None:
        self._on_event = on_event

    def configure(self, silence_threshold_db: float, voice_threshold_db: float, min_speech_duration: float) -> None:
        candidate = VADThresholds(silence_threshold_db, voice_threshold_db, min_speech_duration)
        try:
            self._validate(candidate)
        except ConfigurationError as exc:
            self._logger.warning("vad.configure.rejected", error=str(exc), kept=self._config)
            raise
        self._config = candidate
        self._logger.info(
            "vad.configured",
            silence_db=silence_threshold_db,
            voice_db=voice_threshold_db,
            min_speech_duration=min_speech_duration,
        )

    def effective_thresholds(self) -> tuple[float, float]:
        """(silence, voice) thresholds after the current noise adjustment."""
        offset = self._noise_level * self._noise_gain_db
        silence = min(self._config.silence_db + offset, self._ceiling_db)
        voice = min(self._config.voice_db + offset, self._ceiling_db)
        return silence, voice

    def adjust_for_noise(self, level: float) -> None:
        if not math.isfinite(level):
            return
        self._noise_level = min(1.0, max(0.0, level))

    def process_sample(self, energy_db: float, now: float) -> VoiceActivity | None:
        if not math.isfinite(energy_db):
            energy_db = SILENCE_DB
        silence_db, voice_db = self.effective_thresholds()

        if energy_db > voice_db:
            if not self._active:
                self._active = True
                self._started_at = now
                return self._emit(VoiceStart(ts=now))
            return None

        if energy_db < silence_db and self._active:
            started = self._started_at if self._started_at is not None else now
            duration = now - started
            self._active = False
            self._started_at = None
            if duration >= self._config.min_speech_duration:
                return self._emit(VoiceEnd(ts=now, duration=duration))
            self._logger.debug("vad.burst.discarded", duration=duration)
        return None

    def reset(self) -> None:
        self._active = False
        self._started_at = None

    def _emit(self, event: VoiceActivity) -> VoiceActivity:
        if self._on_event is not None:
            self._on_event(event)
        return event

    @staticmethod
    def _validate(config: VADThresholds) -> None:
        values = (config.silence_db, config.voice_db, config.min_speech_duration)
        if not all(math.isfinite(value) for value in values):
            raise ConfigurationError("VAD thresholds must be finite numbers")
        if config.silence_db > config.voice_db:
            raise ConfigurationError("silence threshold must not exceed voice threshold")
        if config.min_speech_duration < 0:
            raise ConfigurationError("minimum speech duration must be non-negative")


__all__ = ["VoiceActivityDetector", "VADThresholds"]
