from __future__ import annotations

from kaisight.audio.levels import normalized_level
from kaisight.audio.noise import NoiseEstimator
from kaisight.audio.vad import VoiceActivityDetector
from kaisight.orchestrator.events import VoiceActivity


class AudioFrontEnd:
    """Routes energy readings to the noise estimator and the VAD.

    Only readings taken outside a speech segment count as ambient noise.
    """

    def __init__(self, noise: NoiseEstimator, vad: VoiceActivityDetector, level_floor_db: float = -60.0) -> None:
        self.noise = noise
        self.vad = vad
        self._floor_db = level_floor_db

    def process(self, energy_db: float, now: float) -> VoiceActivity | None:
        if not self.vad.active:
            self.noise.update(normalized_level(energy_db, self._floor_db))
        self.vad.adjust_for_noise(self.noise.current_level())
        return self.vad.process_sample(energy_db, now)

    def reset(self) -> None:
        """Drop any open speech segment; the noise history is kept."""
        self.vad.reset()


__all__ = ["AudioFrontEnd"]
