from __future__ import annotations

import math

import numpy as np
import pytest

from kaisight.audio.frontend import AudioFrontEnd
from kaisight.audio.levels import SILENCE_DB, frame_dbfs, normalized_level
from kaisight.audio.noise import NoiseEstimator
from kaisight.audio.vad import VoiceActivityDetector
from kaisight.orchestrator.events import VoiceStart


def test_noise_estimator_keeps_rolling_mean_of_last_ten() -> None:
    estimator = NoiseEstimator()
    assert estimator.current_level() == 0.0

    for _ in range(10):
        estimator.update(0.2)
    for _ in range(5):
        estimator.update(1.0)

    assert len(estimator) == 10
    assert estimator.current_level() == pytest.approx(0.6)
    assert not estimator.is_noisy()

    for _ in range(5):
        estimator.update(1.0)
    assert estimator.is_noisy()


def test_noise_estimator_ignores_non_finite_samples() -> None:
    estimator = NoiseEstimator()
    estimator.update(0.4)
    estimator.update(math.nan)
    estimator.update(math.inf)
    assert len(estimator) == 1
    assert estimator.current_level() == pytest.approx(0.4)

    estimator.reset()
    assert estimator.current_level() == 0.0


def test_frame_dbfs_for_half_scale_int16() -> None:
    frame = np.full(480, 16384, dtype=np.int16)
    assert frame_dbfs(frame) == pytest.approx(-6.0206, abs=0.01)


def test_frame_dbfs_silence_and_empty() -> None:
    assert frame_dbfs(np.zeros(480, dtype=np.int16)) == SILENCE_DB
    assert frame_dbfs(np.array([], dtype=np.int16)) == SILENCE_DB


def test_normalized_level_is_clamped() -> None:
    assert normalized_level(-60.0) == 0.0
    assert normalized_level(-90.0) == 0.0
    assert normalized_level(-30.0) == pytest.approx(0.5)
    assert normalized_level(0.0) == 1.0
    assert normalized_level(math.nan) == 0.0


def test_front_end_only_learns_noise_outside_speech() -> None:
    noise = NoiseEstimator()
    events = []
    vad = VoiceActivityDetector(on_event=events.append)
    frontend = AudioFrontEnd(noise, vad)

    frontend.process(-54.0, 0.0)
    assert len(noise) == 1

    event = frontend.process(-5.0, 0.1)
    assert isinstance(event, VoiceStart)
    assert events == [event]

    assert len(noise) == 2
    frontend.process(-5.0, 0.2)
    assert len(noise) == 2

    frontend.reset()
    assert not vad.active
