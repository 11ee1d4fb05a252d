from __future__ import annotations

import numpy as np

SILENCE_DB = -80.0


def frame_dbfs(frame: np.ndarray) -> float:
    """RMS level of a frame in dBFS; int16 input is scaled to [-1, 1]."""
    if frame.size == 0:
        return SILENCE_DB
    samples = frame.astype(np.float32)
    if frame.dtype == np.int16:
        samples /= 32768.0
    rms = float(np.sqrt(np.mean(np.square(samples))))
    if rms <= 0.0:
        return SILENCE_DB
    power = 20.0 * np.log10(rms)
    return float(power) if np.isfinite(power) else SILENCE_DB


def normalized_level(energy_db: float, floor_db: float = -60.0) -> float:
    """Map a dBFS reading onto 0..1 for noise estimation (floor -> 0, 0 dBFS -> 1)."""
    if not np.isfinite(energy_db):
        return 0.0
    return float(min(1.0, max(0.0, (energy_db - floor_db) / -floor_db)))


__all__ = ["frame_dbfs", "normalized_level", "SILENCE_DB"]
