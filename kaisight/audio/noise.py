from __future__ import annotations

import collections
import math
from typing import Deque

NOISY_LEVEL = 0.7


class NoiseEstimator:
    """Rolling mean of recent ambient levels (0..1)."""

    def __init__(self, capacity: int = 10) -> None:
        self._samples: Deque[float] = collections.deque(maxlen=capacity)

    def update(self, sample: float) -> None:
        if not math.isfinite(sample):
            return
        self._samples.append(sample)

    def current_level(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)

    def is_noisy(self) -> bool:
        return self.current_level() > NOISY_LEVEL

    def reset(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)


__all__ = ["NoiseEstimator", "NOISY_LEVEL"]
