from __future__ import annotations

import math
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from kaisight.errors import ConfigurationError
from kaisight.orchestrator.events import WakeWordCandidate
from kaisight.telemetry.logging import get_logger

THRESHOLD_CEILING = 0.95
UNVERIFIED_ACCEPT = 0.9
NOISE_LOCKOUT = 0.8
NOISE_PENALTY = 0.3
THRESHOLD_DECAY = 0.05
THRESHOLD_RAISE = 0.1

_PUNCTUATION = re.compile(r"^[^\w]+|[^\w]+$")


@dataclass(slots=True)
class DetectorConfig:
    base_threshold: float = 0.75
    current_threshold: float = 0.75
    consecutive_false_positives: int = 0
    max_false_positives: int = 3
    cooldown_until: float | None = None


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance using two rolling rows of the DP table."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def _tokens(text: str) -> list[str]:
    tokens = (_PUNCTUATION.sub("", token).lower() for token in text.split())
    return [token for token in tokens if token]


def contains_phrase(transcript: str, phrase: str) -> bool:
    """True when the phrase's words appear as a contiguous run of transcript tokens."""
    words = _tokens(phrase)
    tokens = _tokens(transcript)
    if not words or len(words) > len(tokens):
        return False
    span = len(words)
    return any(tokens[start : start + span] == words for start in range(len(tokens) - span + 1))


class WakeWordMatcher:
    """Fuzzy trigger-phrase matching with an adaptive acceptance threshold.

    Every candidate goes through two stages: a normalised edit-distance score
    against each phrase, then an exact word-sequence check. Unverified near
    misses count as false positives; enough of them in a row raise the
    threshold for a cool-down period, after which it relaxes again.
    """

    def __init__(
        self,
        phrases: Sequence[str] = ("hey kaisight", "kaisight", "assistant"),
        noise_level: Callable[[], float] | None = None,
        base_threshold: float = 0.75,
        max_false_positives: int = 3,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._phrases: tuple[str, ...] = ()
        self._cooldown_seconds = cooldown_seconds
        self._noise_level = noise_level or (lambda: 0.0)
        self._clock = clock
        self._logger = get_logger(__name__)
        self.config = DetectorConfig(
            base_threshold=base_threshold,
            current_threshold=base_threshold,
            max_false_positives=max_false_positives,
        )
        self.configure(
            phrases=phrases,
            base_threshold=base_threshold,
            max_false_positives=max_false_positives,
            cooldown_seconds=cooldown_seconds,
        )

    @property
    def phrases(self) -> tuple[str, ...]:
        return self._phrases

    @property
    def locked_out(self) -> bool:
        return self.config.consecutive_false_positives > self.config.max_false_positives

    def configure(
        self,
        phrases: Sequence[str] | None = None,
        base_threshold: float | None = None,
        max_false_positives: int | None = None,
        cooldown_seconds: float | None = None,
    ) -> None:
        new_phrases = self._phrases if phrases is None else tuple(" ".join(p.lower().split()) for p in phrases)
        base = self.config.base_threshold if base_threshold is None else base_threshold
        max_fp = self.config.max_false_positives if max_false_positives is None else max_false_positives
        cooldown = self._cooldown_seconds if cooldown_seconds is None else cooldown_seconds

        if not new_phrases or not all(new_phrases):
            raise ConfigurationError("at least one non-empty trigger phrase is required")
        if not math.isfinite(base) or not 0.0 < base <= THRESHOLD_CEILING:
            raise ConfigurationError(f"base threshold must be in (0, {THRESHOLD_CEILING}]")
        if max_fp < 1:
            raise ConfigurationError("max false positives must be at least 1")
        if not math.isfinite(cooldown) or cooldown < 0:
            raise ConfigurationError("cool-down must be a non-negative number of seconds")

        self._phrases = new_phrases
        self._cooldown_seconds = cooldown
        self.config.base_threshold = base
        self.config.max_false_positives = max_fp
        self.config.current_threshold = min(max(self.config.current_threshold, base), THRESHOLD_CEILING)

    def refresh(self) -> None:
        """Expire a finished cool-down: clear the counter and relax the threshold one step."""
        deadline = self.config.cooldown_until
        if deadline is None or self._clock() < deadline:
            return
        self.config.cooldown_until = None
        self.config.consecutive_false_positives = 0
        self._decay_threshold()
        self._logger.info("wakeword.cooldown.expired", threshold=self.config.current_threshold)

    def score(self, transcript: str) -> tuple[str, float]:
        """Best (phrase, similarity) for `transcript`; ties go to the earliest phrase."""
        text = " ".join(transcript.lower().split())
        noise_scale = 1.0 - self._noise() * NOISE_PENALTY
        best_phrase = self._phrases[0]
        best = -1.0
        for phrase in self._phrases:
            value = similarity(text, phrase) * noise_scale
            if value > best:
                best_phrase, best = phrase, value
        return best_phrase, best

    def evaluate(self, transcript: str) -> WakeWordCandidate | None:
        self.refresh()
        noise = self._noise()
        if noise > NOISE_LOCKOUT:
            self._logger.debug("wakeword.rejected", reason="noise", noise=noise)
            return None
        if self.locked_out:
            self._logger.debug("wakeword.rejected", reason="lockout")
            return None
        text = " ".join(transcript.lower().split())
        if not text:
            return None

        phrase, confidence = self.score(text)
        if not confidence > self.config.current_threshold:
            return None

        verified = contains_phrase(text, phrase)
        if verified or confidence > UNVERIFIED_ACCEPT:
            self.config.consecutive_false_positives = 0
            self._decay_threshold()
            self._logger.info(
                "wakeword.accepted",
                phrase=phrase,
                confidence=round(confidence, 3),
                verified=verified,
                threshold=self.config.current_threshold,
            )
            return WakeWordCandidate(transcript=text, matched_phrase=phrase, confidence=confidence, verified=verified)

        self._record_false_positive(phrase, confidence)
        return None

    def _record_false_positive(self, phrase: str, confidence: float) -> None:
        config = self.config
        config.consecutive_false_positives += 1
        self._logger.info(
            "wakeword.false_positive",
            phrase=phrase,
            confidence=round(confidence, 3),
            count=config.consecutive_false_positives,
        )
        if config.consecutive_false_positives == config.max_false_positives:
            config.current_threshold = min(config.current_threshold + THRESHOLD_RAISE, THRESHOLD_CEILING)
            config.cooldown_until = self._clock() + self._cooldown_seconds
            self._logger.warning(
                "wakeword.threshold.raised",
                threshold=config.current_threshold,
                cooldown_seconds=self._cooldown_seconds,
            )

    def _decay_threshold(self) -> None:
        config = self.config
        config.current_threshold = max(config.current_threshold - THRESHOLD_DECAY, config.base_threshold)

    def _noise(self) -> float:
        level = self._noise_level()
        return level if math.isfinite(level) else 0.0


__all__ = ["DetectorConfig", "WakeWordMatcher", "contains_phrase", "edit_distance", "similarity"]
