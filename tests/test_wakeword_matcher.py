from __future__ import annotations

import pytest

from kaisight.audio.wakeword.matcher import (
    THRESHOLD_CEILING,
    WakeWordMatcher,
    contains_phrase,
    edit_distance,
    similarity,
)
from kaisight.errors import ConfigurationError


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def make_matcher(noise: float = 0.0, clock: FakeClock | None = None) -> WakeWordMatcher:
    return WakeWordMatcher(noise_level=lambda: noise, clock=clock or FakeClock())


def test_edit_distance_and_similarity() -> None:
    assert edit_distance("kitten", "sitting") == 3
    assert edit_distance("", "abc") == 3
    assert edit_distance("same", "same") == 0
    assert similarity("hey kaisite", "hey kaisight") == pytest.approx(0.75)
    assert similarity("", "") == 1.0


def test_contains_phrase_strips_punctuation() -> None:
    assert contains_phrase("Hey, KaiSight!", "hey kaisight")
    assert contains_phrase("okay hey kaisight now", "hey kaisight")
    assert not contains_phrase("hey there kaisight", "hey kaisight")
    assert not contains_phrase("kaisight", "hey kaisight")


def test_exact_phrase_is_accepted_and_verified() -> None:
    matcher = make_matcher()
    candidate = matcher.evaluate("Hey KaiSight")
    assert candidate is not None
    assert candidate.matched_phrase == "hey kaisight"
    assert candidate.confidence == pytest.approx(1.0)
    assert candidate.verified
    assert matcher.config.current_threshold == pytest.approx(0.75)


def test_verified_phrase_inside_longer_utterance() -> None:
    matcher = make_matcher()
    candidate = matcher.evaluate("hey kaisight ok")
    assert candidate is not None
    assert candidate.verified
    assert candidate.confidence == pytest.approx(0.8)


def test_misheard_phrase_below_threshold_is_rejected() -> None:
    matcher = make_matcher()
    assert matcher.evaluate("hey k eyesight") is None
    assert matcher.config.consecutive_false_positives == 0


def test_similarity_equal_to_threshold_is_not_accepted() -> None:
    matcher = make_matcher()
    assert matcher.evaluate("hey kaisite") is None
    assert matcher.config.consecutive_false_positives == 0


def test_high_similarity_unverified_is_accepted() -> None:
    matcher = make_matcher()
    candidate = matcher.evaluate("hey kaisigt")
    assert candidate is not None
    assert not candidate.verified
    assert candidate.confidence == pytest.approx(11 / 12)


def test_repeated_false_positives_raise_threshold_then_cool_down() -> None:
    clock = FakeClock()
    matcher = make_matcher(clock=clock)

    for _ in range(3):
        assert matcher.evaluate("hey kaisit") is None

    assert matcher.config.consecutive_false_positives == 3
    assert matcher.config.current_threshold == pytest.approx(0.85)
    assert matcher.config.cooldown_until == pytest.approx(130.0)

    # 0.833 no longer clears the raised threshold and is not counted.
    assert matcher.evaluate("hey kaisit") is None
    assert matcher.config.consecutive_false_positives == 3

    clock.now = 131.0
    candidate = matcher.evaluate("hey kaisight")
    assert candidate is not None
    # Cool-down relaxed 0.85 -> 0.80, the acceptance relaxed it again to base.
    assert matcher.config.current_threshold == pytest.approx(0.75)
    assert matcher.config.consecutive_false_positives == 0


def test_lockout_after_exceeding_false_positive_limit() -> None:
    clock = FakeClock()
    matcher = make_matcher(clock=clock)

    for _ in range(4):
        assert matcher.evaluate("kaisigt") is None

    assert matcher.locked_out
    assert matcher.evaluate("hey kaisight") is None

    clock.now += 31.0
    assert matcher.evaluate("hey kaisight") is not None
    assert not matcher.locked_out


def test_noise_penalises_and_locks_out() -> None:
    moderate = make_matcher(noise=0.5)
    candidate = moderate.evaluate("hey kaisight")
    assert candidate is not None
    assert candidate.confidence == pytest.approx(0.85)

    loud = make_matcher(noise=0.9)
    assert loud.evaluate("hey kaisight") is None


def test_threshold_stays_within_bounds() -> None:
    clock = FakeClock()
    matcher = make_matcher(clock=clock)
    transcripts = ["kaisigt", "hey kaisit", "hey kaisight", "assistant", "kaisigt"] * 6
    for index, text in enumerate(transcripts):
        clock.now += 7.0 if index % 4 == 0 else 0.5
        matcher.evaluate(text)
        config = matcher.config
        assert config.base_threshold <= config.current_threshold <= THRESHOLD_CEILING


def test_configure_rejects_invalid_values_and_keeps_previous() -> None:
    matcher = make_matcher()
    with pytest.raises(ConfigurationError):
        matcher.configure(base_threshold=1.2)
    with pytest.raises(ValueError):
        matcher.configure(phrases=[])
    with pytest.raises(ConfigurationError):
        matcher.configure(max_false_positives=0)

    assert matcher.config.base_threshold == pytest.approx(0.75)
    assert matcher.phrases == ("hey kaisight", "kaisight", "assistant")

    matcher.configure(phrases=["Hello  Helper"], base_threshold=0.8)
    assert matcher.phrases == ("hello helper",)
    assert matcher.config.current_threshold == pytest.approx(0.8)
