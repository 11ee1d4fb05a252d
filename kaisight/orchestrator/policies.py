from __future__ import annotations

from dataclasses import dataclass, field

from kaisight.orchestrator.events import Severity


@dataclass
class ContinuationPolicy:
    """Keeps the conversation open when a reply offers more help.

    The phrase list is English only; other locales simply end the turn.
    """

    phrases: tuple[str, ...] = ("what else", "anything else", "tell me more", "do you need")

    def should_continue(self, response: str) -> bool:
        lowered = response.lower()
        return any(phrase in lowered for phrase in self.phrases)


@dataclass
class RiskPolicy:
    guidance_interval_seconds: float = 300.0
    repeat_intervals: dict[Severity, float] = field(
        default_factory=lambda: {
            Severity.CRITICAL: 60.0,
            Severity.HIGH: 300.0,
            Severity.MEDIUM: 900.0,
        }
    )

    def guidance_allowed(self, severity: Severity, now: float, last_guidance: float | None) -> bool:
        if severity >= Severity.HIGH:
            return True
        if severity < Severity.MEDIUM:
            return False
        return last_guidance is None or now - last_guidance > self.guidance_interval_seconds

    def repeat_interval(self, severity: Severity) -> float:
        return self.repeat_intervals.get(severity, 0.0)

    @classmethod
    def from_names(cls, guidance_interval_seconds: float, intervals: dict[str, float]) -> "RiskPolicy":
        mapped = {Severity[name.upper()]: float(seconds) for name, seconds in intervals.items()}
        return cls(guidance_interval_seconds=guidance_interval_seconds, repeat_intervals=mapped)


__all__ = ["ContinuationPolicy", "RiskPolicy"]
