from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

PartialCallback = Callable[[str], None]


class ResponseGenerator(Protocol):
    name: str

    async def generate(self, prompt: str, on_partial: PartialCallback | None = None) -> str: ...


def time_of_day(moment: datetime) -> str:
    hour = moment.hour
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


@dataclass(slots=True)
class PromptContext:
    command: str
    history: str
    now: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def compose(self) -> str:
        lines = [f"As KaiSight, an AI assistant for visually impaired users, respond to: '{self.command}'", ""]
        if self.history:
            lines += ["Recent conversation:", self.history, ""]
        lines.append("Current context:")
        lines.append(f"- Time: {self.now.strftime('%I:%M %p').lstrip('0')} ({time_of_day(self.now)})")
        for key, value in self.metadata.items():
            lines.append(f"- {key.replace('_', ' ').capitalize()}: {value}")
        lines.append("- User is using voice commands")
        lines.append("- Provide concise, helpful responses optimized for speech")
        return "\n".join(lines)


__all__ = ["PartialCallback", "PromptContext", "ResponseGenerator", "time_of_day"]
