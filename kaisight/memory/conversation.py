from __future__ import annotations

import collections
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Deque

from kaisight.orchestrator.events import ConversationTurn, Role

MAX_TURNS = 50


class ConversationMemory:
    """Bounded, insertion-ordered log of user and assistant turns."""

    def __init__(
        self,
        max_turns: int = MAX_TURNS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._turns: Deque[ConversationTurn] = collections.deque(maxlen=max_turns)
        self._clock = clock

    def add_turn(self, role: Role, content: str) -> ConversationTurn:
        turn = ConversationTurn(role=role, content=content, timestamp=self._clock())
        self._turns.append(turn)
        return turn

    def add_user_message(self, content: str) -> ConversationTurn:
        return self.add_turn(Role.USER, content)

    def add_assistant_message(self, content: str) -> ConversationTurn:
        return self.add_turn(Role.ASSISTANT, content)

    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def recent_history(self, limit: int = 10, max_age: timedelta | None = None) -> str:
        if limit <= 0:
            return ""
        turns = list(self._turns)
        if max_age is not None:
            cutoff = self._clock() - max_age
            turns = [turn for turn in turns if turn.timestamp >= cutoff]
        return "\n".join(f"{turn.role.value}: {turn.content}" for turn in turns[-limit:])

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)


__all__ = ["ConversationMemory", "MAX_TURNS"]
