from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from dataclasses import dataclass

from kaisight.orchestrator.clock import CLOCK, Clock
from kaisight.orchestrator.events import TimerFired
from kaisight.telemetry.logging import get_logger


@dataclass(slots=True)
class TimerHandle:
    name: str
    token: int
    delay: float
    task: asyncio.Task[None] | None = None


class TimerService:
    """Named one-shot timers that post `TimerFired` messages instead of running callbacks.

    At most one timer exists per name: arming a name replaces its previous
    timer. A fired message only counts when `consume` still finds the same
    token, so timers cancelled after they were already queued are ignored.
    """

    def __init__(self, post: Callable[[TimerFired], None], clock: Clock = CLOCK) -> None:
        self._post = post
        self._clock = clock
        self._tokens = itertools.count(1)
        self._handles: dict[str, TimerHandle] = {}
        self._logger = get_logger(__name__)

    def schedule(self, name: str, delay: float) -> TimerHandle:
        self.cancel(name)
        handle = TimerHandle(name=name, token=next(self._tokens), delay=delay)
        handle.task = asyncio.create_task(self._fire_after(handle), name=f"timer:{name}")
        self._handles[name] = handle
        self._logger.debug("timer.armed", timer=name, token=handle.token, delay=delay)
        return handle

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        self._logger.debug("timer.cancelled", timer=name, token=handle.token)
        return True

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.cancel(name)

    def consume(self, fired: TimerFired) -> bool:
        """Claim a fired timer; False for tokens that were cancelled or replaced."""
        handle = self._handles.get(fired.name)
        if handle is None or handle.token != fired.token:
            return False
        del self._handles[fired.name]
        return True

    def armed(self) -> set[str]:
        return set(self._handles)

    def is_armed(self, name: str) -> bool:
        return name in self._handles

    async def _fire_after(self, handle: TimerHandle) -> None:
        await self._clock.sleep(handle.delay)
        self._post(TimerFired(name=handle.name, token=handle.token))


__all__ = ["TimerHandle", "TimerService"]
