from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Protocol

from kaisight.orchestrator.events import SpeechPriority
from kaisight.telemetry.logging import get_logger


class SpeechBackend(Protocol):
    async def speak(self, text: str) -> float: ...

    async def stop(self) -> None: ...


@dataclass(slots=True)
class Utterance:
    text: str
    priority: SpeechPriority
    sequence: int


class LoggingSpeechBackend:
    """Backend for headless runs: logs each utterance instead of playing it."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def speak(self, text: str) -> float:
        self._logger.info("speech.spoken", text=text)
        return 0.0

    async def stop(self) -> None:
        return None


class SpeechQueue:
    """Fire-and-forget speech output.

    Utterances are played one at a time, highest priority first and FIFO
    within a priority. A HIGH or CRITICAL utterance interrupts a lower
    priority utterance that is currently playing.
    """

    def __init__(self, backend: SpeechBackend) -> None:
        self._backend = backend
        self._queue: asyncio.PriorityQueue[tuple[int, int, Utterance]] = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._current: Utterance | None = None
        self._task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._logger = get_logger(__name__)

    @property
    def current(self) -> Utterance | None:
        return self._current

    def pending(self) -> int:
        return self._queue.qsize()

    def speak(self, text: str, priority: SpeechPriority = SpeechPriority.MEDIUM) -> None:
        text = text.strip()
        if not text:
            return
        utterance = Utterance(text=text, priority=priority, sequence=next(self._sequence))
        self._queue.put_nowait((-int(priority), utterance.sequence, utterance))
        self._logger.debug("speech.queued", priority=priority.name, preview=text[:50])
        current = self._current
        if priority >= SpeechPriority.HIGH and current is not None and current.priority < priority:
            self._logger.info("speech.interrupting", current=current.priority.name, incoming=priority.name)
            task = asyncio.create_task(self._backend.stop())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def start(self) -> None:
        if self._task:
            return
        self._task = asyncio.create_task(self._run(), name="speech-queue")
        self._logger.info("speech.queue.started")

    async def shutdown(self) -> None:
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._logger.info("speech.queue.stopped")

    async def join(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            _, _, utterance = await self._queue.get()
            self._current = utterance
            try:
                await self._backend.speak(utterance.text)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error("speech.failed", error=str(exc), priority=utterance.priority.name)
            finally:
                self._current = None
                self._queue.task_done()


__all__ = ["LoggingSpeechBackend", "SpeechBackend", "SpeechQueue", "Utterance"]
