from __future__ import annotations

import asyncio

import pytest

from kaisight.orchestrator.events import SpeechPriority
from kaisight.tts.queue import LoggingSpeechBackend, SpeechQueue


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingBackend:
    def __init__(self, hold: bool = False, fail_on: str | None = None) -> None:
        self.spoken: list[str] = []
        self.stops = 0
        self.hold = hold
        self.fail_on = fail_on
        self._release = asyncio.Event()

    async def speak(self, text: str) -> float:
        self.spoken.append(text)
        if text == self.fail_on:
            raise RuntimeError("synthesis failed")
        if self.hold and len(self.spoken) == 1:
            await self._release.wait()
        return 0.1

    async def stop(self) -> None:
        self.stops += 1
        self._release.set()


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached"
        await asyncio.sleep(0.005)


@pytest.mark.anyio("asyncio")
async def test_higher_priority_speech_is_played_first() -> None:
    backend = RecordingBackend()
    queue = SpeechQueue(backend)
    queue.speak("low note", SpeechPriority.LOW)
    queue.speak("reply", SpeechPriority.MEDIUM)
    queue.speak("second reply", SpeechPriority.MEDIUM)
    queue.speak("stop now", SpeechPriority.CRITICAL)

    await queue.start()
    await asyncio.wait_for(queue.join(), timeout=1.0)
    await queue.shutdown()

    assert backend.spoken == ["stop now", "reply", "second reply", "low note"]


@pytest.mark.anyio("asyncio")
async def test_urgent_speech_interrupts_lower_priority_playback() -> None:
    backend = RecordingBackend(hold=True)
    queue = SpeechQueue(backend)
    await queue.start()

    queue.speak("a long description of the room", SpeechPriority.MEDIUM)
    await wait_until(lambda: queue.current is not None)

    queue.speak("Stop. Step ahead.", SpeechPriority.CRITICAL)
    await asyncio.wait_for(queue.join(), timeout=1.0)
    await queue.shutdown()

    assert backend.stops == 1
    assert backend.spoken == ["a long description of the room", "Stop. Step ahead."]


@pytest.mark.anyio("asyncio")
async def test_same_priority_does_not_interrupt() -> None:
    backend = RecordingBackend(hold=True)
    queue = SpeechQueue(backend)
    await queue.start()

    queue.speak("Yes, I'm listening.", SpeechPriority.HIGH)
    await wait_until(lambda: queue.current is not None)
    queue.speak("Here is your answer.", SpeechPriority.HIGH)
    await asyncio.sleep(0.02)

    assert backend.stops == 0
    assert queue.pending() == 1
    await queue.shutdown()


@pytest.mark.anyio("asyncio")
async def test_empty_text_is_ignored_and_failures_do_not_stop_worker() -> None:
    backend = RecordingBackend(fail_on="broken")
    queue = SpeechQueue(backend)
    queue.speak("   ")
    assert queue.pending() == 0

    queue.speak("broken")
    queue.speak("still talking")
    await queue.start()
    await asyncio.wait_for(queue.join(), timeout=1.0)
    await queue.shutdown()

    assert backend.spoken == ["broken", "still talking"]


@pytest.mark.anyio("asyncio")
async def test_logging_backend_reports_no_playback_time() -> None:
    backend = LoggingSpeechBackend()
    assert await backend.speak("hello") == 0.0
    await backend.stop()
