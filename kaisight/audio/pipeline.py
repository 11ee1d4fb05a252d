from __future__ import annotations

import asyncio
from collections.abc import Callable

from kaisight.audio.capture import MicrophoneSource
from kaisight.audio.frontend import AudioFrontEnd
from kaisight.errors import RecognitionFailure
from kaisight.orchestrator.events import TranscriptChunk
from kaisight.telemetry.logging import get_logger
from kaisight.transcription.base import TranscriptionEngine

TranscriberFactory = Callable[[], TranscriptionEngine]


class ListeningPipeline:
    """Microphone -> front end -> recogniser, started and stopped as one audio source.

    The recogniser is built lazily on `start`, so a missing model surfaces as
    `DetectorUnavailable` there. After a `RecognitionFailure` the recogniser is
    dropped and rebuilt on the next `start`.
    """

    def __init__(
        self,
        microphone: MicrophoneSource,
        frontend: AudioFrontEnd,
        transcriber_factory: TranscriberFactory,
    ) -> None:
        self._microphone = microphone
        self._frontend = frontend
        self._factory = transcriber_factory
        self._transcriber: TranscriptionEngine | None = None
        self._on_transcript: Callable[[TranscriptChunk], None] | None = None
        self._on_failure: Callable[[str], None] | None = None
        self._tasks: set[asyncio.Task] = set()
        self._logger = get_logger(__name__)

    def bind(
        self,
        on_transcript: Callable[[TranscriptChunk], None],
        on_failure: Callable[[str], None],
    ) -> None:
        self._on_transcript = on_transcript
        self._on_failure = on_failure

    @property
    def transcriber(self) -> TranscriptionEngine | None:
        return self._transcriber

    def start(self) -> None:
        if self._transcriber is None:
            transcriber = self._factory()
            self._transcriber = transcriber
            self._spawn(self._transcribe(transcriber), name="transcription-loop")
        self._microphone.start()

    def stop(self) -> None:
        self._microphone.stop()
        self._frontend.reset()

    def run_in_background(self) -> None:
        self._spawn(self._run_audio_loop(), name="audio-loop")

    async def close(self) -> None:
        await self._microphone.close()
        if self._transcriber is not None:
            await self._transcriber.close()
            self._transcriber = None
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run_audio_loop(self) -> None:
        async for frame in self._microphone.frames():
            self._frontend.process(frame.energy_db, frame.ts)
            transcriber = self._transcriber
            if transcriber is not None and self._microphone.running:
                await transcriber.enqueue_audio(frame.pcm16le, frame.ts)
        self._logger.info("audio.loop.exit")

    async def _transcribe(self, transcriber: TranscriptionEngine) -> None:
        try:
            async for chunk in transcriber.stream():
                if self._on_transcript is not None:
                    self._on_transcript(chunk)
        except RecognitionFailure as exc:
            self._logger.warning("transcription.loop.failed", error=str(exc))
            if self._transcriber is transcriber:
                self._transcriber = None
            if self._on_failure is not None:
                self._on_failure(str(exc))
        finally:
            self._logger.info("transcription.loop.exit")

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


__all__ = ["ListeningPipeline", "TranscriberFactory"]
