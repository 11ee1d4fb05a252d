from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from vosk import KaldiRecognizer, Model, SetLogLevel  # type: ignore[import]

from kaisight.errors import DetectorUnavailable, RecognitionFailure
from kaisight.orchestrator.events import TranscriptChunk
from kaisight.telemetry.logging import get_logger
from kaisight.transcription.base import TranscriptionEngine


class VoskStream(TranscriptionEngine):
    """Offline streaming recogniser; emits a partial chunk whenever the hypothesis changes."""

    def __init__(self, model_path: str | None, sample_rate: int = 16_000) -> None:
        if not model_path:
            raise DetectorUnavailable("Vosk model path must be provided.")

        SetLogLevel(-1)
        try:
            self._model = Model(model_path)
        except Exception as exc:
            raise DetectorUnavailable(f"Vosk model could not be loaded from {model_path}") from exc
        self._recognizer = KaldiRecognizer(self._model, sample_rate)
        self._queue: asyncio.Queue[tuple[bytes | None, float, bool]] = asyncio.Queue(maxsize=512)
        self._logger = get_logger(__name__)
        self._closed = False
        self._last_partial = ""
        self._samples_since_final = 0
        self._sample_rate = max(sample_rate, 1)
        self._last_ts = 0.0

    async def enqueue_audio(self, pcm: bytes, ts: float, force: bool = False) -> None:
        if self._closed:
            return
        await self._queue.put((pcm or b"", ts, force))

    async def stream(self) -> AsyncIterator[TranscriptChunk]:
        try:
            while True:
                pcm, ts, force_flush = await self._queue.get()
                if pcm is None:
                    final_chunk = self._flush_final(self._last_ts or ts)
                    if final_chunk:
                        yield final_chunk
                    break

                if pcm:
                    self._last_ts = ts or self._last_ts
                    self._samples_since_final += len(pcm) // 2
                    chunk = self._process_pcm(pcm, self._last_ts)
                    if chunk:
                        yield chunk

                if force_flush:
                    final_chunk = self._flush_final(self._last_ts or ts)
                    if final_chunk:
                        yield final_chunk
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put((None, self._last_ts, False))

    def _process_pcm(self, pcm: bytes, ts: float) -> TranscriptChunk | None:
        try:
            is_final = self._recognizer.AcceptWaveform(pcm)
        except Exception as exc:
            raise RecognitionFailure(f"Vosk rejected audio: {exc}") from exc

        if is_final:
            return self._consume_result(self._recognizer.Result(), ts, is_final=True)
        return self._consume_result(self._recognizer.PartialResult(), ts, is_final=False)

    def _flush_final(self, ts: float) -> TranscriptChunk | None:
        try:
            final_payload = self._recognizer.FinalResult()
        except Exception as exc:
            raise RecognitionFailure(f"Vosk final result failed: {exc}") from exc
        return self._consume_result(final_payload, ts, is_final=True)

    def _consume_result(self, payload: str, ts: float, is_final: bool) -> TranscriptChunk | None:
        if not payload:
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self._logger.debug("vosk.payload.unparsable", payload=payload[:120])
            return None

        text = (data.get("text") or data.get("partial") or "").strip()
        if is_final:
            range_ms = self._current_range_ms()
            self._samples_since_final = 0
            self._last_partial = ""
            if not text:
                return None
            return TranscriptChunk(ts=ts, text=text, range_ms=range_ms, is_final=True)

        if not text or text == self._last_partial:
            return None
        self._last_partial = text
        return TranscriptChunk(ts=ts, text=text, range_ms=self._current_range_ms(), is_final=False)

    def _current_range_ms(self) -> tuple[int, int]:
        end_ms = int((self._samples_since_final / self._sample_rate) * 1000)
        return (0, max(end_ms, 0))


__all__ = ["VoskStream"]
