from __future__ import annotations

import asyncio
import queue
import time
from collections.abc import AsyncIterator

import numpy as np
import sounddevice as sd

from kaisight.audio.levels import frame_dbfs
from kaisight.errors import DetectorUnavailable
from kaisight.orchestrator.events import AudioFrame
from kaisight.telemetry.logging import get_logger


class MicrophoneSource:
    """Microphone capture that can be started and stopped repeatedly.

    `stop` only pauses the input stream; `frames` keeps waiting until `close`.
    """

    def __init__(
        self,
        samplerate: int = 16_000,
        channels: int = 1,
        frame_ms: int = 30,
        device: str | int | None = None,
    ) -> None:
        self.samplerate = samplerate
        self.channels = channels
        self.frame_ms = frame_ms
        self.frame_samples = int(self.samplerate * self.frame_ms / 1000)
        self._queue: queue.Queue[bytes | None] = queue.Queue()
        self._logger = get_logger(__name__)
        self._stream: sd.InputStream | None = None
        self._device = device

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream:
            return

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[override]
            if status:
                self._logger.warning("audio.capture.status", status=str(status))
            pcm = (indata.copy() * (2**15 - 1)).astype(np.int16).tobytes()
            self._queue.put_nowait(pcm)

        try:
            stream = sd.InputStream(
                samplerate=self.samplerate,
                channels=self.channels,
                blocksize=self.frame_samples,
                dtype="float32",
                callback=callback,
                device=self._device,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise DetectorUnavailable(f"Microphone unavailable: {exc}") from exc
        self._stream = stream
        self._logger.info(
            "audio.capture.started",
            samplerate=self.samplerate,
            frame_ms=self.frame_ms,
            device=self._device,
        )

    def stop(self) -> None:
        if not self._stream:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        self._logger.info("audio.capture.stopped")

    async def close(self) -> None:
        self.stop()
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[AudioFrame]:
        loop = asyncio.get_running_loop()
        while True:
            pcm = await loop.run_in_executor(None, self._queue.get)
            if pcm is None:
                break
            samples = np.frombuffer(pcm, dtype=np.int16)
            yield AudioFrame(ts=time.monotonic(), pcm16le=pcm, energy_db=frame_dbfs(samples))


__all__ = ["MicrophoneSource"]
