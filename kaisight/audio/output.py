from __future__ import annotations

import asyncio
import io
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from kaisight.telemetry.logging import get_logger


class AudioOutputController:
    """Plays decoded speech audio one clip at a time; `stop` interrupts the current clip."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._current_tag: Optional[str] = None
        self._current_done: Optional[asyncio.Event] = None
        self._logger = get_logger(__name__)

    @property
    def playing(self) -> bool:
        return self._current_tag is not None

    async def play_bytes(self, audio: bytes, tag: str) -> float:
        if not audio:
            self._logger.warning("audio.output.empty_bytes", tag=tag)
            return 0.0
        try:
            with io.BytesIO(audio) as buffer:
                data, samplerate = sf.read(buffer, dtype="float32")
        except Exception as exc:
            self._logger.error("audio.output.decode_failed", tag=tag, error=str(exc))
            return 0.0
        return await self.play_array(np.asarray(data), int(samplerate), tag)

    async def play_array(self, data: np.ndarray, samplerate: int, tag: str) -> float:
        if samplerate <= 0 or data.size == 0:
            self._logger.warning("audio.output.invalid_payload", tag=tag, samplerate=samplerate, frames=int(data.size))
            return 0.0

        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        started = loop.time()

        def _play() -> None:
            try:
                sd.play(data, samplerate=samplerate, blocking=False)
                sd.wait()
            except Exception as exc:
                self._logger.error("audio.output.play_error", tag=tag, error=str(exc))
            finally:
                loop.call_soon_threadsafe(done.set)

        async with self._lock:
            self._current_tag = tag
            self._current_done = done
            try:
                await asyncio.to_thread(_play)
                await done.wait()
            finally:
                self._current_tag = None
                self._current_done = None
        return max(loop.time() - started, 0.0)

    async def stop(self) -> bool:
        done = self._current_done
        if self._current_tag is None or done is None:
            return False
        self._logger.info("audio.output.interrupted", tag=self._current_tag)
        sd.stop()
        await done.wait()
        return True


__all__ = ["AudioOutputController"]
