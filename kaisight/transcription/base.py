from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from kaisight.orchestrator.events import TranscriptChunk


class TranscriptionEngine(ABC):
    @abstractmethod
    async def enqueue_audio(self, pcm: bytes, ts: float, force: bool = False) -> None:
        """Add audio data for transcription; `force` flushes a final result."""

    @abstractmethod
    async def stream(self) -> AsyncIterator[TranscriptChunk]:
        """Yield partial and final transcript chunks as they arrive.

        Raises `RecognitionFailure` when the recogniser can no longer decode.
        """

    @abstractmethod
    async def close(self) -> None:
        """Cleanup resources."""
