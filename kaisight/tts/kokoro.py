from __future__ import annotations

import itertools

import httpx

from kaisight.audio.output import AudioOutputController
from kaisight.config import KokoroSettings
from kaisight.telemetry.logging import get_logger


class KokoroSpeechBackend:
    """Synthesises speech through a Kokoro OpenAI-style `/v1/audio/speech` endpoint."""

    def __init__(
        self,
        settings: KokoroSettings,
        audio_output: AudioOutputController | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not settings.base_url:
            raise ValueError("Kokoro base_url is required")
        self._base_url = settings.base_url
        self._api_key = settings.api_key
        self._voice = settings.voice
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
        self._audio_output = audio_output or AudioOutputController()
        self._utterances = itertools.count(1)
        self._logger = get_logger(__name__)

    def _build_request(self, text: str) -> dict[str, object]:
        return {
            "model": "kokoro",
            "voice": self._voice,
            "input": text,
            "response_format": "wav",
        }

    async def synthesize(self, text: str) -> bytes:
        payload = self._build_request(text)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        preview = text if len(text) <= 120 else text[:120] + "…"
        self._logger.info("kokoro.tts.request", voice=self._voice, input=preview)
        async with self._client.stream("POST", self._base_url, headers=headers, json=payload) as resp:
            resp.raise_for_status()
            chunks: list[bytes] = []
            async for chunk in resp.aiter_bytes():
                chunks.append(chunk)
        return b"".join(chunks)

    async def speak(self, text: str) -> float:
        audio = await self.synthesize(text)
        return await self._audio_output.play_bytes(audio, tag=f"tts:{next(self._utterances)}")

    async def stop(self) -> None:
        await self._audio_output.stop()

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["KokoroSpeechBackend"]
