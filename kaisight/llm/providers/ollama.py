from __future__ import annotations

import json

import httpx

from kaisight.config import LLMSettings
from kaisight.llm.types import PartialCallback
from kaisight.persona import SYSTEM_PROMPT
from kaisight.telemetry.logging import get_logger


class OllamaResponder:
    """Streams completions from Ollama's `/api/generate` endpoint."""

    def __init__(self, settings: LLMSettings, client: httpx.AsyncClient | None = None) -> None:
        self._host = settings.ollama_host.rstrip("/")
        self._model = settings.model
        self._client = client or httpx.AsyncClient(base_url=self._host, timeout=60.0)
        self._logger = get_logger(__name__)
        self.name = "ollama"

    async def generate(self, prompt: str, on_partial: PartialCallback | None = None) -> str:
        payload = {
            "model": self._model,
            "prompt": prompt,
            "system": SYSTEM_PROMPT,
            "stream": True,
        }
        self._logger.info("ollama.generate", model=self._model, prompt_chars=len(prompt))
        pieces: list[str] = []
        async with self._client.stream("POST", "/api/generate", json=payload) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    self._logger.debug("ollama.line.unparsable", line=line[:120])
                    continue
                if data.get("error"):
                    raise RuntimeError(f"Ollama error: {data['error']}")
                piece = data.get("response", "")
                if piece:
                    pieces.append(piece)
                    if on_partial:
                        on_partial("".join(pieces))
                if data.get("done"):
                    break
        text = "".join(pieces).strip()
        self._logger.info("ollama.generate.completed", chars=len(text))
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["OllamaResponder"]
