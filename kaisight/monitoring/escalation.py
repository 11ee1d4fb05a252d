from __future__ import annotations

import asyncio

import httpx

from kaisight.orchestrator.events import RiskEvent
from kaisight.telemetry.logging import get_logger


class EmergencyNotifier:
    """Records emergencies and, when a webhook is configured, posts the event to it.

    `trigger` never blocks the caller; delivery failures are logged.
    """

    def __init__(self, webhook_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self._webhook_url = webhook_url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        self._pending: set[asyncio.Task] = set()
        self._logger = get_logger(__name__)

    def trigger(self, event: RiskEvent) -> None:
        self._logger.critical("emergency.triggered", risk=event.to_dict(), webhook=bool(self._webhook_url))
        if not self._webhook_url:
            return
        task = asyncio.create_task(self._deliver(event), name="emergency-webhook")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: RiskEvent) -> None:
        try:
            resp = await self._client.post(self._webhook_url, json={"type": "emergency", "event": event.to_dict()})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            self._logger.error("emergency.webhook.failed", error=str(exc))
            return
        self._logger.info("emergency.webhook.delivered", status=resp.status_code)

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._client.aclose()


__all__ = ["EmergencyNotifier"]
