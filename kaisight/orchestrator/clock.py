from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone


class Clock:
    """Wall/monotonic time plus asyncio sleeping, swappable in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


CLOCK = Clock()


__all__ = ["Clock", "CLOCK"]
