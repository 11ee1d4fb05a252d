from __future__ import annotations

from collections.abc import Callable

from kaisight.orchestrator.events import Obstacle


class ReportedRiskSources:
    """Risk inputs gathered from the agent and from sensor reports pushed over HTTP.

    Lighting keeps the latest reading; obstacles are handed out once and then
    cleared, so each report is evaluated on the next tick only.
    """

    def __init__(self, inactivity: Callable[[], float]) -> None:
        self._inactivity = inactivity
        self._lighting: float | None = None
        self._obstacles: list[Obstacle] = []

    def report_lighting(self, level: float) -> None:
        self._lighting = level

    def report_obstacles(self, obstacles: list[Obstacle]) -> None:
        self._obstacles.extend(obstacles)

    async def inactivity_seconds(self) -> float | None:
        return self._inactivity()

    async def lighting_level(self) -> float | None:
        return self._lighting

    async def obstacles(self) -> list[Obstacle] | None:
        if not self._obstacles:
            return None
        reported, self._obstacles = self._obstacles, []
        return reported


__all__ = ["ReportedRiskSources"]
