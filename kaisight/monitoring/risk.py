from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from typing import Protocol

from kaisight.config import RiskSettings
from kaisight.orchestrator.clock import CLOCK, Clock
from kaisight.orchestrator.events import Obstacle, RiskEvent, RiskKind, Severity
from kaisight.orchestrator.policies import RiskPolicy
from kaisight.telemetry.logging import get_logger


class RiskSources(Protocol):
    async def inactivity_seconds(self) -> float | None: ...

    async def lighting_level(self) -> float | None: ...

    async def obstacles(self) -> list[Obstacle] | None: ...


RiskSink = Callable[[RiskEvent], None]


def classify_inactivity(seconds: float, settings: RiskSettings) -> RiskEvent | None:
    if seconds >= settings.inactivity_critical_seconds:
        hours = int(settings.inactivity_critical_seconds // 3600)
        return RiskEvent(
            kind=RiskKind.EMERGENCY_DETECTED,
            severity=Severity.CRITICAL,
            message=f"No activity detected for over {hours} hours. Contacting your emergency contacts.",
            confidence=0.9,
        )
    if seconds >= settings.inactivity_high_seconds:
        return RiskEvent(
            kind=RiskKind.INACTIVITY,
            severity=Severity.HIGH,
            message="You have been inactive for a long time. Are you okay?",
            confidence=0.8,
        )
    if seconds >= settings.inactivity_medium_seconds:
        return RiskEvent(
            kind=RiskKind.INACTIVITY,
            severity=Severity.MEDIUM,
            message="You have been inactive for about an hour. Consider moving around.",
            confidence=0.7,
        )
    return None


def classify_lighting(level: float, settings: RiskSettings) -> RiskEvent | None:
    if level < settings.lighting_medium_below:
        return RiskEvent(
            kind=RiskKind.LOW_LIGHT,
            severity=Severity.MEDIUM,
            message="It is very dark around you. Consider turning on a light.",
            confidence=0.8,
        )
    if level < settings.lighting_low_below:
        return RiskEvent(
            kind=RiskKind.LOW_LIGHT,
            severity=Severity.LOW,
            message="The lighting around you is dim.",
            confidence=0.6,
        )
    return None


def obstacle_severity(distance: float) -> Severity:
    if distance < 0.5:
        return Severity.CRITICAL
    if distance < 1.0:
        return Severity.HIGH
    if distance < 2.0:
        return Severity.MEDIUM
    return Severity.LOW


def classify_obstacle(obstacle: Obstacle) -> RiskEvent:
    severity = obstacle_severity(obstacle.distance)
    prefix = "Stop. " if severity is Severity.CRITICAL else ""
    return RiskEvent(
        kind=RiskKind.OBSTACLE,
        severity=severity,
        message=f"{prefix}{obstacle.description} {obstacle.distance:.1f} meters ahead.",
        confidence=obstacle.confidence,
        location=obstacle.location,
    )


class RiskMonitor:
    """Polls risk sources on a fixed interval and forwards what the policy allows.

    CRITICAL and HIGH events always reach the sink, MEDIUM events are rate
    limited by the guidance interval and LOW events are only logged. The same
    `(kind, message)` pair is never forwarded twice within its severity's
    repeat interval, and an emergency is raised once per inactivity episode.
    """

    def __init__(
        self,
        sources: RiskSources,
        sink: RiskSink,
        settings: RiskSettings | None = None,
        policy: RiskPolicy | None = None,
        clock: Clock = CLOCK,
    ) -> None:
        self._sources = sources
        self._sink = sink
        self._settings = settings or RiskSettings()
        self._policy = policy or RiskPolicy.from_names(
            self._settings.guidance_interval_seconds, self._settings.repeat_intervals
        )
        self._clock = clock
        self._interval = self._settings.interval_seconds
        self._logger = get_logger(__name__)
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()
        self._last_guidance: float | None = None
        self._last_reported: dict[tuple[RiskKind, str], float] = {}
        self._seen_obstacles: dict[str, float] = {}
        self._emergency_raised = False

    @property
    def last_guidance(self) -> float | None:
        return self._last_guidance

    async def start(self) -> None:
        if self._task:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="risk-monitor")
        self._logger.info("risk.monitor.started", interval=self._interval)

    async def shutdown(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self._logger.info("risk.monitor.stopped")

    async def _run(self) -> None:
        try:
            while not self._stop.is_set():
                try:
                    await self.tick()
                except Exception as exc:
                    self._logger.error("risk.tick.failed", error=str(exc), exc_info=True)
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    continue
        except asyncio.CancelledError:  # pragma: no cover
            pass

    async def tick(self) -> list[RiskEvent]:
        """Run one evaluation pass and return the events handed to the sink."""
        forwarded: list[RiskEvent] = []
        for event in await self._collect():
            if self._forward(event):
                forwarded.append(event)
        return forwarded

    async def _collect(self) -> list[RiskEvent]:
        events: list[RiskEvent] = []

        inactivity = await self._read("inactivity", self._sources.inactivity_seconds)
        if inactivity is not None:
            if self._finite(inactivity, "inactivity"):
                event = None
                if inactivity < 0:
                    self._logger.warning("risk.input.dropped", source="inactivity", value=inactivity)
                else:
                    event = self._classify_inactivity(inactivity)
                if event:
                    events.append(event)

        lighting = await self._read("lighting", self._sources.lighting_level)
        if lighting is not None:
            if self._finite(lighting, "lighting"):
                event = None
                if 0.0 <= lighting <= 1.0:
                    event = classify_lighting(lighting, self._settings)
                else:
                    self._logger.warning("risk.input.dropped", source="lighting", value=lighting)
                if event:
                    events.append(event)

        self._forget_obstacles()
        obstacles = await self._read("obstacles", self._sources.obstacles)
        for obstacle in obstacles or []:
            if obstacle.identifier in self._seen_obstacles:
                continue
            if not self._finite(obstacle.distance, "obstacles") or obstacle.distance < 0:
                continue
            event = classify_obstacle(obstacle)
            if not event.is_valid():
                self._logger.warning("risk.event.dropped", risk=event.to_dict())
                continue
            self._seen_obstacles[obstacle.identifier] = self._clock.monotonic()
            events.append(event)
        return events

    def _classify_inactivity(self, seconds: float) -> RiskEvent | None:
        event = classify_inactivity(seconds, self._settings)
        if event is None or event.kind is not RiskKind.EMERGENCY_DETECTED:
            # Activity resumed below the emergency threshold; arm it again.
            self._emergency_raised = False
            return event
        if self._emergency_raised:
            self._logger.debug("risk.emergency.already_raised", inactivity=seconds)
            return None
        return event

    def _forget_obstacles(self) -> None:
        cutoff = self._clock.monotonic() - self._settings.obstacle_memory_seconds
        expired = [identifier for identifier, seen in self._seen_obstacles.items() if seen <= cutoff]
        for identifier in expired:
            del self._seen_obstacles[identifier]
        if expired:
            self._logger.debug("risk.obstacles.forgotten", count=len(expired))

    async def _read(self, source: str, reader):
        try:
            return await reader()
        except Exception as exc:
            self._logger.warning("risk.source.failed", source=source, error=str(exc))
            return None

    def _finite(self, value: float, source: str) -> bool:
        if isinstance(value, (int, float)) and math.isfinite(value):
            return True
        self._logger.warning("risk.input.dropped", source=source, value=str(value))
        return False

    def _forward(self, event: RiskEvent) -> bool:
        if event.severity is Severity.LOW:
            self._logger.info("risk.logged", risk=event.to_dict())
            return False

        now = self._clock.monotonic()
        key = (event.kind, event.message)
        last = self._last_reported.get(key)
        if last is not None and now - last < self._policy.repeat_interval(event.severity):
            self._logger.debug("risk.event.suppressed", kind=event.kind.value, severity=event.severity.name)
            return False

        if not self._policy.guidance_allowed(event.severity, now, self._last_guidance):
            self._logger.debug("risk.guidance.deferred", kind=event.kind.value, severity=event.severity.name)
            return False

        self._last_reported[key] = now
        self._last_guidance = now
        if event.kind is RiskKind.EMERGENCY_DETECTED:
            self._emergency_raised = True
        self._logger.info("risk.event.raised", risk=event.to_dict())
        self._sink(event)
        return True


__all__ = [
    "RiskMonitor",
    "RiskSink",
    "RiskSources",
    "classify_inactivity",
    "classify_lighting",
    "classify_obstacle",
    "obstacle_severity",
]
