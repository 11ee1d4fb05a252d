from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from kaisight.audio.capture import MicrophoneSource
from kaisight.audio.frontend import AudioFrontEnd
from kaisight.audio.noise import NoiseEstimator
from kaisight.audio.pipeline import ListeningPipeline
from kaisight.audio.vad import VoiceActivityDetector
from kaisight.audio.wakeword.matcher import WakeWordMatcher
from kaisight.config import AppSettings, load_settings
from kaisight.errors import DetectorUnavailable
from kaisight.llm.providers.ollama import OllamaResponder
from kaisight.memory.conversation import ConversationMemory
from kaisight.monitoring.escalation import EmergencyNotifier
from kaisight.monitoring.risk import RiskMonitor
from kaisight.monitoring.sources import ReportedRiskSources
from kaisight.orchestrator.events import Obstacle, Point3, RecognitionFailed
from kaisight.orchestrator.state_machine import ConversationStateMachine
from kaisight.telemetry.logging import configure_logging, get_logger
from kaisight.telemetry.tracing import configure_tracing
from kaisight.transcription import VoskStream
from kaisight.transcription.base import TranscriptionEngine
from kaisight.tts.kokoro import KokoroSpeechBackend
from kaisight.tts.queue import LoggingSpeechBackend, SpeechBackend, SpeechQueue
from kaisight.ui.websocket import FloatingUIBridge

settings = load_settings()
configure_logging(settings.telemetry.log_level, settings.telemetry.json_logs)
configure_tracing("kaisight-agent", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

app = FastAPI(title="KaiSight Agent")
ui_bridge = FloatingUIBridge()

origins = {settings.ui.floating_ui_origin}
if "localhost" in settings.ui.floating_ui_origin:
    origins.add(settings.ui.floating_ui_origin.replace("localhost", "127.0.0.1"))
app.include_router(ui_bridge.router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.on_event("startup")
async def startup_event() -> None:
    app.state.runtime = await bootstrap_runtime(settings)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.shutdown()


def _runtime() -> "Runtime":
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime unavailable")
    return runtime


@app.get("/agent/status")
async def agent_status() -> dict[str, Any]:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        return {"state": "offline", "status": "Agent offline"}
    return runtime.status()


@app.post("/agent/activate")
async def agent_activate() -> dict[str, str]:
    _runtime().machine.manual_activation()
    logger.info("manual.endpoint.activate")
    return {"status": "ok"}


@app.post("/agent/deactivate")
async def agent_deactivate() -> dict[str, str]:
    _runtime().machine.manual_deactivation()
    logger.info("manual.endpoint.deactivate")
    return {"status": "ok"}


class LightingReport(BaseModel):
    level: float


class ObstacleReport(BaseModel):
    identifier: str
    description: str
    distance: float
    confidence: float = 1.0
    location: tuple[float, float, float] | None = None


class ObstacleBatch(BaseModel):
    obstacles: list[ObstacleReport] = Field(default_factory=list)


@app.post("/risk/lighting")
async def report_lighting(report: LightingReport) -> dict[str, str]:
    _runtime().sources.report_lighting(report.level)
    return {"status": "ok"}


@app.post("/risk/obstacles")
async def report_obstacles(batch: ObstacleBatch) -> dict[str, int]:
    obstacles = [
        Obstacle(
            identifier=item.identifier,
            description=item.description,
            distance=item.distance,
            confidence=item.confidence,
            location=Point3(*item.location) if item.location else None,
        )
        for item in batch.obstacles
    ]
    _runtime().sources.report_obstacles(obstacles)
    return {"accepted": len(obstacles)}


class Runtime:
    def __init__(
        self,
        machine: ConversationStateMachine,
        pipeline: ListeningPipeline,
        speech: SpeechQueue,
        monitor: RiskMonitor,
        sources: ReportedRiskSources,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self.machine = machine
        self.pipeline = pipeline
        self.speech = speech
        self.monitor = monitor
        self.sources = sources
        self._closers = closers or []
        self._machine_task: asyncio.Task | None = None
        self._logger = get_logger(__name__)

    async def start(self) -> None:
        self._logger.info("runtime.starting")
        self._machine_task = asyncio.create_task(self.machine.run(), name="agent-loop")
        self.pipeline.run_in_background()
        await self.speech.start()
        await self.monitor.start()
        self.machine.start_wake_word_detection()

    async def shutdown(self) -> None:
        self._logger.info("runtime.shutdown.start")
        await self.monitor.shutdown()
        if self._machine_task:
            self._machine_task.cancel()
            await asyncio.gather(self._machine_task, return_exceptions=True)
            self._machine_task = None
        await self.machine.stop()
        await self.pipeline.close()
        await self.speech.shutdown()
        for close in self._closers:
            await close()
        self._logger.info("runtime.shutdown.complete")

    def status(self) -> dict[str, Any]:
        return {
            "state": self.machine.state.value,
            "status": self.machine.status_text(),
            "conversation_active": self.machine.conversation_active,
            "armed_timers": sorted(self.machine.armed_timers()),
            "recognition_failures": self.machine.recognition_failures,
        }


def build_transcriber(app_settings: AppSettings) -> TranscriptionEngine:
    if VoskStream is None:
        raise DetectorUnavailable("vosk is not installed")
    return VoskStream(app_settings.transcription.vosk_model_path, app_settings.audio.sample_rate)


def build_speech_backend(app_settings: AppSettings) -> SpeechBackend:
    if app_settings.kokoro.base_url:
        return KokoroSpeechBackend(app_settings.kokoro)
    logger.warning("kokoro.disabled", reason="no KOKORO_API_URL configured")
    return LoggingSpeechBackend()


async def bootstrap_runtime(app_settings: AppSettings) -> Runtime:
    agent = app_settings.agent
    wakeword = app_settings.wakeword
    vad_settings = app_settings.vad
    audio_settings = app_settings.audio

    noise = NoiseEstimator()
    vad = VoiceActivityDetector(
        silence_threshold_db=vad_settings.silence_threshold_db,
        voice_threshold_db=vad_settings.voice_threshold_db,
        min_speech_duration=vad_settings.min_speech_duration,
        noise_gain_db=vad_settings.noise_gain_db,
        threshold_ceiling_db=vad_settings.threshold_ceiling_db,
    )
    frontend = AudioFrontEnd(noise, vad, level_floor_db=audio_settings.level_floor_db)
    microphone = MicrophoneSource(
        samplerate=audio_settings.sample_rate,
        frame_ms=audio_settings.frame_ms,
        device=audio_settings.input_device,
    )
    pipeline = ListeningPipeline(microphone, frontend, lambda: build_transcriber(app_settings))

    matcher = WakeWordMatcher(
        phrases=wakeword.phrases,
        noise_level=noise.current_level,
        base_threshold=wakeword.base_threshold,
        max_false_positives=wakeword.max_false_positives,
        cooldown_seconds=wakeword.cooldown_seconds,
    )
    backend = build_speech_backend(app_settings)
    speech = SpeechQueue(backend)
    responder = OllamaResponder(app_settings.llm)
    notifier = EmergencyNotifier(app_settings.risk.escalation_webhook_url)

    def situational_metadata() -> dict[str, Any]:
        return {"ambient_noise": "high" if noise.is_noisy() else "normal"}

    machine = ConversationStateMachine(
        matcher=matcher,
        memory=ConversationMemory(),
        responder=responder,
        speech=speech,
        audio=pipeline,
        escalation=notifier,
        ui_bridge=ui_bridge,
        settings=agent,
        metadata=situational_metadata,
    )
    vad.set_listener(machine.submit)
    pipeline.bind(
        on_transcript=lambda chunk: machine.on_transcript(chunk.text, chunk.is_final),
        on_failure=lambda error: machine.submit(RecognitionFailed(error)),
    )

    sources = ReportedRiskSources(machine.seconds_since_interaction)
    monitor = RiskMonitor(sources, machine.raise_risk, settings=app_settings.risk)

    closers: list[Callable[[], Awaitable[None]]] = [responder.aclose, notifier.aclose]
    if isinstance(backend, KokoroSpeechBackend):
        closers.append(backend.aclose)

    runtime = Runtime(machine, pipeline, speech, monitor, sources, closers)
    await runtime.start()
    logger.info("runtime.started", phrases=list(wakeword.phrases))
    return runtime


__all__ = ["Runtime", "app", "bootstrap_runtime", "build_speech_backend", "build_transcriber"]
