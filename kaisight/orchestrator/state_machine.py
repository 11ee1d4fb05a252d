from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, Protocol

from kaisight.audio.wakeword.matcher import WakeWordMatcher
from kaisight.config import AgentSettings
from kaisight.errors import DetectorUnavailable
from kaisight.llm.types import PromptContext, ResponseGenerator
from kaisight.memory.conversation import ConversationMemory
from kaisight.orchestrator.clock import CLOCK, Clock
from kaisight.orchestrator.events import (
    AgentMessage,
    AgentState,
    Deactivate,
    ManualActivation,
    RecognitionFailed,
    ResponseFailed,
    ResponseReady,
    RiskEvent,
    RiskKind,
    RiskRaised,
    Severity,
    SpeechPriority,
    StartDetection,
    StopDetection,
    TimerFired,
    TranscriptReceived,
    VoiceEnd,
    VoiceStart,
)
from kaisight.orchestrator.policies import ContinuationPolicy
from kaisight.orchestrator.timers import TimerService
from kaisight.telemetry.logging import get_logger
from kaisight.telemetry.tracing import get_tracer


class AudioSource(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class SpeechOutput(Protocol):
    def speak(self, text: str, priority: SpeechPriority = SpeechPriority.MEDIUM) -> None: ...


class EmergencyEscalation(Protocol):
    def trigger(self, event: RiskEvent) -> None: ...


class StateBridge(Protocol):
    async def publish_state(self, state: str, payload: dict | None = None) -> None: ...


ACTIVATION = "activation"
LISTENING = "listening"
SILENCE = "silence"
CONTINUATION = "continuation"
REARM = "rearm"
DETECTOR_RETRY = "detector_retry"
RECOGNITION_RETRY = "recognition_retry"

_ACTIVE_STATES = frozenset(
    {
        AgentState.LISTENING_FOR_WAKE_WORD,
        AgentState.ACTIVATED,
        AgentState.LISTENING_FOR_COMMAND,
        AgentState.PROCESSING,
    }
)

# States in which each timer may stay armed; leaving them cancels the timer.
TIMER_SCOPES: dict[str, frozenset[AgentState]] = {
    ACTIVATION: frozenset({AgentState.ACTIVATED}),
    LISTENING: frozenset({AgentState.LISTENING_FOR_COMMAND}),
    SILENCE: frozenset({AgentState.LISTENING_FOR_COMMAND}),
    CONTINUATION: frozenset({AgentState.PROCESSING}),
    REARM: frozenset({AgentState.IDLE}),
    DETECTOR_RETRY: frozenset({AgentState.IDLE}),
    RECOGNITION_RETRY: _ACTIVE_STATES,
}

STATUS_TEXT: dict[AgentState, str] = {
    AgentState.IDLE: "Agent offline",
    AgentState.LISTENING_FOR_WAKE_WORD: "Listening for wake word",
    AgentState.ACTIVATED: "Agent activated",
    AgentState.LISTENING_FOR_COMMAND: "Listening for command",
    AgentState.PROCESSING: "Processing request",
}


class ConversationStateMachine:
    """Single-consumer actor that owns the agent lifecycle.

    Producers (audio, transcription, risk monitor, timers, response tasks)
    only ever call `submit`; `run` applies messages one at a time so exactly
    one `AgentState` is active and transitions never interleave.
    """

    def __init__(
        self,
        matcher: WakeWordMatcher,
        memory: ConversationMemory,
        responder: ResponseGenerator,
        speech: SpeechOutput,
        audio: AudioSource,
        escalation: EmergencyEscalation | None = None,
        ui_bridge: StateBridge | None = None,
        settings: AgentSettings | None = None,
        continuation: ContinuationPolicy | None = None,
        metadata: Callable[[], dict[str, Any]] | None = None,
        clock: Clock = CLOCK,
    ) -> None:
        self._matcher = matcher
        self._memory = memory
        self._responder = responder
        self._speech = speech
        self._audio = audio
        self._escalation = escalation
        self._ui = ui_bridge
        self._settings = settings or AgentSettings()
        self._continuation = continuation or ContinuationPolicy(self._settings.continuation_phrases)
        self._metadata = metadata or dict
        self._clock = clock
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)
        self._queue: asyncio.Queue[AgentMessage] = asyncio.Queue()
        self._timers = TimerService(self.submit, clock)
        self._state = AgentState.IDLE
        self._response_tokens = itertools.count(1)
        self._response_token: int | None = None
        self._response_tasks: set[asyncio.Task] = set()
        self._conversation_active = False
        self._recognition_failures = 0
        self._last_interaction = clock.monotonic()
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            StartDetection: self._on_start_detection,
            StopDetection: self._on_stop_detection,
            Deactivate: self._on_deactivate,
            ManualActivation: self._on_manual_activation,
            TranscriptReceived: self._on_transcript,
            VoiceStart: self._on_voice_start,
            VoiceEnd: self._on_voice_end,
            RecognitionFailed: self._on_recognition_failed,
            ResponseReady: self._on_response_ready,
            ResponseFailed: self._on_response_failed,
            RiskRaised: self._on_risk,
            TimerFired: self._on_timer,
        }
        self._timer_handlers: dict[str, Callable[[], Awaitable[None]]] = {
            ACTIVATION: self._on_activation_elapsed,
            LISTENING: self._on_listening_timeout,
            SILENCE: self._on_silence_timeout,
            CONTINUATION: self._on_continuation_elapsed,
            REARM: self._on_rearm,
            DETECTOR_RETRY: self._on_rearm,
            RECOGNITION_RETRY: self._on_recognition_retry,
        }

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def conversation_active(self) -> bool:
        return self._conversation_active

    @property
    def recognition_failures(self) -> int:
        return self._recognition_failures

    def armed_timers(self) -> set[str]:
        return self._timers.armed()

    def status_text(self) -> str:
        return STATUS_TEXT[self._state]

    def seconds_since_interaction(self) -> float:
        return max(self._clock.monotonic() - self._last_interaction, 0.0)

    # Producer side -----------------------------------------------------

    def submit(self, message: AgentMessage) -> None:
        self._queue.put_nowait(message)

    def start_wake_word_detection(self) -> None:
        self.submit(StartDetection())

    def deactivate(self, reason: str) -> None:
        self.submit(Deactivate(reason))

    def manual_activation(self) -> None:
        self.submit(ManualActivation())

    def manual_deactivation(self) -> None:
        self.submit(Deactivate("manual"))

    def on_transcript(self, text: str, is_final: bool) -> None:
        self.submit(TranscriptReceived(text=text, is_final=is_final))

    def raise_risk(self, event: RiskEvent) -> None:
        self.submit(RiskRaised(event))

    # Consumer side -----------------------------------------------------

    async def run(self) -> None:
        self._logger.info("agent.loop.started")
        try:
            while True:
                message = await self._queue.get()
                try:
                    await self.dispatch(message)
                except Exception as exc:
                    self._logger.error(
                        "agent.dispatch.failed",
                        message=type(message).__name__,
                        error=str(exc),
                        exc_info=True,
                    )
        finally:
            self._logger.info("agent.loop.stopped")

    async def drain(self) -> int:
        """Apply every queued message without waiting for new ones."""
        handled = 0
        while not self._queue.empty():
            await self.dispatch(self._queue.get_nowait())
            handled += 1
        return handled

    async def dispatch(self, message: AgentMessage) -> None:
        handler = self._handlers.get(type(message))
        if handler is None:
            self._logger.warning("agent.message.unknown", message=type(message).__name__)
            return
        await handler(message)

    async def stop(self) -> None:
        """Cancel every timer, stop capture and return to IDLE without re-arming."""
        await self.dispatch(StopDetection("shutdown"))

    # Lifecycle ----------------------------------------------------------

    async def _on_start_detection(self, _: StartDetection) -> None:
        if self._state is not AgentState.IDLE:
            self._logger.debug("agent.start.ignored", state=self._state.value)
            return
        self._timers.cancel(REARM)
        self._timers.cancel(DETECTOR_RETRY)
        try:
            self._audio.start()
        except DetectorUnavailable as exc:
            self._logger.warning(
                "agent.detector.unavailable",
                error=str(exc),
                retry_seconds=self._settings.detector_retry_seconds,
            )
            self._timers.schedule(DETECTOR_RETRY, self._settings.detector_retry_seconds)
            return
        await self._set_state(AgentState.LISTENING_FOR_WAKE_WORD)
        self._logger.info("agent.wakeword.listening", phrases=list(self._matcher.phrases))

    async def _on_stop_detection(self, message: StopDetection) -> None:
        self._timers.cancel_all()
        self._response_token = None
        for task in list(self._response_tasks):
            task.cancel()
        self._conversation_active = False
        self._audio.stop()
        if self._state is not AgentState.IDLE:
            await self._set_state(AgentState.IDLE, {"reason": message.reason})
        self._logger.info("agent.stopped", reason=message.reason)

    async def _on_deactivate(self, message: Deactivate) -> None:
        await self._deactivate(message.reason)

    async def _deactivate(self, reason: str) -> None:
        if self._state is AgentState.IDLE:
            self._logger.debug("agent.deactivate.ignored", reason=reason)
            return
        self._timers.cancel_all()
        self._response_token = None
        self._conversation_active = False
        self._audio.stop()
        if reason == "manual":
            self._speech.speak(self._settings.closing_message, SpeechPriority.MEDIUM)
        await self._set_state(AgentState.IDLE, {"reason": reason})
        self._timers.schedule(REARM, self._settings.rearm_delay_seconds)
        self._logger.info("agent.deactivated", reason=reason)

    async def _on_manual_activation(self, _: ManualActivation) -> None:
        if self._state is not AgentState.LISTENING_FOR_WAKE_WORD:
            self._logger.debug("agent.manual_activation.ignored", state=self._state.value)
            return
        await self._activate(trigger="manual", confidence=1.0)

    async def _activate(self, trigger: str, confidence: float) -> None:
        self._conversation_active = True
        self._last_interaction = self._clock.monotonic()
        await self._set_state(AgentState.ACTIVATED, {"trigger": trigger, "confidence": confidence})
        self._speech.speak(self._settings.activation_message, SpeechPriority.HIGH)
        self._timers.schedule(ACTIVATION, self._settings.activation_delay_seconds)
        self._logger.info("agent.activated", trigger=trigger, confidence=round(confidence, 3))

    async def _start_command_listening(self) -> None:
        await self._set_state(AgentState.LISTENING_FOR_COMMAND)
        self._timers.schedule(LISTENING, self._settings.listening_timeout_seconds)

    # Speech input ------------------------------------------------------

    async def _on_transcript(self, message: TranscriptReceived) -> None:
        self._recognition_failures = 0
        text = " ".join(message.text.lower().split())
        if self._state is AgentState.LISTENING_FOR_WAKE_WORD:
            if not text:
                return
            candidate = self._matcher.evaluate(text)
            if candidate is not None:
                await self._activate(trigger=candidate.matched_phrase, confidence=candidate.confidence)
            return

        if self._state is AgentState.LISTENING_FOR_COMMAND:
            if message.is_final:
                if not text:
                    self._logger.debug("agent.transcript.empty")
                    return
                await self._process_command(text)
            elif len(text) > 10:
                self._logger.debug("agent.transcript.partial", transcript=text)
                await self._publish(AgentState.LISTENING_FOR_COMMAND, {"partial": text})
            return

        self._logger.debug("agent.transcript.discarded", state=self._state.value, is_final=message.is_final)

    async def _on_voice_start(self, _: VoiceStart) -> None:
        if self._state is AgentState.LISTENING_FOR_COMMAND:
            self._timers.cancel(SILENCE)

    async def _on_voice_end(self, message: VoiceEnd) -> None:
        if self._state is not AgentState.LISTENING_FOR_COMMAND:
            return
        self._timers.schedule(SILENCE, self._settings.silence_timeout_seconds)
        self._logger.debug("agent.silence.armed", speech_duration=round(message.duration, 3))

    async def _on_recognition_failed(self, message: RecognitionFailed) -> None:
        self._recognition_failures += 1
        self._logger.warning(
            "agent.recognition.failed",
            error=message.error,
            failures=self._recognition_failures,
            state=self._state.value,
        )
        if self._state is AgentState.IDLE:
            return
        self._audio.stop()
        self._timers.schedule(RECOGNITION_RETRY, self._settings.recognition_retry_seconds)

    # Command processing ------------------------------------------------

    async def _process_command(self, command: str) -> None:
        self._timers.cancel(LISTENING)
        self._timers.cancel(SILENCE)
        self._last_interaction = self._clock.monotonic()
        history = self._memory.recent_history(
            self._settings.history_turns,
            max_age=timedelta(seconds=self._settings.context_timeout_seconds),
        )
        self._memory.add_user_message(command)
        prompt = PromptContext(
            command=command,
            history=history,
            now=self._clock.now().astimezone(),
            metadata=self._metadata(),
        ).compose()
        token = next(self._response_tokens)
        self._response_token = token
        await self._set_state(AgentState.PROCESSING, {"command": command, "token": token})
        task = asyncio.create_task(self._generate(token, prompt), name=f"agent-response:{token}")
        self._response_tasks.add(task)
        task.add_done_callback(self._response_tasks.discard)

    async def _generate(self, token: int, prompt: str) -> None:
        with self._tracer.start_as_current_span("agent.respond") as span:
            span.set_attribute("kaisight.response_token", token)
            span.set_attribute("kaisight.responder", getattr(self._responder, "name", "unknown"))
            try:
                text = await self._responder.generate(prompt, on_partial=self._on_partial_response)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error("agent.response.failed", token=token, error=str(exc))
                self.submit(ResponseFailed(token=token, error=str(exc)))
                return
        self.submit(ResponseReady(token=token, text=text))

    def _on_partial_response(self, partial: str) -> None:
        self._logger.debug("agent.response.partial", preview=partial[:50])

    async def _on_response_ready(self, message: ResponseReady) -> None:
        if message.token != self._response_token or self._state is not AgentState.PROCESSING:
            self._logger.info("agent.response.stale", token=message.token, state=self._state.value)
            return
        self._response_token = None
        self._memory.add_assistant_message(message.text)
        self._speech.speak(message.text, SpeechPriority.HIGH)
        if self._continuation.should_continue(message.text):
            self._timers.schedule(CONTINUATION, self._settings.continuation_delay_seconds)
            self._logger.info("agent.conversation.continuing")
        else:
            await self._deactivate("completed")

    async def _on_response_failed(self, message: ResponseFailed) -> None:
        if message.token != self._response_token:
            self._logger.info("agent.response.stale", token=message.token, state=self._state.value)
            return
        self._response_token = None
        await self._deactivate("response_failed")

    # Risk arbitration --------------------------------------------------

    async def _on_risk(self, message: RiskRaised) -> None:
        event = message.event
        if not event.is_valid():
            self._logger.warning("risk.event.dropped", risk=event.to_dict())
            return
        if event.severity is Severity.CRITICAL:
            await self._escalate(event)
            return
        if event.severity >= Severity.MEDIUM:
            self._speech.speak(event.message, SpeechPriority.for_severity(event.severity))
            self._logger.info("risk.announced", risk=event.to_dict(), state=self._state.value)
            return
        self._logger.info("risk.logged", risk=event.to_dict())

    async def _escalate(self, event: RiskEvent) -> None:
        self._timers.cancel_all()
        self._response_token = None
        self._speech.speak(event.message, SpeechPriority.CRITICAL)
        if event.kind is RiskKind.EMERGENCY_DETECTED and self._escalation is not None:
            try:
                self._escalation.trigger(event)
            except Exception as exc:
                self._logger.error("risk.escalation.failed", error=str(exc), risk=event.to_dict())
        if self._state is AgentState.IDLE:
            try:
                self._audio.start()
            except DetectorUnavailable as exc:
                self._logger.warning("agent.detector.unavailable", error=str(exc))
        self._conversation_active = True
        await self._set_state(AgentState.ACTIVATED, {"risk": event.to_dict()})
        self._timers.schedule(ACTIVATION, self._settings.activation_delay_seconds)
        self._logger.warning("risk.critical.override", risk=event.to_dict())

    # Timers ------------------------------------------------------------

    async def _on_timer(self, message: TimerFired) -> None:
        if not self._timers.consume(message):
            self._logger.debug("timer.stale", timer=message.name, token=message.token)
            return
        await self._timer_handlers[message.name]()

    async def _on_activation_elapsed(self) -> None:
        if self._state is AgentState.ACTIVATED:
            await self._start_command_listening()

    async def _on_listening_timeout(self) -> None:
        if self._state is AgentState.LISTENING_FOR_COMMAND:
            await self._deactivate("timeout")

    async def _on_silence_timeout(self) -> None:
        if self._state is AgentState.LISTENING_FOR_COMMAND:
            await self._deactivate("silence")

    async def _on_continuation_elapsed(self) -> None:
        if self._state is AgentState.PROCESSING and self._conversation_active:
            await self._start_command_listening()

    async def _on_rearm(self) -> None:
        await self._on_start_detection(StartDetection())

    async def _on_recognition_retry(self) -> None:
        if self._state is AgentState.IDLE:
            return
        try:
            self._audio.start()
        except DetectorUnavailable as exc:
            self._logger.warning("agent.recognition.restart_failed", error=str(exc))
            self._timers.schedule(RECOGNITION_RETRY, self._settings.recognition_retry_seconds)
            return
        self._logger.info("agent.recognition.restarted", state=self._state.value)

    # Helpers -----------------------------------------------------------

    async def _set_state(self, state: AgentState, payload: dict[str, Any] | None = None) -> None:
        previous = self._state
        self._state = state
        for name in self._timers.armed():
            if state not in TIMER_SCOPES[name]:
                self._timers.cancel(name)
        self._logger.info("agent.state.transition", previous=previous.value, state=state.value)
        await self._publish(state, payload)

    async def _publish(self, state: AgentState, payload: dict[str, Any] | None = None) -> None:
        if self._ui is None:
            return
        await self._ui.publish_state(state.value, {"status": STATUS_TEXT[state], **(payload or {})})


__all__ = [
    "AudioSource",
    "ConversationStateMachine",
    "EmergencyEscalation",
    "SpeechOutput",
    "StateBridge",
    "TIMER_SCOPES",
]
