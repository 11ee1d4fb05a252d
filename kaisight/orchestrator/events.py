from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Union


class AgentState(str, Enum):
    IDLE = "idle"
    LISTENING_FOR_WAKE_WORD = "listening_for_wake_word"
    ACTIVATED = "activated"
    LISTENING_FOR_COMMAND = "listening_for_command"
    PROCESSING = "processing"


class Role(str, Enum):
    USER = "User"
    ASSISTANT = "Assistant"


class Severity(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class SpeechPriority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def for_severity(cls, severity: Severity) -> "SpeechPriority":
        return cls(int(severity))


class RiskKind(str, Enum):
    INACTIVITY = "inactivity"
    LOW_LIGHT = "low_light"
    OBSTACLE = "obstacle"
    EMERGENCY_DETECTED = "emergency_detected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Point3:
    x: float
    y: float
    z: float


@dataclass(slots=True)
class AudioFrame:
    ts: float
    pcm16le: bytes
    energy_db: float


@dataclass(slots=True)
class TranscriptChunk:
    ts: float
    text: str
    range_ms: tuple[int, int]
    is_final: bool = False


@dataclass(slots=True)
class WakeWordCandidate:
    transcript: str
    matched_phrase: str
    confidence: float
    verified: bool


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class Obstacle:
    identifier: str
    description: str
    distance: float
    confidence: float = 1.0
    location: Point3 | None = None


@dataclass(slots=True)
class RiskEvent:
    kind: RiskKind
    severity: Severity
    message: str
    confidence: float
    location: Point3 | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    def is_valid(self) -> bool:
        return math.isfinite(self.confidence) and 0.0 <= self.confidence <= 1.0 and bool(self.message)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.name.lower(),
            "message": self.message,
            "confidence": self.confidence,
            "location": None if self.location is None else [self.location.x, self.location.y, self.location.z],
            "timestamp": self.timestamp.isoformat(),
        }


# Messages consumed by the conversation state machine.


@dataclass(slots=True)
class StartDetection:
    pass


@dataclass(slots=True)
class StopDetection:
    reason: str = "shutdown"


@dataclass(slots=True)
class Deactivate:
    reason: str


@dataclass(slots=True)
class ManualActivation:
    pass


@dataclass(slots=True)
class TranscriptReceived:
    text: str
    is_final: bool


@dataclass(slots=True)
class VoiceStart:
    ts: float


@dataclass(slots=True)
class VoiceEnd:
    ts: float
    duration: float


@dataclass(slots=True)
class RecognitionFailed:
    error: str


@dataclass(slots=True)
class ResponseReady:
    token: int
    text: str


@dataclass(slots=True)
class ResponseFailed:
    token: int
    error: str


@dataclass(slots=True)
class RiskRaised:
    event: RiskEvent


@dataclass(slots=True)
class TimerFired:
    name: str
    token: int


VoiceActivity = Union[VoiceStart, VoiceEnd]

AgentMessage = Union[
    StartDetection,
    StopDetection,
    Deactivate,
    ManualActivation,
    TranscriptReceived,
    VoiceStart,
    VoiceEnd,
    RecognitionFailed,
    ResponseReady,
    ResponseFailed,
    RiskRaised,
    TimerFired,
]


__all__ = [
    "AgentMessage",
    "AgentState",
    "AudioFrame",
    "ConversationTurn",
    "Deactivate",
    "ManualActivation",
    "Obstacle",
    "Point3",
    "RecognitionFailed",
    "ResponseFailed",
    "ResponseReady",
    "RiskEvent",
    "RiskKind",
    "RiskRaised",
    "Role",
    "Severity",
    "SpeechPriority",
    "StartDetection",
    "StopDetection",
    "TimerFired",
    "TranscriptChunk",
    "TranscriptReceived",
    "VoiceActivity",
    "VoiceEnd",
    "VoiceStart",
    "WakeWordCandidate",
]
