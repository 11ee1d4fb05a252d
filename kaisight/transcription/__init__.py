try:
    from kaisight.transcription.vosk import VoskStream
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    VoskStream = None  # type: ignore[assignment]

__all__ = ["VoskStream"]
