from __future__ import annotations


class KaiSightError(Exception):
    """Base class for recoverable agent errors."""


class DetectorUnavailable(KaiSightError):
    """Audio capture or the recogniser is not ready yet."""


class RecognitionFailure(KaiSightError):
    """The transcription stream errored out."""


class ConfigurationError(KaiSightError, ValueError):
    """Rejected configuration values; the previous configuration stays active."""


__all__ = ["KaiSightError", "DetectorUnavailable", "RecognitionFailure", "ConfigurationError"]
