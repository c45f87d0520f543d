from __future__ import annotations


class ToneError(Exception):
    """Base class for proximity tone failures."""


class AudioUnavailable(ToneError):
    """The output device could not be acquired for transmission."""


class MicrophoneAccessDenied(ToneError):
    """The capture stream could not be opened (no device, or access refused)."""


class DetectionTimeout(ToneError):
    """The caller's time budget elapsed before the tone crossed the threshold."""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Timeout ({timeout_ms / 1000:g}s)")
        self.timeout_ms = timeout_ms
