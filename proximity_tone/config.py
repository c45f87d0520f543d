from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

DEFAULT_FREQUENCY_HZ = 20154

FREQUENCY_ENV = "ULTRASONIC_FREQUENCY"
ENABLED_ENV = "ULTRASONIC_DETECTION_ENABLED"


@dataclass(frozen=True)
class ToneConfig:
    frequency_hz: int = DEFAULT_FREQUENCY_HZ
    detection_enabled: bool = False
    # Transmitter chain
    waveform: str = "square"
    highpass_hz: float = 18000.0
    gain: float = 0.2
    output_sample_rate: int = 48000
    output_device: Optional[int | str] = None
    # Detector / analyser
    sample_rate: int = 96000
    fft_size: int = 4096
    threshold: int = 64
    smoothing: float = 0.2
    min_db: float = -90.0
    max_db: float = -10.0
    timeout_ms: int = 10000
    poll_interval: float = 1.0 / 60.0
    latency: str = "low"
    input_device: Optional[int | str] = None

    @property
    def buffer_length(self) -> int:
        return self.fft_size // 2

    def with_frequency(self, frequency_hz: Optional[int]) -> "ToneConfig":
        if frequency_hz is None:
            return self
        return replace(self, frequency_hz=int(frequency_hz))

    def validate(self) -> "ToneConfig":
        if self.frequency_hz <= 0:
            raise ValueError(f"frequency_hz must be positive, got {self.frequency_hz}")
        if self.waveform != "square":
            raise ValueError(f"Unsupported waveform: {self.waveform}")
        if not 0.0 <= self.gain <= 1.0:
            raise ValueError(f"gain must be within 0.0-1.0, got {self.gain}")
        if self.fft_size < 32 or self.fft_size & (self.fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {self.fft_size}")
        if not 0.0 <= self.smoothing <= 1.0:
            raise ValueError(f"smoothing must be within 0.0-1.0, got {self.smoothing}")
        if self.min_db >= self.max_db:
            raise ValueError(f"min_db ({self.min_db}) must be below max_db ({self.max_db})")
        if not 0 <= self.threshold <= 255:
            raise ValueError(f"threshold must be on the 0-255 byte scale, got {self.threshold}")
        if self.timeout_ms <= 0 or self.poll_interval <= 0:
            raise ValueError("timeout_ms and poll_interval must be positive")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "ToneConfig":
        raw_freq = _env(FREQUENCY_ENV)
        freq = DEFAULT_FREQUENCY_HZ
        if raw_freq is not None and raw_freq.strip():
            try:
                freq = int(raw_freq.strip())
            except ValueError as e:
                raise ValueError(f"{FREQUENCY_ENV} must be an integer, got {raw_freq!r}") from e
        enabled = (_env(ENABLED_ENV) or "").strip().lower() == "true"
        values = {"frequency_hz": freq, "detection_enabled": enabled}
        values.update(overrides)
        return cls(**values).validate()


def _env(key: str) -> Optional[str]:
    load_dotenv(dotenv_path=".env.local", override=False)
    load_dotenv(override=False)
    return os.environ.get(key)
