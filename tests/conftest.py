"""Shared pytest fixtures: an in-memory stand-in for the audio backend."""

from __future__ import annotations

import time
from typing import Optional

import numpy as np
import pytest

from proximity_tone import detector, devices, transmitter
from proximity_tone.config import ENABLED_ENV, FREQUENCY_ENV


class FakeStream:
    def __init__(self, backend: "FakeSoundDevice", kind: str, **kwargs):
        self.backend = backend
        self.kind = kind
        self.kwargs = kwargs
        self.callback = kwargs.get("callback")
        self.samplerate = kwargs.get("samplerate")
        self.started = False
        self.stop_calls = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def start(self):
        if self.backend.fail_start:
            raise RuntimeError("device busy")
        if self.backend.start_delay:
            time.sleep(self.backend.start_delay)
        self.started = True
        if self.kind == "input" and self.backend.input_signal is not None:
            self.feed(self.backend.input_signal)

    def stop(self):
        self.stop_calls += 1

    def close(self):
        self.close_calls += 1

    def feed(self, samples: np.ndarray):
        block = np.asarray(samples, dtype=np.float32).reshape(-1, 1)
        self.callback(block, len(block), None, None)

    def pull(self, frames: int) -> np.ndarray:
        out = np.zeros((frames, 1), dtype=np.float32)
        self.callback(out, frames, None, None)
        return out


class FakeSoundDevice:
    """Replaces the ``sounddevice`` module inside the package under test."""

    def __init__(self):
        self.streams: list[FakeStream] = []
        self.fail_open_input = False
        self.fail_open_output = False
        self.fail_start = False
        self.input_signal: Optional[np.ndarray] = None
        self.devices: list[dict] = []
        self.supported: set[tuple[int, int]] = set()
        self.mic_rates: Optional[set[float]] = None
        self.default_input_rate = 48000.0
        self.start_delay = 0.0

    def InputStream(self, **kwargs):
        if self.fail_open_input:
            raise RuntimeError("Error querying device -1")
        if self.mic_rates is not None and kwargs.get("samplerate") not in self.mic_rates:
            raise RuntimeError("Error opening InputStream: Invalid sample rate [PaErrorCode -9997]")
        stream = FakeStream(self, "input", **kwargs)
        self.streams.append(stream)
        return stream

    def OutputStream(self, **kwargs):
        if self.fail_open_output:
            raise RuntimeError("Error opening OutputStream: Invalid device")
        stream = FakeStream(self, "output", **kwargs)
        self.streams.append(stream)
        return stream

    def query_devices(self, device=None, kind=None):
        if device is None and kind is None:
            return self.devices
        return {"name": "Fake Mic", "max_input_channels": 1, "default_samplerate": self.default_input_rate}

    def _check(self, device, samplerate, channels):
        if (device, samplerate) not in self.supported:
            raise RuntimeError("Invalid sample rate")

    check_input_settings = _check
    check_output_settings = _check

    def of_kind(self, kind: str) -> list[FakeStream]:
        return [s for s in self.streams if s.kind == kind]


@pytest.fixture
def fake_sd(monkeypatch) -> FakeSoundDevice:
    backend = FakeSoundDevice()
    for mod in (transmitter, detector, devices):
        monkeypatch.setattr(mod, "sd", backend)
    return backend


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # setenv first so monkeypatch restores the variables' absence afterwards
    for key in (FREQUENCY_ENV, ENABLED_ENV):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


def make_tone(freq: float, sample_rate: int, n: int, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(n) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.fixture
def tone():
    return make_tone
