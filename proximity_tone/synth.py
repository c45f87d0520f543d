from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi


def _butter_highpass(cut: float, fs: int, order: int = 2):
    nyq = 0.5 * fs
    return butter(order, cut / nyq, btype="highpass", output="sos")


class SquareOscillator:
    """Band-limited square wave with phase carried across blocks.

    Odd harmonics are summed up to the Nyquist frequency, so tones close to
    Nyquist come out as a plain sinusoid rather than an aliased mess.
    """

    def __init__(self, frequency: float, sample_rate: int):
        if frequency <= 0:
            raise ValueError(f"frequency must be positive, got {frequency}")
        if frequency >= sample_rate / 2:
            raise ValueError(f"frequency {frequency} Hz is not below Nyquist for {sample_rate} Hz output")
        self.frequency = float(frequency)
        self.sample_rate = int(sample_rate)
        top = int((sample_rate / 2) // frequency)
        self._harmonics = np.arange(1, top + 1, 2, dtype=np.float64)
        self._phase = 0.0

    def generate(self, frames: int) -> np.ndarray:
        step = self.frequency / self.sample_rate
        cycles = self._phase + np.arange(frames) * step
        # Update phase for continuity
        self._phase = (self._phase + frames * step) % 1.0
        arg = 2 * np.pi * np.outer(cycles, self._harmonics)
        return (4 / np.pi) * (np.sin(arg) / self._harmonics).sum(axis=1)


@dataclass
class ChainParams:
    frequency: float
    sample_rate: int = 48000
    highpass_hz: float = 18000.0
    gain: float = 0.2


class ToneChain:
    """oscillator -> highpass -> gain, rendered block by block."""

    def __init__(self, params: ChainParams):
        if params.highpass_hz >= params.sample_rate / 2:
            raise ValueError(f"highpass cutoff {params.highpass_hz} Hz needs a sample rate above {2 * params.highpass_hz:g} Hz")
        self.params = params
        self.oscillator = SquareOscillator(params.frequency, params.sample_rate)
        self._sos = _butter_highpass(params.highpass_hz, params.sample_rate)
        self._zi = sosfilt_zi(self._sos) * 0.0

    def render(self, frames: int) -> np.ndarray:
        x = self.oscillator.generate(frames)
        y, self._zi = sosfilt(self._sos, x, zi=self._zi)
        return (self.params.gain * y).astype(np.float32)
