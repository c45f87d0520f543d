from __future__ import annotations

import math
import threading
from typing import Sequence

import numpy as np
from scipy.signal import get_window


def bin_index(target_hz: float, sample_rate: float, buffer_length: int) -> int:
    """Map a frequency onto one of ``buffer_length`` bins spanning 0 Hz to Nyquist.

    Bins are assumed evenly spaced, so the index is
    ``floor(target_hz / (sample_rate / 2) * buffer_length)``. The expression is
    evaluated in that order so the selected bin matches other implementations
    bit for bit.

    Raises ValueError when ``target_hz`` lies outside ``[0, sample_rate / 2)``.
    """
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    if buffer_length <= 0:
        raise ValueError(f"buffer_length must be positive, got {buffer_length}")
    nyquist = sample_rate / 2
    if not 0 <= target_hz < nyquist:
        raise ValueError(f"target frequency {target_hz} Hz outside [0, {nyquist:g}) Hz for {sample_rate:g} Hz sampling")
    return int(math.floor((target_hz / nyquist) * buffer_length))


def band_energy(snapshot: Sequence[int], index: int) -> int:
    """Peak byte energy over the bins either side of ``index``.

    Neighbours that fall outside the snapshot count as zero.
    """
    n = len(snapshot)
    best = 0
    for i in (index - 1, index, index + 1):
        if 0 <= i < n:
            best = max(best, int(snapshot[i]))
    return best


class SpectrumAnalyser:
    """Byte-scaled magnitude spectrum over the most recent ``fft_size`` samples.

    Each call to :meth:`get_byte_frequency_data` takes the current window,
    applies a Blackman window, smooths magnitudes against the previous call
    and maps the decibel value onto 0-255 between ``min_db`` and ``max_db``.
    """

    def __init__(self, fft_size: int = 4096, smoothing: float = 0.2, min_db: float = -90.0, max_db: float = -10.0):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if min_db >= max_db:
            raise ValueError("min_db must be below max_db")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = get_window("blackman", fft_size, fftbins=True)
        self._buf = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.buffer_length, dtype=np.float64)
        self._lock = threading.Lock()

    @property
    def buffer_length(self) -> int:
        return self.fft_size // 2

    def write(self, samples: np.ndarray) -> None:
        x = np.asarray(samples, dtype=np.float32).reshape(-1)
        if x.size == 0:
            return
        with self._lock:
            if x.size >= self.fft_size:
                self._buf[:] = x[-self.fft_size:]
            else:
                self._buf[:-x.size] = self._buf[x.size:]
                self._buf[-x.size:] = x

    def reset(self) -> None:
        with self._lock:
            self._buf[:] = 0.0
            self._smoothed[:] = 0.0

    def get_float_frequency_data(self) -> np.ndarray:
        with self._lock:
            frame = self._buf.astype(np.float64) * self._window
            mag = np.abs(np.fft.rfft(frame))[: self.buffer_length] / self.fft_size
            tau = self.smoothing
            self._smoothed = tau * self._smoothed + (1.0 - tau) * mag
            smoothed = self._smoothed.copy()
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(smoothed)

    def get_byte_frequency_data(self) -> np.ndarray:
        db = self.get_float_frequency_data()
        scale = 255.0 / (self.max_db - self.min_db)
        scaled = np.clip((db - self.min_db) * scale, 0.0, 255.0)
        return np.floor(scaled).astype(np.uint8)
