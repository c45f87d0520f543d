from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - runtime import guard (PortAudio missing)
    sd = None  # type: ignore

from .config import ToneConfig
from .errors import DetectionTimeout, MicrophoneAccessDenied
from .spectral import SpectrumAnalyser, band_energy, bin_index

logger = logging.getLogger(__name__)


def _make_analyser(cfg: ToneConfig) -> SpectrumAnalyser:
    return SpectrumAnalyser(
        fft_size=cfg.fft_size,
        smoothing=cfg.smoothing,
        min_db=cfg.min_db,
        max_db=cfg.max_db,
    )


class DetectionSession:
    """One listening attempt. Owns its capture stream and analyser.

    ``release`` closes the stream exactly once, however many exit paths
    reach it.
    """

    def __init__(self, frequency_hz: int, cfg: ToneConfig):
        self.frequency_hz = int(frequency_hz)
        self.sample_rate = float(cfg.sample_rate)
        self.threshold = cfg.threshold
        self.latency = cfg.latency
        self.device = cfg.input_device
        self.analyser = _make_analyser(cfg)
        self.index: Optional[int] = None
        self.last_energy = 0
        self._stream = None
        self._released = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._stream is not None

    def _callback(self, indata, frames, time_info, status):  # type: ignore
        if status:
            logger.warning("Input stream status: %s", status)
        self.analyser.write(indata[:, 0])

    def _start_stream(self, rate: float):
        stream = sd.InputStream(
            device=self.device,
            channels=1,
            samplerate=rate,
            latency=self.latency,
            dtype="float32",
            callback=self._callback,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        return stream

    def _start_at_device_rate(self, first: Exception):
        # PortAudio does not resample; most built-in mics only run at 44.1/48 kHz
        try:
            rate = float(sd.query_devices(self.device, "input")["default_samplerate"])
        except Exception as e:
            raise MicrophoneAccessDenied(f"Cannot open microphone: {first}") from e
        if not rate or rate == self.sample_rate:
            raise MicrophoneAccessDenied(f"Cannot open microphone: {first}") from first
        logger.warning("Capture at %g Hz failed (%s); retrying at device rate %g Hz", self.sample_rate, first, rate)
        try:
            return self._start_stream(rate)
        except Exception as e:
            raise MicrophoneAccessDenied(f"Cannot open microphone: {e}") from e

    def open(self) -> None:
        if sd is None:
            raise MicrophoneAccessDenied("sounddevice not available; install sounddevice and PortAudio")
        try:
            stream = self._start_stream(self.sample_rate)
        except Exception as e:
            stream = self._start_at_device_rate(e)
        self._stream = stream
        self.sample_rate = float(stream.samplerate)
        try:
            self.index = bin_index(self.frequency_hz, self.sample_rate, self.analyser.buffer_length)
        except ValueError:
            self.release()
            raise
        logger.info(
            "Listening for %d Hz: rate=%g Hz, bin %d of %d",
            self.frequency_hz,
            self.sample_rate,
            self.index,
            self.analyser.buffer_length,
        )

    def tick(self) -> bool:
        """Read one spectrum snapshot; True once energy exceeds the threshold."""
        data = self.analyser.get_byte_frequency_data()
        energy = band_energy(data, self.index)
        self.last_energy = energy
        if logger.isEnabledFor(logging.DEBUG):
            lo = max(self.index - 1, 0)
            logger.debug("bin %d energy=%d bins=%s", self.index, energy, data[lo:self.index + 2].tolist())
        return energy > self.threshold

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            logger.debug("Capture stream for %d Hz closed", self.frequency_hz)


class ToneDetector:
    def __init__(self, config: Optional[ToneConfig] = None):
        self.config = (config or ToneConfig()).validate()

    def open_session(self, frequency_hz: Optional[int] = None) -> DetectionSession:
        freq = self.config.frequency_hz if frequency_hz is None else frequency_hz
        session = DetectionSession(freq, self.config)
        session.open()
        return session

    async def detect_tone(self, frequency_hz: Optional[int] = None, cancel: Optional[asyncio.Event] = None) -> bool:
        """Listen until the tone is heard or ``cancel`` is set.

        Returns True on detection and False when cancelled. The loop itself
        never times out; use :meth:`detect_with_timeout` for a bounded wait.
        Raises MicrophoneAccessDenied if capture cannot start. The device is
        opened on the default executor so the event loop keeps running.
        """
        opening = asyncio.get_running_loop().run_in_executor(None, self.open_session, frequency_hz)
        try:
            session = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The open cannot be interrupted; wait for it and close what it opened
            await asyncio.wait([opening])
            if not opening.cancelled() and opening.exception() is None:
                opening.result().release()
            raise
        try:
            while True:
                if cancel is not None and cancel.is_set():
                    logger.info("Detection at %d Hz cancelled", session.frequency_hz)
                    return False
                if session.tick():
                    logger.info("Tone detected at %d Hz (energy %d)", session.frequency_hz, session.last_energy)
                    return True
                await asyncio.sleep(self.config.poll_interval)
        finally:
            session.release()

    async def detect_with_timeout(
        self,
        frequency_hz: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> bool:
        budget = self.config.timeout_ms if timeout_ms is None else timeout_ms
        try:
            return await asyncio.wait_for(self.detect_tone(frequency_hz, cancel), budget / 1000.0)
        except asyncio.TimeoutError as e:
            logger.info("No tone within %d ms", budget)
            raise DetectionTimeout(budget) from e


async def detect_tone(frequency_hz: Optional[int] = None, timeout_ms: Optional[int] = None, config: Optional[ToneConfig] = None) -> bool:
    return await ToneDetector(config).detect_with_timeout(frequency_hz, timeout_ms)


@dataclass
class ScanResult:
    detected: bool
    peak_energy: int
    index: int
    ticks: int


def scan_samples(
    samples: np.ndarray,
    sample_rate: int,
    frequency_hz: Optional[int] = None,
    config: Optional[ToneConfig] = None,
) -> ScanResult:
    """Run the live detection rule over a recorded buffer.

    The buffer is fed in ``poll_interval`` sized hops with one threshold check
    per hop, stopping at the first hop above the threshold.
    """
    cfg = (config or ToneConfig()).validate()
    freq = cfg.frequency_hz if frequency_hz is None else frequency_hz
    analyser = _make_analyser(cfg)
    index = bin_index(freq, sample_rate, analyser.buffer_length)
    x = np.asarray(samples, dtype=np.float32)
    if x.ndim == 2:
        x = x.mean(axis=1)
    hop = max(1, int(round(sample_rate * cfg.poll_interval)))
    peak = 0
    ticks = 0
    for start in range(0, len(x), hop):
        analyser.write(x[start:start + hop])
        energy = band_energy(analyser.get_byte_frequency_data(), index)
        ticks += 1
        peak = max(peak, energy)
        if energy > cfg.threshold:
            return ScanResult(detected=True, peak_energy=peak, index=index, ticks=ticks)
    return ScanResult(detected=False, peak_energy=peak, index=index, ticks=ticks)
