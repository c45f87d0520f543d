from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - runtime import guard (PortAudio missing)
    sd = None  # type: ignore

from .config import ToneConfig
from .errors import AudioUnavailable
from .synth import ChainParams, ToneChain

logger = logging.getLogger(__name__)

StopHandle = Callable[[], None]


class TransmissionSession:
    """One continuous tone emission. Owns its chain and output stream."""

    def __init__(self, frequency_hz: int, cfg: ToneConfig):
        self.frequency_hz = int(frequency_hz)
        self.waveform = cfg.waveform
        self.highpass_hz = cfg.highpass_hz
        self.gain = cfg.gain
        self.sample_rate = cfg.output_sample_rate
        self.device = cfg.output_device
        self.chain = ToneChain(
            ChainParams(
                frequency=self.frequency_hz,
                sample_rate=self.sample_rate,
                highpass_hz=self.highpass_hz,
                gain=self.gain,
            )
        )
        self._stream = None
        self._stopped = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._stream is not None

    def _callback(self, outdata, frames, time_info, status):  # type: ignore
        if status:
            logger.warning("Output stream status: %s", status)
        outdata[:] = self.chain.render(frames)[:, None]

    def start(self) -> None:
        if sd is None:
            raise AudioUnavailable("sounddevice not available; install sounddevice and PortAudio")
        try:
            stream = sd.OutputStream(
                device=self.device,
                channels=1,
                samplerate=self.sample_rate,
                dtype="float32",
                callback=self._callback,
            )
        except Exception as e:
            raise AudioUnavailable(f"Cannot open output device: {e}") from e
        try:
            stream.start()
        except Exception as e:
            stream.close()
            raise AudioUnavailable(f"Cannot start playback: {e}") from e
        self._stream = stream
        logger.info("Transmitting %d Hz %s tone (highpass %g Hz, gain %g)", self.frequency_hz, self.waveform, self.highpass_hz, self.gain)

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            logger.info("Transmission at %d Hz stopped", self.frequency_hz)


class ToneTransmitter:
    def __init__(self, config: Optional[ToneConfig] = None):
        self.config = (config or ToneConfig()).validate()

    def open_session(self, frequency_hz: Optional[int] = None) -> TransmissionSession:
        freq = self.config.frequency_hz if frequency_hz is None else frequency_hz
        session = TransmissionSession(freq, self.config)
        session.start()
        return session

    def start_transmission(self, frequency_hz: Optional[int] = None) -> StopHandle:
        """Start playing the tone and return a handle that stops it.

        The handle takes no arguments and may be called any number of times;
        only the first call releases the output stream.
        """
        return self.open_session(frequency_hz).stop


def start_transmission(frequency_hz: Optional[int] = None, config: Optional[ToneConfig] = None) -> StopHandle:
    return ToneTransmitter(config).start_transmission(frequency_hz)
