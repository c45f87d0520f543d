from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - runtime import guard (PortAudio missing)
    sd = None  # type: ignore

from .config import ToneConfig

logger = logging.getLogger(__name__)


@dataclass
class DeviceInfo:
    index: int
    name: str
    samplerate: int
    channels: int
    kind: str


def _supports(kind: str, idx: int, rate: int) -> bool:
    check = sd.check_input_settings if kind == "input" else sd.check_output_settings
    try:
        check(device=idx, samplerate=rate, channels=1)
    except Exception as e:
        logger.debug("Device %d cannot do %s @ %d Hz: %s", idx, kind, rate, e)
        return False
    return True


def _probe(kind: str, rate: int) -> Optional[DeviceInfo]:
    key = "max_input_channels" if kind == "input" else "max_output_channels"
    fallback: Optional[DeviceInfo] = None
    for idx, d in enumerate(sd.query_devices()):
        if d.get(key, 0) <= 0:
            continue
        name = d.get("name", "?")
        if _supports(kind, idx, rate):
            return DeviceInfo(index=idx, name=name, samplerate=rate, channels=1, kind=kind)
        if fallback is None:
            fallback = DeviceInfo(
                index=idx,
                name=name,
                samplerate=int(d.get("default_samplerate", 0) or 48000),
                channels=1,
                kind=kind,
            )
    return fallback


def probe_devices(cfg: ToneConfig) -> tuple[Optional[DeviceInfo], Optional[DeviceInfo]]:
    """Pick the first input device able to capture at the detection rate and
    the first output device able to play at the transmit rate.

    A device that only offers another rate is returned with that rate so the
    caller can report the mismatch.
    """
    if sd is None:
        return None, None
    return _probe("input", cfg.sample_rate), _probe("output", cfg.output_sample_rate)
