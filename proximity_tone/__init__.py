"""Proximity tone - near-ultrasonic co-location signaling

One device plays a continuous near-ultrasonic square tone; another listens
for its spectral signature to decide whether the two share a room.
"""

from .config import ToneConfig
from .errors import AudioUnavailable, DetectionTimeout, MicrophoneAccessDenied, ToneError
from .spectral import SpectrumAnalyser, band_energy, bin_index
from .synth import ChainParams, ToneChain
from .transmitter import ToneTransmitter, TransmissionSession, start_transmission
from .detector import DetectionSession, ScanResult, ToneDetector, detect_tone, scan_samples

__all__ = [
    "ToneConfig",
    "ToneError",
    "AudioUnavailable",
    "MicrophoneAccessDenied",
    "DetectionTimeout",
    "bin_index",
    "band_energy",
    "SpectrumAnalyser",
    "ChainParams",
    "ToneChain",
    "ToneTransmitter",
    "TransmissionSession",
    "start_transmission",
    "ToneDetector",
    "DetectionSession",
    "detect_tone",
    "ScanResult",
    "scan_samples",
]
