from __future__ import annotations

from proximity_tone import devices
from proximity_tone.config import ToneConfig
from proximity_tone.devices import probe_devices


def _devices():
    return [
        {"name": "Built-in Microphone", "max_input_channels": 1, "max_output_channels": 0, "default_samplerate": 48000.0},
        {"name": "USB96 Interface", "max_input_channels": 2, "max_output_channels": 2, "default_samplerate": 96000.0},
        {"name": "Speakers", "max_input_channels": 0, "max_output_channels": 2, "default_samplerate": 48000.0},
    ]


def test_probe_prefers_device_supporting_rate(fake_sd) -> None:
    fake_sd.devices = _devices()
    fake_sd.supported = {(1, 96000), (2, 48000)}
    mic, spk = probe_devices(ToneConfig())
    assert (mic.index, mic.samplerate, mic.kind) == (1, 96000, "input")
    assert (spk.index, spk.samplerate, spk.kind) == (2, 48000, "output")


def test_probe_falls_back_to_default_rate(fake_sd) -> None:
    fake_sd.devices = _devices()[:1]
    mic, spk = probe_devices(ToneConfig())
    assert mic.index == 0
    assert mic.samplerate == 48000
    assert spk is None


def test_probe_without_backend(monkeypatch) -> None:
    monkeypatch.setattr(devices, "sd", None)
    assert probe_devices(ToneConfig()) == (None, None)
