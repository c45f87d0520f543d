from __future__ import annotations

import numpy as np
import pytest

from proximity_tone import transmitter
from proximity_tone.config import ToneConfig
from proximity_tone.errors import AudioUnavailable
from proximity_tone.transmitter import ToneTransmitter, start_transmission


def test_start_opens_mono_stream_and_plays(fake_sd) -> None:
    session = ToneTransmitter().open_session()
    (stream,) = fake_sd.of_kind("output")
    assert stream.started
    assert stream.kwargs["samplerate"] == 48000
    assert stream.kwargs["channels"] == 1
    assert session.frequency_hz == 20154
    assert session.waveform == "square"
    assert session.highpass_hz == 18000.0
    assert session.gain == 0.2
    block = stream.pull(1024)
    assert float(np.max(np.abs(block))) > 0.0
    assert float(np.max(np.abs(block))) <= 1.0
    session.stop()


def test_stop_handle_is_idempotent(fake_sd) -> None:
    stop = start_transmission()
    (stream,) = fake_sd.of_kind("output")
    stop()
    stop()
    assert stream.stop_calls == 1
    assert stream.close_calls == 1


def test_session_stop_twice_leaves_it_inactive(fake_sd) -> None:
    session = ToneTransmitter().open_session()
    assert session.active
    session.stop()
    session.stop()
    assert session.active is False
    (stream,) = fake_sd.of_kind("output")
    assert stream.close_calls == 1


def test_frequency_override_and_config_default(fake_sd) -> None:
    tx = ToneTransmitter(ToneConfig(frequency_hz=19000))
    assert tx.open_session().frequency_hz == 19000
    assert tx.open_session(21000).frequency_hz == 21000


def test_missing_backend_is_audio_unavailable(monkeypatch) -> None:
    monkeypatch.setattr(transmitter, "sd", None)
    with pytest.raises(AudioUnavailable):
        start_transmission()


def test_open_failure_leaves_nothing_behind(fake_sd) -> None:
    fake_sd.fail_open_output = True
    with pytest.raises(AudioUnavailable):
        start_transmission()
    assert fake_sd.of_kind("output") == []


def test_start_failure_closes_stream(fake_sd) -> None:
    fake_sd.fail_start = True
    with pytest.raises(AudioUnavailable):
        start_transmission()
    (stream,) = fake_sd.of_kind("output")
    assert stream.close_calls == 1


def test_sessions_do_not_interfere(fake_sd) -> None:
    tx = ToneTransmitter()
    first = tx.open_session(20154)
    second = tx.open_session(19500)
    a, b = fake_sd.of_kind("output")
    first.stop()
    assert a.closed and not b.closed
    assert first.active is False
    assert second.active
    second.stop()
    assert b.closed


def test_rejects_frequency_above_output_nyquist(fake_sd) -> None:
    with pytest.raises(ValueError):
        start_transmission(30000)
    assert fake_sd.of_kind("output") == []
