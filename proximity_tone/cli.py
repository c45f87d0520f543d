from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

import numpy as np

from .config import ToneConfig
from .detector import ToneDetector, scan_samples
from .devices import probe_devices
from .errors import ToneError
from .spectral import bin_index
from .synth import ChainParams, ToneChain
from .transmitter import ToneTransmitter


def cmd_probe():
    cfg = ToneConfig.from_env()
    mic, spk = probe_devices(cfg)
    if mic is None and spk is None:
        print("No audio devices available")
        return 1
    for dev, want in ((mic, cfg.sample_rate), (spk, cfg.output_sample_rate)):
        if dev is None:
            continue
        note = "" if dev.samplerate == want else f" (wanted {want} Hz)"
        print(f"{dev.kind.capitalize()}: [{dev.index}] {dev.name} @ {dev.samplerate} Hz{note}")
    return 0


def cmd_bin(freq: Optional[int], rate: int, fft: int):
    cfg = ToneConfig.from_env()
    target = cfg.frequency_hz if freq is None else freq
    try:
        idx = bin_index(target, rate, fft // 2)
    except ValueError as e:
        print(f"Invalid input: {e}")
        return 2
    print(f"{target} Hz @ {rate} Hz, fft {fft}: bin {idx} of {fft // 2}")
    return 0


def cmd_transmit(freq: Optional[int], duration: Optional[float]):
    cfg = ToneConfig.from_env()
    try:
        stop = ToneTransmitter(cfg).start_transmission(freq)
    except (ToneError, ValueError) as e:
        print(f"Transmission failed: {e}")
        return 2
    target = cfg.frequency_hz if freq is None else freq
    print(f"Transmitting {target} Hz (Ctrl+C to stop)")
    try:
        if duration is not None:
            time.sleep(duration)
        else:
            while True:
                time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        stop()
    return 0


def _detection_allowed(cfg: ToneConfig, force: bool) -> bool:
    if cfg.detection_enabled or force:
        return True
    print("Detection disabled (set ULTRASONIC_DETECTION_ENABLED=true or pass --force)")
    return False


def _report_detection(detector: ToneDetector, freq: Optional[int], timeout_ms: Optional[int]) -> int:
    try:
        detected = asyncio.run(detector.detect_with_timeout(freq, timeout_ms))
    except (ToneError, ValueError) as e:
        print(f"Detection failed: {e}")
        return 2
    print("Local client detected" if detected else "No local clients detected")
    return 0


def cmd_detect(freq: Optional[int], timeout_ms: Optional[int], force: bool):
    cfg = ToneConfig.from_env()
    if not _detection_allowed(cfg, force):
        return 1
    return _report_detection(ToneDetector(cfg), freq, timeout_ms)


def cmd_selftest(freq: Optional[int], timeout_ms: Optional[int], force: bool):
    cfg = ToneConfig.from_env()
    if not _detection_allowed(cfg, force):
        return 1
    try:
        stop = ToneTransmitter(cfg).start_transmission(freq)
    except (ToneError, ValueError) as e:
        print(f"Transmission failed: {e}")
        return 2
    try:
        return _report_detection(ToneDetector(cfg), freq, timeout_ms)
    finally:
        stop()


def cmd_render(out_path: str, freq: Optional[int], duration: float, rate: Optional[int]):
    import soundfile as sf

    cfg = ToneConfig.from_env()
    params = ChainParams(
        frequency=cfg.frequency_hz if freq is None else freq,
        sample_rate=rate or cfg.output_sample_rate,
        highpass_hz=cfg.highpass_hz,
        gain=cfg.gain,
    )
    try:
        chain = ToneChain(params)
    except ValueError as e:
        print(f"Invalid input: {e}")
        return 2
    y = chain.render(int(duration * params.sample_rate))
    out = Path(out_path)
    sf.write(str(out), y, params.sample_rate, subtype="PCM_16")
    print(f"Tone written: {out} ({params.frequency:g} Hz, {duration:g}s @ {params.sample_rate} Hz)")
    return 0


def _load_wav(p: Path) -> tuple[np.ndarray, int]:
    import soundfile as sf

    x, sr = sf.read(str(p), always_2d=False, dtype="float32")
    if x.ndim == 2:
        x = x.mean(axis=1)
    return x, int(sr)


def cmd_analyze(wav_path: str, freq: Optional[int]):
    cfg = ToneConfig.from_env()
    p = Path(wav_path)
    if not p.exists():
        print(f"No such file: {p}")
        return 2
    x, sr = _load_wav(p)
    try:
        res = scan_samples(x, sr, freq, cfg)
    except ValueError as e:
        print(f"Invalid input: {e}")
        return 2
    verdict = "detected" if res.detected else "not detected"
    print(f"Bin {res.index} @ {sr} Hz: peak energy {res.peak_energy} over {res.ticks} ticks, {verdict}")
    return 0 if res.detected else 1


def main(argv: list[str] | None = None) -> int:
    import argparse

    ap = argparse.ArgumentParser(prog="proximity-tone")
    ap.add_argument("--log-level", default="warning", choices=["debug", "info", "warning", "error"])
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("probe")
    ap_bin = sub.add_parser("bin")
    ap_bin.add_argument("--freq", type=int, default=None)
    ap_bin.add_argument("--rate", type=int, default=96000)
    ap_bin.add_argument("--fft", type=int, default=4096)
    ap_tx = sub.add_parser("transmit")
    ap_tx.add_argument("--freq", type=int, default=None)
    ap_tx.add_argument("--duration", type=float, default=None, help="Seconds to play (default: until Ctrl+C)")
    for name in ("detect", "selftest"):
        ap_d = sub.add_parser(name)
        ap_d.add_argument("--freq", type=int, default=None)
        ap_d.add_argument("--timeout-ms", type=int, default=None)
        ap_d.add_argument("--force", action="store_true", help="Run even if detection is disabled")
    ap_r = sub.add_parser("render")
    ap_r.add_argument("out")
    ap_r.add_argument("--freq", type=int, default=None)
    ap_r.add_argument("--duration", type=float, default=1.0)
    ap_r.add_argument("--rate", type=int, default=None)
    ap_an = sub.add_parser("analyze")
    ap_an.add_argument("wav")
    ap_an.add_argument("--freq", type=int, default=None)

    ns = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, ns.log_level.upper()), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if ns.cmd == "probe":
        return cmd_probe()
    if ns.cmd == "bin":
        return cmd_bin(ns.freq, ns.rate, ns.fft)
    if ns.cmd == "transmit":
        return cmd_transmit(ns.freq, ns.duration)
    if ns.cmd == "detect":
        return cmd_detect(ns.freq, ns.timeout_ms, ns.force)
    if ns.cmd == "selftest":
        return cmd_selftest(ns.freq, ns.timeout_ms, ns.force)
    if ns.cmd == "render":
        return cmd_render(ns.out, ns.freq, ns.duration, ns.rate)
    if ns.cmd == "analyze":
        return cmd_analyze(ns.wav, ns.freq)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
