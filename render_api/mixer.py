import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import pyloudnorm as pyln
import soundfile as sf
from scipy.ndimage import minimum_filter1d, uniform_filter1d

from render_api.generators import SAMPLE_RATE

logger = logging.getLogger(__name__)

TARGET_LUFS = -16.0
CEILING_DB = -1.0
LIMITER_WINDOW_MS = 50.0
LAYER_ORDER = ("voice", "music", "solfeggio", "binaural")
LOOPED_LAYERS = {"music"}

MP3_BITRATES = {"low": "128k", "medium": "192k", "high": "320k"}
WAV_SUBTYPES = {"low": "PCM_16", "medium": "PCM_16", "high": "PCM_24"}

StageCallback = Callable[[int, str], None]


@dataclass
class MasterBuffer:
    samples: np.ndarray  # (frames, 2) float32
    sample_rate: int
    integrated_lufs: Optional[float]
    layers: list[str]

    @property
    def duration_sec(self) -> float:
        return self.samples.shape[0] / self.sample_rate

    @property
    def peak(self) -> float:
        return float(np.max(np.abs(self.samples))) if self.samples.size else 0.0


def db_to_linear(db: float) -> float:
    return 10.0 ** (db / 20.0)


def to_stereo(buf: np.ndarray) -> np.ndarray:
    if buf.ndim == 1:
        return np.stack([buf, buf], axis=1)
    if buf.shape[1] == 1:
        return np.repeat(buf, 2, axis=1)
    return buf[:, :2]


def fit_length(buf: np.ndarray, num_frames: int, loop: bool = False) -> np.ndarray:
    """Trim ``buf`` to ``num_frames``, filling any shortfall by looping or with silence."""
    have = buf.shape[0]
    if have >= num_frames:
        return buf[:num_frames]
    if loop and have > 0:
        reps = -(-num_frames // have)
        tiled = np.concatenate([buf] * reps, axis=0)
        return tiled[:num_frames]
    pad = [(0, num_frames - have)] + [(0, 0)] * (buf.ndim - 1)
    return np.pad(buf, pad)


def build_voice_track(
    voice: np.ndarray,
    duration_sec: float,
    pause_sec: float,
    start_delay_sec: float = 0.0,
    loop: bool = True,
    sr: int = SAMPLE_RATE,
) -> np.ndarray:
    """Lay the voice segment out over the full duration.

    ``start_delay_sec`` of silence comes first. In loop mode the segment repeats
    with ``pause_sec`` of silence between repetitions while a whole repetition
    still fits; otherwise it plays once.
    """
    total = int(round(duration_sec * sr))
    out = np.zeros(total, dtype=np.float32)
    seg = voice.shape[0]
    pos = min(int(round(start_delay_sec * sr)), total)
    gap = int(round(pause_sec * sr))

    if seg == 0 or pos >= total:
        return out

    first = min(seg, total - pos)
    out[pos : pos + first] = voice[:first]
    pos += seg + gap
    repeats = 1
    while loop and pos + seg <= total:
        out[pos : pos + seg] = voice
        pos += seg + gap
        repeats += 1
    logger.info(f"Voice laid out: {repeats} repetition(s) over {duration_sec:.0f}s")
    return out


def apply_fades(buf: np.ndarray, sr: int, fade_in_sec: float = 0.0, fade_out_sec: float = 0.0) -> np.ndarray:
    out = buf.copy()
    n = out.shape[0]
    fi = min(int(fade_in_sec * sr), n)
    fo = min(int(fade_out_sec * sr), n)
    shape = (-1,) + (1,) * (out.ndim - 1)
    if fi > 0:
        out[:fi] *= np.linspace(0.0, 1.0, fi, dtype=np.float32).reshape(shape)
    if fo > 0:
        out[n - fo :] *= np.linspace(1.0, 0.0, fo, dtype=np.float32).reshape(shape)
    return out


def measure_lufs(buf: np.ndarray, sr: int) -> Optional[float]:
    """Integrated loudness, or None when the buffer is too short or silent to measure."""
    meter = pyln.Meter(sr)
    if buf.shape[0] < int(meter.block_size * sr):
        return None
    loudness = float(meter.integrated_loudness(buf))
    return loudness if np.isfinite(loudness) else None


def normalize_loudness(buf: np.ndarray, sr: int, target_lufs: float = TARGET_LUFS) -> tuple[np.ndarray, Optional[float]]:
    measured = measure_lufs(buf, sr)
    if measured is None:
        logger.info("Loudness not measurable, skipping normalization")
        return buf, None
    gain = db_to_linear(target_lufs - measured)
    logger.info(f"Normalizing {measured:.1f} LUFS -> {target_lufs:.1f} LUFS (gain {target_lufs - measured:+.1f} dB)")
    return (buf * gain).astype(np.float32), target_lufs


def peak_limit(buf: np.ndarray, ceiling_db: float = CEILING_DB, sr: int = SAMPLE_RATE) -> np.ndarray:
    """Pull peaks under ``ceiling_db`` with a smoothed gain envelope.

    The min-filtered envelope is averaged over the same window, so the gain at
    every peak never rises above what that peak needs; the final clip only
    absorbs float rounding.
    """
    ceiling = db_to_linear(ceiling_db)
    if buf.size == 0:
        return buf
    level = np.max(np.abs(buf), axis=1) if buf.ndim == 2 else np.abs(buf)
    needed = np.minimum(1.0, ceiling / np.maximum(level, 1e-12))
    if np.all(needed >= 1.0):
        return buf

    window = max(1, int(sr * LIMITER_WINDOW_MS / 1000.0)) | 1
    gain = minimum_filter1d(needed, size=window, mode="nearest")
    gain = uniform_filter1d(gain, size=window, mode="nearest")
    gain = np.minimum(gain, 1.0)
    limited = buf * (gain[:, None] if buf.ndim == 2 else gain)
    return np.clip(limited, -ceiling, ceiling).astype(np.float32)


def mix(
    layers: dict[str, np.ndarray],
    gains,
    *,
    num_frames: Optional[int] = None,
    sample_rate: int = SAMPLE_RATE,
    target_lufs: Optional[float] = TARGET_LUFS,
    ceiling_db: float = CEILING_DB,
    fade_in_sec: float = 0.0,
    fade_out_sec: float = 0.0,
    on_stage: Optional[StageCallback] = None,
) -> MasterBuffer:
    """Gain-stage, align and sum the active layers, then master the result.

    ``layers`` maps layer names (voice, music, solfeggio, binaural) to buffers;
    ``gains`` is anything with those names plus ``master`` as dB attributes.
    Pass ``target_lufs=None`` to skip loudness normalization.
    """
    active = [name for name in LAYER_ORDER if layers.get(name) is not None]
    if not active:
        raise ValueError("No audio layers to mix")

    if on_stage:
        on_stage(60, "Mixing layers")
    if num_frames is None:
        num_frames = max(layers[name].shape[0] for name in active)

    master_db = float(gains.master)
    out = np.zeros((num_frames, 2), dtype=np.float32)
    for name in active:
        layer_db = float(getattr(gains, name))
        scale = db_to_linear(layer_db + master_db)
        aligned = fit_length(to_stereo(layers[name]), num_frames, loop=name in LOOPED_LAYERS)
        out += aligned * np.float32(scale)
        logger.info(f"Layer {name}: {layer_db:+.1f} dB + master {master_db:+.1f} dB -> x{scale:.4f}")

    if fade_in_sec or fade_out_sec:
        out = apply_fades(out, sample_rate, fade_in_sec, fade_out_sec)

    lufs = None
    if target_lufs is not None:
        if on_stage:
            on_stage(75, "Normalizing")
        out, lufs = normalize_loudness(out, sample_rate, target_lufs)

    out = peak_limit(out, ceiling_db, sample_rate)
    return MasterBuffer(samples=out, sample_rate=sample_rate, integrated_lufs=lufs, layers=active)


def encode(master: MasterBuffer, fmt: str, quality: str, output_path: str) -> str:
    """Write the master to ``output_path`` as WAV (soundfile) or MP3 (ffmpeg)."""
    if fmt == "wav":
        sf.write(output_path, master.samples, master.sample_rate, subtype=WAV_SUBTYPES.get(quality, "PCM_16"))
        return output_path
    if fmt != "mp3":
        raise ValueError(f"Unsupported output format: {fmt}")

    wav_path = os.path.splitext(output_path)[0] + ".master.wav"
    sf.write(wav_path, master.samples, master.sample_rate, subtype="PCM_24")
    cmd = [
        "ffmpeg",
        "-i", wav_path,
        "-vn",
        "-acodec", "libmp3lame",
        "-b:a", MP3_BITRATES.get(quality, "192k"),
        "-ar", str(master.sample_rate),
        "-ac", "2",
        "-id3v2_version", "3",
        "-y",
        output_path,
    ]
    logger.info(f"Encoding {wav_path} -> {output_path}")
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=600)
    if result.returncode != 0:
        raise RuntimeError(f"ffmpeg encode failed: {result.stderr[-500:]}")
    os.unlink(wav_path)
    return output_path
