"""Layer generators: each produces one sample buffer at SAMPLE_RATE.

Mono layers are 1-D float32 arrays; stereo layers are shaped (frames, 2).
"""

import logging
import os

import librosa  # ty: ignore[unresolved-import]
import numpy as np

from render_api import catalog
from render_api.errors import ProviderError
from render_api.frequencies import SOLFEGGIO_FREQUENCIES
from render_api.payload import BinauralLayer, MusicLayer, SolfeggioLayer, VoiceLayer
from render_api.tts import VoiceRequest, get_provider

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100

_MAGIC_EXTENSIONS = (
    (b"RIFF", ".wav"),
    (b"fLaC", ".flac"),
    (b"OggS", ".ogg"),
)


def _sniff_extension(data: bytes) -> str:
    for magic, ext in _MAGIC_EXTENSIONS:
        if data.startswith(magic):
            return ext
    return ".mp3"


def decode_audio(path: str, sr: int = SAMPLE_RATE, mono: bool = True) -> np.ndarray:
    """Decode and resample ``path``. Stereo results are shaped (frames, channels)."""
    y, _ = librosa.load(path, sr=sr, mono=mono)
    if y.ndim == 2:
        y = y.T
    return np.ascontiguousarray(y, dtype=np.float32)


def synthesize_voice(layer: VoiceLayer, workdir: str, sr: int = SAMPLE_RATE) -> np.ndarray:
    provider = get_provider(layer.provider)
    data = provider.synthesize(
        layer.text, VoiceRequest(voice_id=layer.voice_id, model=layer.model, speed=layer.speed)
    )
    if not data:
        raise ProviderError(provider.name, "returned no audio")

    raw_path = os.path.join(workdir, "voice_raw" + _sniff_extension(data))
    with open(raw_path, "wb") as f:
        f.write(data)

    try:
        voice = decode_audio(raw_path, sr=sr, mono=True)
    except Exception as e:
        raise ProviderError(provider.name, f"could not decode synthesized audio: {e}") from e
    if voice.size == 0:
        raise ProviderError(provider.name, "returned empty audio")

    if not provider.supports_speed and layer.speed != 1.0:
        voice = librosa.effects.time_stretch(voice, rate=layer.speed).astype(np.float32)

    logger.info(f"Voice synthesized: {voice.shape[0] / sr:.1f}s via {provider.name}")
    return voice


def load_music(layer: MusicLayer, workdir: str, sr: int = SAMPLE_RATE) -> np.ndarray:
    # submitters may only point at remote files; local paths come from the catalog
    from_catalog = not layer.url
    url = catalog.lookup(layer.music_id).url if from_catalog else layer.url
    raw_path = os.path.join(workdir, "music_raw" + os.path.splitext(url)[1])
    catalog.fetch_asset(url, raw_path, allow_local=from_catalog)
    music = decode_audio(raw_path, sr=sr, mono=False)
    if music.ndim == 1:
        music = np.stack([music, music], axis=1)
    logger.info(f"Background music {layer.music_id} loaded: {music.shape[0] / sr:.1f}s")
    return music


def sine(frequency: float, num_frames: int, sr: int = SAMPLE_RATE) -> np.ndarray:
    t = np.arange(num_frames, dtype=np.float64) / sr
    return np.sin(2.0 * np.pi * frequency * t).astype(np.float32)


def solfeggio_tone(layer: SolfeggioLayer, duration_sec: float, sr: int = SAMPLE_RATE) -> np.ndarray:
    if layer.hz not in SOLFEGGIO_FREQUENCIES:
        raise ValueError(f"Invalid Solfeggio frequency: {layer.hz} Hz")
    return sine(layer.hz, int(round(duration_sec * sr)), sr)


def binaural_beat(layer: BinauralLayer, duration_sec: float, sr: int = SAMPLE_RATE) -> np.ndarray:
    """Left channel at the carrier, right channel at carrier + beat."""
    n = int(round(duration_sec * sr))
    t = np.arange(n, dtype=np.float64) / sr
    carrier_phase = 2.0 * np.pi * layer.left_hz * t
    # right channel phase = carrier phase + beat phase
    left = np.sin(carrier_phase).astype(np.float32)
    right = np.sin(carrier_phase + 2.0 * np.pi * layer.offset_hz * t).astype(np.float32)
    logger.info(f"Binaural {layer.band}: L={layer.left_hz:g}Hz R={layer.right_hz:g}Hz beat={layer.beat_hz:g}Hz")
    return np.stack([left, right], axis=1)
