import io

import numpy as np
import pytest
import soundfile as sf

from render_api import catalog, database, storage, tts
from render_api.errors import ProviderError

SR = 22050


def wav_bytes(seconds=1.0, freq=220.0, amplitude=0.3, sr=SR) -> bytes:
    t = np.arange(int(seconds * sr)) / sr
    wave = (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)
    buf = io.BytesIO()
    sf.write(buf, wave, sr, format="WAV", subtype="PCM_16")
    return buf.getvalue()


class FakeTTS(tts.TTSProvider):
    name = "fake"

    def __init__(self, seconds=1.0):
        self.seconds = seconds
        self.calls = []

    def synthesize(self, text, settings):
        self.calls.append((text, settings))
        return wav_bytes(self.seconds)


class BrokenTTS(tts.TTSProvider):
    name = "broken"

    def synthesize(self, text, settings):
        raise ProviderError(self.name, "HTTP 503: upstream unavailable")


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    path = tmp_path / "render.db"
    monkeypatch.setattr(database, "DB_PATH", str(path))
    database.init_db()
    return path


@pytest.fixture(autouse=True)
def media_dir(tmp_path, monkeypatch):
    media = tmp_path / "media"
    media.mkdir()
    monkeypatch.setattr(storage, "MEDIA_DIR", str(media))
    monkeypatch.setattr(storage, "MEDIA_BASE_URL", "https://cdn.test/media")
    monkeypatch.setattr(catalog, "MEDIA_DIR", str(media))
    return media


@pytest.fixture
def fake_tts():
    provider = FakeTTS()
    tts.register_provider(provider)
    tts.register_provider(BrokenTTS())
    yield provider
    tts.unregister_provider(FakeTTS.name)
    tts.unregister_provider(BrokenTTS.name)


@pytest.fixture
def payload():
    """A minimal valid payload that renders quickly."""
    return {
        "script": "Breathe in. Breathe out.",
        "voice": {"provider": "fake", "id": "nova", "model": "tts-1", "speed": 1.0},
        "durationMin": 1,
        "pauseSec": 2,
        "loopMode": True,
        "format": "wav",
        "quality": "low",
    }
