import logging
import os
from dataclasses import dataclass

import requests

from render_api.errors import ProviderError

logger = logging.getLogger(__name__)

TTS_TIMEOUT_S = float(os.environ.get("TTS_TIMEOUT_S", "120"))

OPENAI_VOICES = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}


@dataclass(frozen=True)
class VoiceRequest:
    voice_id: str
    model: str
    speed: float = 1.0


class TTSProvider:
    """Text-to-speech backend. ``synthesize`` returns encoded audio bytes."""

    name = ""
    # Providers without a native speed parameter get time-stretched after decoding.
    supports_speed = True

    def synthesize(self, text: str, settings: VoiceRequest) -> bytes:
        raise NotImplementedError


class OpenAIProvider(TTSProvider):
    name = "openai"
    url = "https://api.openai.com/v1/audio/speech"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")

    def synthesize(self, text: str, settings: VoiceRequest) -> bytes:
        if not self.api_key:
            raise ProviderError(self.name, "OPENAI_API_KEY not set")
        if settings.voice_id not in OPENAI_VOICES:
            raise ProviderError(self.name, f"Invalid voice: {settings.voice_id}")

        logger.info(f"Synthesizing with OpenAI: voice={settings.voice_id} model={settings.model} speed={settings.speed}")
        try:
            resp = requests.post(
                self.url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": settings.model or "tts-1",
                    "input": text,
                    "voice": settings.voice_id,
                    "response_format": "mp3",
                    "speed": settings.speed,
                },
                timeout=TTS_TIMEOUT_S,
            )
        except requests.RequestException as e:
            raise ProviderError(self.name, str(e)) from e
        if resp.status_code != 200:
            raise ProviderError(self.name, f"HTTP {resp.status_code}: {resp.text[:500]}")
        return resp.content


class ElevenLabsProvider(TTSProvider):
    name = "elevenlabs"
    supports_speed = False
    base_url = "https://api.elevenlabs.io/v1/text-to-speech"

    def __init__(self, api_key: str | None = None, stability: float = 0.5, similarity: float = 0.75):
        self.api_key = api_key or os.environ.get("ELEVENLABS_API_KEY", "")
        self.stability = stability
        self.similarity = similarity

    def synthesize(self, text: str, settings: VoiceRequest) -> bytes:
        if not self.api_key:
            raise ProviderError(self.name, "ELEVENLABS_API_KEY not set")

        model_id = settings.model if settings.model.startswith("eleven_") else "eleven_multilingual_v2"
        logger.info(f"Synthesizing with ElevenLabs: voice={settings.voice_id} model={model_id}")
        try:
            resp = requests.post(
                f"{self.base_url}/{settings.voice_id}",
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
                json={
                    "text": text,
                    "model_id": model_id,
                    "voice_settings": {"stability": self.stability, "similarity_boost": self.similarity},
                },
                timeout=TTS_TIMEOUT_S,
            )
        except requests.RequestException as e:
            raise ProviderError(self.name, str(e)) from e
        if resp.status_code != 200:
            raise ProviderError(self.name, f"HTTP {resp.status_code}: {resp.text[:500]}")
        return resp.content


_PROVIDERS: dict[str, TTSProvider] = {}


def register_provider(provider: TTSProvider) -> None:
    _PROVIDERS[provider.name] = provider


def unregister_provider(name: str) -> None:
    _PROVIDERS.pop(name, None)


def get_provider(name: str) -> TTSProvider:
    try:
        return _PROVIDERS[name]
    except KeyError:
        raise ProviderError(name, f"Unsupported TTS provider: {name}") from None


register_provider(OpenAIProvider())
register_provider(ElevenLabsProvider())
