"""Job payload schema and the active-layer view the renderer works from.

The wire shape is the one submitted by the app layer::

    {script, voice: {provider, id, model, speed}, durationMin, pauseSec, loopMode,
     startDelaySec, backgroundMusic?: {id, name, url}, solfeggio?: {enabled, hz, volume_db},
     binaural?: {enabled, band, volume_db}, gains: {master, voice, music, solfeggio, binaural}}

``JobPayload.layers()`` turns the optional sub-objects into a tuple of layer
objects so callers dispatch on layer type instead of checking for nulls.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from render_api.errors import ClippingRiskWarning, ValidationError
from render_api.frequencies import (
    CARRIER_RANGE_HZ,
    DEFAULT_CARRIER_HZ,
    SOLFEGGIO_FREQUENCIES,
    resolve_beat_hz,
)

CLIPPING_THRESHOLD_DB = 3.0

BinauralBand = Literal["delta", "theta", "alpha", "beta", "gamma"]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class VoiceSettings(_Model):
    provider: str = "openai"
    id: str = "nova"
    model: str = "tts-1"
    speed: float = Field(1.0, ge=0.5, le=1.5)


class BackgroundMusic(_Model):
    id: str
    name: Optional[str] = None
    url: Optional[str] = None


class SolfeggioSettings(_Model):
    enabled: bool = True
    hz: int = 528
    volume_db: Optional[float] = Field(None, ge=-30, le=-6)

    @field_validator("hz")
    @classmethod
    def _known_frequency(cls, v: int) -> int:
        if v not in SOLFEGGIO_FREQUENCIES:
            valid = ", ".join(str(f) for f in SOLFEGGIO_FREQUENCIES)
            raise ValueError(f"Invalid Solfeggio frequency {v} Hz (valid: {valid})")
        return v


class BinauralSettings(_Model):
    enabled: bool = True
    band: BinauralBand = "alpha"
    beat_hz: Optional[float] = Field(None, alias="beatHz")
    carrier_hz: float = Field(DEFAULT_CARRIER_HZ, alias="carrierHz", ge=CARRIER_RANGE_HZ[0], le=CARRIER_RANGE_HZ[1])
    volume_db: Optional[float] = Field(None, ge=-30, le=-6)

    @model_validator(mode="after")
    def _beat_in_band(self) -> "BinauralSettings":
        self.beat_hz = resolve_beat_hz(self.band, self.beat_hz)
        return self


class Gains(_Model):
    master: float = Field(0.0, ge=-12, le=3)
    voice: float = Field(-1.0, ge=-12, le=3)
    music: float = Field(-10.0, ge=-24, le=0)
    solfeggio: float = Field(-18.0, ge=-30, le=-6)
    binaural: float = Field(-20.0, ge=-30, le=-6)


class JobPayload(_Model):
    script: str = Field(..., min_length=1)
    voice: VoiceSettings = Field(default_factory=VoiceSettings)
    duration_min: float = Field(5.0, alias="durationMin", ge=1, le=30)
    pause_sec: float = Field(5.0, alias="pauseSec", ge=0, le=30)
    loop_mode: bool = Field(True, alias="loopMode")
    start_delay_sec: float = Field(0.0, alias="startDelaySec", ge=0, le=300)
    background_music: Optional[BackgroundMusic] = Field(None, alias="backgroundMusic")
    solfeggio: Optional[SolfeggioSettings] = None
    binaural: Optional[BinauralSettings] = None
    gains: Gains = Field(default_factory=Gains)
    format: Literal["mp3", "wav"] = "mp3"
    quality: Literal["low", "medium", "high"] = "high"

    @property
    def duration_sec(self) -> float:
        return self.duration_min * 60.0

    def layers(self) -> tuple["Layer", ...]:
        active: list[Layer] = [
            VoiceLayer(
                text=self.script,
                provider=self.voice.provider,
                voice_id=self.voice.id,
                model=self.voice.model,
                speed=self.voice.speed,
                loop=self.loop_mode,
                pause_sec=self.pause_sec,
                start_delay_sec=self.start_delay_sec,
            )
        ]
        if self.background_music is not None:
            active.append(
                MusicLayer(
                    music_id=self.background_music.id,
                    title=self.background_music.name,
                    url=self.background_music.url,
                )
            )
        if self.solfeggio is not None and self.solfeggio.enabled:
            active.append(SolfeggioLayer(hz=self.solfeggio.hz))
        if self.binaural is not None and self.binaural.enabled:
            active.append(
                BinauralLayer(
                    band=self.binaural.band,
                    carrier_hz=self.binaural.carrier_hz,
                    beat_hz=self.binaural.beat_hz,
                )
            )
        return tuple(active)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


@dataclass(frozen=True)
class VoiceLayer:
    name: ClassVar[str] = "voice"

    text: str
    provider: str
    voice_id: str
    model: str
    speed: float
    loop: bool
    pause_sec: float
    start_delay_sec: float


@dataclass(frozen=True)
class MusicLayer:
    name: ClassVar[str] = "music"

    music_id: str
    title: Optional[str] = None
    url: Optional[str] = None


def _decimal(hz: float) -> Decimal:
    return Decimal(repr(float(hz)))


@dataclass(frozen=True)
class SolfeggioLayer:
    name: ClassVar[str] = "solfeggio"

    hz: int


@dataclass(frozen=True)
class BinauralLayer:
    name: ClassVar[str] = "binaural"

    band: str
    carrier_hz: float
    beat_hz: float

    @property
    def left_hz(self) -> float:
        return self.carrier_hz

    @property
    def right_hz(self) -> float:
        return float(_decimal(self.carrier_hz) + _decimal(self.beat_hz))

    @property
    def offset_hz(self) -> float:
        """Right minus left, computed on the decimal values so it equals ``beat_hz``."""
        return float(_decimal(self.right_hz) - _decimal(self.left_hz))


Layer = Union[VoiceLayer, MusicLayer, SolfeggioLayer, BinauralLayer]


def parse_payload(data: dict) -> JobPayload:
    try:
        return JobPayload.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Invalid job payload", errors) from e


def check_headroom(payload: JobPayload) -> list[ClippingRiskWarning]:
    """Warn for every active layer whose gain plus master exceeds the clipping threshold."""
    gains = payload.gains
    warnings = []
    for layer in payload.layers():
        total = getattr(gains, layer.name) + gains.master
        if total > CLIPPING_THRESHOLD_DB:
            warnings.append(ClippingRiskWarning(layer.name, total, CLIPPING_THRESHOLD_DB))
    return warnings
