import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

JOB_STATUSES = ("pending", "processing", "completed", "failed")
TRACK_STATUSES = ("draft", "rendering", "published", "failed", "archived")


def _load(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


@dataclass
class AudioJob:
    id: int
    track_id: str
    user_id: str
    status: str  # 'pending' | 'processing' | 'completed' | 'failed'
    progress: int
    stage: Optional[str]
    payload: dict
    duration_min: float
    error_msg: Optional[str]
    result: Optional[dict]
    created_at: str
    started_at: Optional[str]
    finished_at: Optional[str]
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AudioJob":
        return cls(
            id=row["id"],
            track_id=row["track_id"],
            user_id=row["user_id"],
            status=row["status"],
            progress=row["progress"],
            stage=row["stage"],
            payload=json.loads(row["payload"]),
            duration_min=row["duration_min"],
            error_msg=row["error_msg"],
            result=_load(row["result"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "track_id": self.track_id,
            "user_id": self.user_id,
            "status": self.status,
            "progress": self.progress,
            "stage": self.stage,
            "error_msg": self.error_msg,
            "result": self.result,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class Track:
    id: str
    user_id: str
    title: str
    script: str
    voice_config: dict
    music_config: Optional[dict]
    frequency_config: dict
    output_config: dict
    gain_config: dict
    status: str  # 'draft' | 'rendering' | 'published' | 'failed' | 'archived'
    edit_count: int
    original_config: Optional[dict]
    audio_url: Optional[str]
    duration_sec: Optional[float]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Track":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            script=row["script"],
            voice_config=json.loads(row["voice_config"]),
            music_config=_load(row["music_config"]),
            frequency_config=json.loads(row["frequency_config"]),
            output_config=json.loads(row["output_config"]),
            gain_config=json.loads(row["gain_config"]),
            status=row["status"],
            edit_count=row["edit_count"],
            original_config=_load(row["original_config"]),
            audio_url=row["audio_url"],
            duration_sec=row["duration_sec"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def config_snapshot(self) -> dict:
        return {
            "voice_config": self.voice_config,
            "music_config": self.music_config,
            "frequency_config": self.frequency_config,
            "output_config": self.output_config,
            "gain_config": self.gain_config,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "status": self.status,
            "edit_count": self.edit_count,
            "audio_url": self.audio_url,
            "duration_sec": self.duration_sec,
            "has_original_config": self.original_config is not None,
            **self.config_snapshot(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TrackRender:
    id: int
    track_id: str
    job_id: int
    audio_url: str
    storage_path: str
    duration_sec: Optional[float]
    created_at: str


@dataclass
class RenderResult:
    url: str
    path: str
    duration_sec: float
    size: int
    format: str
    layers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "path": self.path,
            "duration_sec": self.duration_sec,
            "size": self.size,
            "format": self.format,
            "layers": self.layers,
        }
