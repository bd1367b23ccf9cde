import json
import logging
import uuid
from datetime import datetime, timezone

from render_api import jobs
from render_api.database import db
from render_api.errors import ClippingRiskWarning, TrackArchived, TrackNotFound
from render_api.models import Track, TrackRender
from render_api.payload import JobPayload, check_headroom, parse_payload

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def config_from_payload(payload: JobPayload) -> dict:
    """Split a payload into the per-concern config columns stored on the track."""
    gains = payload.gains
    music = payload.background_music
    solfeggio = payload.solfeggio if payload.solfeggio and payload.solfeggio.enabled else None
    binaural = payload.binaural if payload.binaural and payload.binaural.enabled else None
    return {
        "voice_config": {
            "provider": payload.voice.provider,
            "voice_id": payload.voice.id,
            "model": payload.voice.model,
            "speed": payload.voice.speed,
        },
        "music_config": (
            {"id": music.id, "name": music.name, "url": music.url, "volume_db": gains.music} if music else None
        ),
        "frequency_config": {
            "solfeggio": {"hz": solfeggio.hz, "volume_db": gains.solfeggio} if solfeggio else None,
            "binaural": (
                {
                    "band": binaural.band,
                    "beat_hz": binaural.beat_hz,
                    "carrier_hz": binaural.carrier_hz,
                    "volume_db": gains.binaural,
                }
                if binaural
                else None
            ),
        },
        "output_config": {
            "format": payload.format,
            "quality": payload.quality,
            "duration_min": payload.duration_min,
            "loop": {"enabled": payload.loop_mode, "pause_seconds": payload.pause_sec},
            "start_delay_sec": payload.start_delay_sec,
        },
        "gain_config": gains.model_dump(),
    }


def payload_from_config(script: str, config: dict) -> JobPayload:
    """Rebuild a validated job payload from stored track config."""
    voice = config["voice_config"]
    music = config.get("music_config")
    freq = config.get("frequency_config") or {}
    output = config["output_config"]
    loop = output.get("loop") or {}
    data = {
        "script": script,
        "voice": {
            "provider": voice.get("provider", "openai"),
            "id": voice.get("voice_id", "nova"),
            "model": voice.get("model", "tts-1"),
            "speed": voice.get("speed", 1.0),
        },
        "durationMin": output.get("duration_min", 5),
        "pauseSec": loop.get("pause_seconds", 5),
        "loopMode": loop.get("enabled", True),
        "startDelaySec": output.get("start_delay_sec", 0),
        "backgroundMusic": {"id": music["id"], "name": music.get("name"), "url": music.get("url")} if music else None,
        "solfeggio": {"enabled": True, "hz": freq["solfeggio"]["hz"]} if freq.get("solfeggio") else None,
        "binaural": (
            {
                "enabled": True,
                "band": freq["binaural"]["band"],
                "beatHz": freq["binaural"].get("beat_hz"),
                "carrierHz": freq["binaural"].get("carrier_hz", 200.0),
            }
            if freq.get("binaural")
            else None
        ),
        "gains": config["gain_config"],
        "format": output.get("format", "mp3"),
        "quality": output.get("quality", "high"),
    }
    return parse_payload(data)


def get_track(track_id: str) -> Track | None:
    with db() as conn:
        row = conn.execute("SELECT * FROM tracks WHERE id=?", (track_id,)).fetchone()
    return Track.from_row(row) if row else None


def get_owned_track(track_id: str, user_id: str) -> Track:
    """Fetch a track, treating other users' tracks as missing."""
    track = get_track(track_id)
    if track is None or track.user_id != user_id:
        raise TrackNotFound(f"Track {track_id} not found")
    return track


def config_params(config: dict) -> tuple:
    return (
        json.dumps(config["voice_config"]),
        json.dumps(config["music_config"]) if config["music_config"] else None,
        json.dumps(config["frequency_config"]),
        json.dumps(config["output_config"]),
        json.dumps(config["gain_config"]),
    )


def create_track(user_id: str, title: str, data: dict) -> tuple[str, int, list[ClippingRiskWarning]]:
    """Create a draft track from a submission payload and queue its first render."""
    payload = parse_payload(data)
    warnings = check_headroom(payload)
    track_id = str(uuid.uuid4())
    ts = _now()
    with db() as conn:
        conn.execute(
            """
            INSERT INTO tracks (id, user_id, title, script, voice_config, music_config, frequency_config,
                                output_config, gain_config, status, edit_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'draft', 0, ?, ?)
            """,
            (track_id, user_id, title[:200], payload.script, *config_params(config_from_payload(payload)), ts, ts),
        )
        job_id = jobs.enqueue(track_id, user_id, payload.to_wire(), conn)
    logger.info(f"Track created: track_id={track_id} user={user_id} job={job_id}")
    return track_id, job_id, warnings


def submit_job(track_id: str, user_id: str, data: dict) -> tuple[int, list[ClippingRiskWarning]]:
    """Validate a payload against an existing track, store it as the track's config and enqueue it."""
    payload = parse_payload(data)
    warnings = check_headroom(payload)
    track = get_owned_track(track_id, user_id)
    if track.status == "archived":
        raise TrackArchived(f"Track {track_id} is archived")

    with db() as conn:
        conn.execute(
            """
            UPDATE tracks SET script=?, voice_config=?, music_config=?, frequency_config=?, output_config=?,
                              gain_config=?, status='draft', updated_at=?
            WHERE id=?
            """,
            (payload.script, *config_params(config_from_payload(payload)), _now(), track_id),
        )
        job_id = jobs.enqueue(track_id, user_id, payload.to_wire(), conn)
    return job_id, warnings


def list_renders(track_id: str) -> list[TrackRender]:
    with db() as conn:
        rows = conn.execute(
            "SELECT * FROM track_renders WHERE track_id=? ORDER BY id DESC", (track_id,)
        ).fetchall()
    return [
        TrackRender(
            id=r["id"],
            track_id=r["track_id"],
            job_id=r["job_id"],
            audio_url=r["audio_url"],
            storage_path=r["storage_path"],
            duration_sec=r["duration_sec"],
            created_at=r["created_at"],
        )
        for r in rows
    ]
