"""Edit and re-render coordination for published tracks.

An edit merges a partial change set into the track's stored config, snapshots
the pre-edit config the first time, and queues a fresh render. Earlier renders
stay in ``track_renders``; the pre-edit config stays in ``original_config``.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from render_api import jobs
from render_api.database import db, get_int_config
from render_api.errors import (
    ClippingRiskWarning,
    EditConflict,
    PaymentRequired,
    TrackArchived,
    ValidationError,
)
from render_api.models import Track
from render_api.payload import BinauralBand, check_headroom
from render_api.tracks import config_from_payload, config_params, get_owned_track, payload_from_config

logger = logging.getLogger(__name__)

DEFAULT_SOLFEGGIO_HZ = 528
DEFAULT_BINAURAL_BAND = "alpha"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class GainEdits(_Model):
    master: Optional[float] = Field(None, ge=-12, le=3)
    voice: Optional[float] = Field(None, ge=-12, le=3)
    music: Optional[float] = Field(None, ge=-24, le=0)
    solfeggio: Optional[float] = Field(None, ge=-30, le=-6)
    binaural: Optional[float] = Field(None, ge=-30, le=-6)


class SolfeggioToggle(_Model):
    enabled: bool
    hz: Optional[int] = None


class BinauralToggle(_Model):
    enabled: bool
    band: Optional[BinauralBand] = None
    beat_hz: Optional[float] = Field(None, alias="beatHz")


class LoopEdit(_Model):
    enabled: bool
    pause_seconds: Optional[float] = Field(None, ge=0, le=30)


class EditRequest(_Model):
    gains: Optional[GainEdits] = None
    voice_speed: Optional[float] = Field(None, alias="voiceSpeed", ge=0.5, le=1.5)
    start_delay_sec: Optional[float] = Field(None, alias="startDelaySec", ge=0, le=300)
    solfeggio: Optional[SolfeggioToggle] = None
    binaural: Optional[BinauralToggle] = None
    duration_min: Optional[float] = Field(None, alias="durationMin", ge=1, le=30)
    loop: Optional[LoopEdit] = None


@dataclass
class EditResult:
    track_id: str
    job_id: int
    edit_count: int
    warnings: list[ClippingRiskWarning] = field(default_factory=list)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def accept_payment_token(token: str, track: Track, user_id: str) -> bool:
    """Default payment check: the checkout flow hands over an opaque, non-empty token."""
    return bool(token and token.strip())


def parse_edits(data: dict) -> EditRequest:
    try:
        return EditRequest.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc']) or 'edit'}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Invalid edit data", errors) from e


def merge_edits(track: Track, edits: EditRequest) -> dict:
    """Apply ``edits`` on top of the track's current config; unspecified fields keep their value."""
    config = copy.deepcopy(track.config_snapshot())

    gains = config["gain_config"]
    if edits.gains:
        gains.update(edits.gains.model_dump(exclude_none=True))

    if edits.voice_speed is not None:
        config["voice_config"]["speed"] = edits.voice_speed

    output = config["output_config"]
    if edits.duration_min is not None:
        output["duration_min"] = edits.duration_min
    if edits.loop is not None:
        pause = edits.loop.pause_seconds
        if pause is None:
            pause = output.get("loop", {}).get("pause_seconds", 5.0)
        output["loop"] = {"enabled": edits.loop.enabled, "pause_seconds": pause}
    if edits.start_delay_sec is not None:
        output["start_delay_sec"] = edits.start_delay_sec

    freq = config["frequency_config"]
    current_solfeggio = freq.get("solfeggio")
    if edits.solfeggio is not None:
        if edits.solfeggio.enabled:
            hz = edits.solfeggio.hz or (current_solfeggio or {}).get("hz") or DEFAULT_SOLFEGGIO_HZ
            freq["solfeggio"] = {"hz": hz}
        else:
            # Null the layer outright so the renderer never generates it.
            freq["solfeggio"] = None

    current_binaural = freq.get("binaural")
    if edits.binaural is not None:
        if edits.binaural.enabled:
            current = current_binaural or {}
            band = edits.binaural.band or current.get("band") or DEFAULT_BINAURAL_BAND
            beat_hz = edits.binaural.beat_hz
            if beat_hz is None and band == current.get("band"):
                beat_hz = current.get("beat_hz")
            freq["binaural"] = {
                "band": band,
                "beat_hz": beat_hz,
                "carrier_hz": current.get("carrier_hz", 200.0),
            }
        else:
            freq["binaural"] = None

    return config


def edit_eligibility(track_id: str, user_id: str) -> dict:
    track = get_owned_track(track_id, user_id)
    free_limit = get_int_config("free_edit_limit")
    fee_cents = get_int_config("edit_fee_cents")
    remaining = max(0, free_limit - track.edit_count)
    return {
        "canEdit": track.status != "archived",
        "editCount": track.edit_count,
        "freeEditsRemaining": remaining,
        "totalFeeCents": 0 if remaining > 0 else fee_cents,
    }


def _persist_and_enqueue(track: Track, user_id: str, config: dict, payload, *, count_edit: bool) -> int:
    ts = _now()
    params = config_params(config)
    with db() as conn:
        if count_edit:
            cur = conn.execute(
                """
                UPDATE tracks SET voice_config=?, music_config=?, frequency_config=?, output_config=?,
                                  gain_config=?, original_config=COALESCE(original_config, ?),
                                  edit_count=edit_count + 1, status='draft', updated_at=?
                WHERE id=? AND edit_count=? AND status != 'archived'
                """,
                (*params, json.dumps(track.config_snapshot()), ts, track.id, track.edit_count),
            )
        else:
            cur = conn.execute(
                """
                UPDATE tracks SET voice_config=?, music_config=?, frequency_config=?, output_config=?,
                                  gain_config=?, status='draft', updated_at=?
                WHERE id=? AND updated_at=? AND status != 'archived'
                """,
                (*params, ts, track.id, track.updated_at),
            )
        if cur.rowcount != 1:
            raise EditConflict(f"Track {track.id} changed while the edit was being applied")
        return jobs.enqueue(track.id, user_id, payload.to_wire(), conn)


def request_edit(
    track_id: str,
    user_id: str,
    edits: dict | EditRequest,
    payment_token: str | None = None,
    verify_payment: Callable[[str, Track, str], bool] = accept_payment_token,
) -> EditResult:
    """Merge ``edits`` into the track and queue a re-render.

    Raises TrackNotFound (missing or not owned), TrackArchived, PaymentRequired
    (free edits used up and no acceptable token), ValidationError and
    EditConflict (a concurrent edit won).
    """
    if not isinstance(edits, EditRequest):
        edits = parse_edits(edits)

    track = get_owned_track(track_id, user_id)
    if track.status == "archived":
        raise TrackArchived(f"Track {track_id} is archived")

    edit_count = track.edit_count
    free_limit = get_int_config("free_edit_limit")
    if edit_count >= free_limit:
        if not payment_token or not verify_payment(payment_token, track, user_id):
            raise PaymentRequired(edit_count, get_int_config("edit_fee_cents"))
        logger.info(f"Paid edit #{edit_count + 1} accepted for track {track_id}")

    payload = payload_from_config(track.script, merge_edits(track, edits))
    # persist the validated form, with band defaults and layer volumes resolved
    config = config_from_payload(payload)
    warnings = check_headroom(payload)

    job_id = _persist_and_enqueue(track, user_id, config, payload, count_edit=True)
    logger.info(f"Edit #{edit_count + 1} queued for track {track_id}: job {job_id}")
    return EditResult(track_id=track_id, job_id=job_id, edit_count=edit_count + 1, warnings=warnings)


def restore_original(track_id: str, user_id: str) -> int:
    """Put the pre-edit config back and re-render it. Not counted as an edit."""
    track = get_owned_track(track_id, user_id)
    if track.status == "archived":
        raise TrackArchived(f"Track {track_id} is archived")
    if track.original_config is None:
        raise ValidationError("Track has never been edited; nothing to restore")

    config = copy.deepcopy(track.original_config)
    payload = payload_from_config(track.script, config)
    job_id = _persist_and_enqueue(track, user_id, config, payload, count_edit=False)
    logger.info(f"Original config restored for track {track_id}: job {job_id}")
    return job_id
