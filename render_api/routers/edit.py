import logging

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse

from render_api import edits
from render_api.errors import EditConflict, PaymentRequired, TrackArchived, TrackNotFound, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_user(x_user_id: str | None) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "X-User-Id header is required")
    return x_user_id.strip()


@router.get("/tracks/{track_id}/edit-eligibility")
def get_edit_eligibility(track_id: str, x_user_id: str = Header(None)):
    user_id = _require_user(x_user_id)
    try:
        return edits.edit_eligibility(track_id, user_id)
    except TrackNotFound:
        raise HTTPException(404, "Track not found")


@router.post("/tracks/{track_id}/edit")
def edit_track(
    track_id: str,
    body: dict,
    x_user_id: str = Header(None),
    x_edit_payment_token: str | None = Header(None),
):
    user_id = _require_user(x_user_id)
    try:
        result = edits.request_edit(track_id, user_id, body, payment_token=x_edit_payment_token)
    except ValidationError as e:
        raise HTTPException(422, {"error": str(e), "details": e.errors})
    except TrackNotFound:
        raise HTTPException(404, "Track not found")
    except PaymentRequired as e:
        return JSONResponse(
            status_code=402,
            content={
                "error": str(e),
                "requiresPayment": True,
                "editCount": e.edit_count,
                "feeCents": e.fee_cents,
            },
        )
    except TrackArchived:
        raise HTTPException(409, "Track is archived")
    except EditConflict as e:
        raise HTTPException(409, str(e))

    return {
        "trackId": result.track_id,
        "jobId": result.job_id,
        "editCount": result.edit_count,
        "status": "pending",
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.post("/tracks/{track_id}/restore")
def restore_track(track_id: str, x_user_id: str = Header(None)):
    """Re-render the track from its pre-edit configuration."""
    user_id = _require_user(x_user_id)
    try:
        job_id = edits.restore_original(track_id, user_id)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except TrackNotFound:
        raise HTTPException(404, "Track not found")
    except (TrackArchived, EditConflict) as e:
        raise HTTPException(409, str(e))
    return {"trackId": track_id, "jobId": job_id, "status": "pending"}
