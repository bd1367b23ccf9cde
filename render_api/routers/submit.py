import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from render_api.errors import TrackArchived, TrackNotFound, ValidationError
from render_api.tracks import create_track, submit_job

logger = logging.getLogger(__name__)
router = APIRouter()


class TrackSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    title: str = ""
    payload: dict


class JobSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    track_id: str = Field(alias="trackId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    payload: dict


def _invalid(e: ValidationError) -> HTTPException:
    return HTTPException(422, {"error": str(e), "details": e.errors})


@router.post("/tracks")
def submit_track(body: TrackSubmission):
    user_id = body.user_id.strip()
    title = body.title.strip() or "Untitled"
    try:
        track_id, job_id, warnings = create_track(user_id, title, body.payload)
    except ValidationError as e:
        raise _invalid(e)

    logger.info(f"Track submission: track_id={track_id} job_id={job_id} user={user_id}")
    return {
        "trackId": track_id,
        "jobId": job_id,
        "status": "pending",
        "warnings": [w.to_dict() for w in warnings],
    }


@router.post("/jobs")
def submit_render_job(body: JobSubmission):
    try:
        job_id, warnings = submit_job(body.track_id, body.user_id.strip(), body.payload)
    except ValidationError as e:
        raise _invalid(e)
    except TrackNotFound:
        raise HTTPException(404, "Track not found")
    except TrackArchived:
        raise HTTPException(409, "Track is archived")

    logger.info(f"Job submission: track_id={body.track_id} job_id={job_id}")
    return {"jobId": job_id, "status": "pending", "warnings": [w.to_dict() for w in warnings]}
