import logging

from fastapi import APIRouter, HTTPException

from render_api.jobs import get_job, list_jobs_for_track
from render_api.tracks import get_track, list_renders

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/jobs/{job_id}")
def get_job_status(job_id: int):
    """Job progress and outcome (for polling a render)."""
    job = get_job(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return job.to_dict()


@router.get("/tracks/{track_id}")
def get_track_status(track_id: str):
    track = get_track(track_id)
    if track is None:
        raise HTTPException(404, "Track not found")
    history = list_jobs_for_track(track_id)
    latest = history[-1] if history else None
    return {**track.to_dict(), "latest_job": latest.to_dict() if latest else None}


@router.get("/tracks/{track_id}/renders")
def get_track_renders(track_id: str):
    if get_track(track_id) is None:
        raise HTTPException(404, "Track not found")
    return {
        "renders": [
            {
                "id": r.id,
                "job_id": r.job_id,
                "audio_url": r.audio_url,
                "storage_path": r.storage_path,
                "duration_sec": r.duration_sec,
                "created_at": r.created_at,
            }
            for r in list_renders(track_id)
        ]
    }
