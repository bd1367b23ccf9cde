import logging
import os
from datetime import timedelta

from fastapi import APIRouter, Depends, Header, HTTPException

from render_api.database import get_int_config
from render_api.errors import PersistenceError
from render_api.reaper import reap_stuck
from render_api.worker import dispatch_cycle

logger = logging.getLogger(__name__)
router = APIRouter()

WORKER_TOKEN = os.environ.get("WORKER_TOKEN", "")


def require_worker(x_worker_token: str = Header(None)):
    if not WORKER_TOKEN:
        raise HTTPException(500, "WORKER_TOKEN not configured")
    if x_worker_token != WORKER_TOKEN:
        raise HTTPException(403, "Invalid worker token")


@router.post("/internal/worker/run")
def run_worker(max_jobs: int | None = None, auth=Depends(require_worker)):
    """Called by the external scheduler: one bounded dispatch pass."""
    if max_jobs is not None and not (1 <= max_jobs <= 50):
        raise HTTPException(400, "max_jobs must be 1-50")
    try:
        return dispatch_cycle(max_jobs=max_jobs)
    except PersistenceError as e:
        logger.error(f"Dispatch cycle aborted: {e}")
        raise HTTPException(503, "Job store unavailable")


@router.post("/internal/reaper/run")
def run_reaper(auth=Depends(require_worker)):
    lease = timedelta(minutes=get_int_config("lease_timeout_min"))
    stuck = reap_stuck(lease)
    return {"stuck_reset": stuck}
