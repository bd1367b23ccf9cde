import logging
import os
import time
from datetime import timedelta

from render_api import jobs
from render_api.database import get_int_config
from render_api.errors import LeaseExpiredError, PersistenceError, RenderError
from render_api.models import AudioJob
from render_api.reaper import reap_stuck
from render_api.renderer import render_job

logger = logging.getLogger(__name__)

CLAIM_DELAY_SEC = float(os.environ.get("CLAIM_DELAY_SEC", "1.0"))


def _process_job(job: AudioJob) -> dict:
    """Render a single claimed job and record the outcome on its row."""
    logger.info(f"Processing job {job.id} for track {job.track_id}")

    def progress(pct: int, stage: str):
        jobs.update_progress(job, pct, stage)

    try:
        result = render_job(job, progress)
        jobs.complete_job(job, result)
        return {"job_id": job.id, "track_id": job.track_id, "status": "completed", "url": result.url}

    except LeaseExpiredError as e:
        logger.warning(f"Job {job.id} lost its lease mid-render: {e}")
        return {"job_id": job.id, "track_id": job.track_id, "status": "lease_lost", "error": str(e)}

    except PersistenceError:
        # Writes are failing; trying to record the failure would fail the same way.
        raise

    except Exception as e:
        expected = isinstance(e, RenderError)
        error_msg = str(e) if expected else f"{type(e).__name__}: {e}"
        logger.error(f"Job {job.id} failed: {error_msg}", exc_info=not expected)
        recorded = jobs.fail_job(job, error_msg)
        status = "failed" if recorded else "lease_lost"
        return {"job_id": job.id, "track_id": job.track_id, "status": status, "error": error_msg}


def dispatch_cycle(max_jobs: int | None = None, claim_delay: float | None = None, sleep=time.sleep) -> dict:
    """Run one bounded dispatch pass: reap, then render up to ``max_jobs`` jobs in order.

    Jobs run strictly one after another. Overlapping cycles are kept apart only
    by the claim's conditional UPDATE.
    """
    if max_jobs is None:
        max_jobs = get_int_config("max_jobs_per_cycle")
    if claim_delay is None:
        claim_delay = CLAIM_DELAY_SEC

    lease = timedelta(minutes=get_int_config("lease_timeout_min"))
    stuck = reap_stuck(lease)

    results = []
    for job in jobs.claim_batch(max_jobs, claim_delay=claim_delay, sleep=sleep):
        results.append(_process_job(job))

    processed = len(results)
    pending = jobs.count_pending()
    logger.info(f"Dispatch cycle done: processed={processed} pending={pending} stuck_reset={len(stuck)}")
    return {
        "processed": processed,
        "pending": pending,
        "stuck_reset": len(stuck),
        "results": results,
    }
