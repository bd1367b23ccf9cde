import logging
import os
from datetime import datetime, timedelta, timezone

from render_api.alerts import alert_stuck_jobs
from render_api.database import db

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TIMEOUT = timedelta(minutes=10)
# Lease granted per minute of rendered audio. The flat timeout wins until
# duration_min * this exceeds it (at 30 s/min, beyond 20-minute tracks).
LEASE_SEC_PER_TRACK_MIN = float(os.environ.get("LEASE_SEC_PER_TRACK_MIN", "30"))


def lease_for(duration_min: float, lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT) -> timedelta:
    return max(lease_timeout, timedelta(seconds=duration_min * LEASE_SEC_PER_TRACK_MIN))


def reap_stuck(lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT, now: datetime | None = None) -> list[int]:
    """Reset processing jobs whose lease has expired back to pending.

    Returns the ids of the jobs that were reset. Each reset is conditioned on the
    ``started_at`` value that was read, so a job is reset at most once per pass
    and a job re-claimed in the meantime is left alone.
    """
    now = now or datetime.now(timezone.utc)
    reset: list[dict] = []
    with db() as conn:
        rows = conn.execute(
            """
            SELECT id, track_id, started_at, duration_min, stage, progress
            FROM audio_jobs WHERE status='processing'
            """
        ).fetchall()
        for row in rows:
            if not row["started_at"]:
                continue
            started = datetime.fromisoformat(row["started_at"])
            lease = lease_for(row["duration_min"], lease_timeout)
            if now - started <= lease:
                continue
            cur = conn.execute(
                """
                UPDATE audio_jobs SET status='pending', progress=0, stage=NULL, started_at=NULL, updated_at=?
                WHERE id=? AND status='processing' AND started_at=?
                """,
                (now.isoformat(), row["id"], row["started_at"]),
            )
            if cur.rowcount == 1:
                conn.execute(
                    "UPDATE tracks SET status='draft', updated_at=? WHERE id=? AND status='rendering'",
                    (now.isoformat(), row["track_id"]),
                )
                reset.append({**dict(row), "lease": lease, "overdue": now - started - lease})

    reset_ids = [job["id"] for job in reset]
    if reset:
        logger.warning(f"Reset {len(reset)} stuck processing job(s) to pending: {reset_ids}")
        alert_stuck_jobs(reset)
    else:
        logger.info("No stuck processing jobs found")
    return reset_ids
