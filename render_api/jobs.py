import json
import logging
import time
from datetime import datetime, timezone
from typing import Iterator

from render_api.database import db
from render_api.errors import LeaseExpiredError
from render_api.models import AudioJob, RenderResult

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(now: datetime | None) -> str:
    return now.isoformat() if now else _now()


def enqueue(track_id: str, user_id: str, payload: dict, conn=None) -> int:
    """Insert a pending job and return its id.

    ``payload`` is the wire form of a validated ``JobPayload``. Pass ``conn`` to
    enqueue inside a caller's transaction.
    """
    if conn is None:
        with db() as conn:
            return enqueue(track_id, user_id, payload, conn)

    ts = _now()
    cur = conn.execute(
        """
        INSERT INTO audio_jobs (track_id, user_id, status, progress, payload, duration_min,
                                created_at, updated_at)
        VALUES (?, ?, 'pending', 0, ?, ?, ?, ?)
        """,
        (track_id, user_id, json.dumps(payload), float(payload.get("durationMin", 5)), ts, ts),
    )
    job_id = cur.lastrowid
    logger.info(f"Enqueued job {job_id} for track {track_id}")
    return job_id


def get_job(job_id: int) -> AudioJob | None:
    with db() as conn:
        row = conn.execute("SELECT * FROM audio_jobs WHERE id=?", (job_id,)).fetchone()
    return AudioJob.from_row(row) if row else None


def list_jobs_for_track(track_id: str) -> list[AudioJob]:
    with db() as conn:
        rows = conn.execute(
            "SELECT * FROM audio_jobs WHERE track_id=? ORDER BY id ASC", (track_id,)
        ).fetchall()
    return [AudioJob.from_row(r) for r in rows]


def count_pending() -> int:
    with db() as conn:
        return conn.execute("SELECT COUNT(*) FROM audio_jobs WHERE status='pending'").fetchone()[0]


def claim_job(job_id: int, now: datetime | None = None) -> AudioJob | None:
    """Move one job from pending to processing.

    The conditional UPDATE is the only concurrency primitive: of any number of
    callers racing on the same row exactly one sees ``rowcount == 1``.
    """
    ts = _iso(now)
    with db() as conn:
        cur = conn.execute(
            """
            UPDATE audio_jobs SET status='processing', started_at=?, updated_at=?, stage=NULL, progress=0
            WHERE id=? AND status='pending'
            """,
            (ts, ts, job_id),
        )
        if cur.rowcount != 1:
            return None
        row = conn.execute("SELECT * FROM audio_jobs WHERE id=?", (job_id,)).fetchone()
        conn.execute(
            "UPDATE tracks SET status='rendering', updated_at=? WHERE id=? AND status != 'archived'",
            (ts, row["track_id"]),
        )
    return AudioJob.from_row(row)


def claim_batch(max_jobs: int, claim_delay: float = 1.0, sleep=time.sleep) -> Iterator[AudioJob]:
    """Lazily claim up to ``max_jobs`` pending jobs in insertion order.

    Claims happen as the caller iterates, with ``claim_delay`` seconds between
    successive claims. A job lost to a concurrent claimer is skipped and not
    retried within this batch.
    """
    claimed = 0
    skipped: set[int] = set()
    while claimed < max_jobs:
        with db() as conn:
            rows = conn.execute(
                "SELECT id FROM audio_jobs WHERE status='pending' ORDER BY id ASC LIMIT ?",
                (max_jobs + len(skipped),),
            ).fetchall()
        candidates = [r["id"] for r in rows if r["id"] not in skipped]
        if not candidates:
            return
        if claimed > 0 and claim_delay > 0:
            sleep(claim_delay)

        job = None
        for job_id in candidates:
            job = claim_job(job_id)
            if job:
                break
            logger.info(f"Job {job_id} already claimed elsewhere, skipping")
            skipped.add(job_id)
        if job is None:
            continue
        claimed += 1
        yield job


# A job only moves its track when no later job has been queued for it.
_NO_NEWER_JOB = "NOT EXISTS (SELECT 1 FROM audio_jobs WHERE track_id=? AND id > ?)"


def _fenced_update(conn, job: AudioJob, sql: str, params: tuple) -> None:
    cur = conn.execute(sql + " WHERE id=? AND status='processing' AND started_at=?", params + (job.id, job.started_at))
    if cur.rowcount != 1:
        raise LeaseExpiredError(f"Job {job.id} is no longer held by this worker")


def update_progress(job: AudioJob, progress: int, stage: str) -> None:
    with db() as conn:
        _fenced_update(
            conn,
            job,
            "UPDATE audio_jobs SET progress=?, stage=?, updated_at=?",
            (max(0, min(100, int(progress))), stage, _now()),
        )
    job.progress = progress
    job.stage = stage


def complete_job(job: AudioJob, result: RenderResult) -> None:
    ts = _now()
    with db() as conn:
        _fenced_update(
            conn,
            job,
            "UPDATE audio_jobs SET status='completed', progress=100, stage='Complete', result=?,"
            " error_msg=NULL, finished_at=?, updated_at=?",
            (json.dumps(result.to_dict()), ts, ts),
        )
        conn.execute(
            f"""
            UPDATE tracks SET status='published', audio_url=?, duration_sec=?, updated_at=?
            WHERE id=? AND status != 'archived' AND {_NO_NEWER_JOB}
            """,
            (result.url, result.duration_sec, ts, job.track_id, job.track_id, job.id),
        )
        conn.execute(
            """
            INSERT INTO track_renders (track_id, job_id, audio_url, storage_path, duration_sec, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (job.track_id, job.id, result.url, result.path, result.duration_sec, ts),
        )
    job.status = "completed"
    logger.info(f"Job {job.id} completed: track {job.track_id} at {result.url}")


def fail_job(job: AudioJob, error_msg: str) -> bool:
    """Record a failure. Returns False when the lease was already lost."""
    ts = _now()
    with db() as conn:
        try:
            _fenced_update(
                conn,
                job,
                "UPDATE audio_jobs SET status='failed', error_msg=?, finished_at=?, updated_at=?",
                (error_msg, ts, ts),
            )
        except LeaseExpiredError:
            logger.warning(f"Job {job.id} failed after its lease was reaped; leaving row untouched")
            return False
        conn.execute(
            f"UPDATE tracks SET status='failed', updated_at=? WHERE id=? AND status != 'archived' AND {_NO_NEWER_JOB}",
            (ts, job.track_id, job.track_id, job.id),
        )
    job.status = "failed"
    job.error_msg = error_msg
    return True
