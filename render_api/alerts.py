import logging
import os
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


def send_alert(subject: str, body: str) -> None:
    """Send an operator alert via SMTP. No-op if SMTP env vars are not configured."""
    host = os.environ.get("SMTP_HOST")
    if not host:
        return

    port = int(os.environ.get("SMTP_PORT", "587"))
    user = os.environ.get("SMTP_USER", "")
    password = os.environ.get("SMTP_PASS", "")
    from_addr = os.environ.get("ALERT_FROM", "")
    to_addr = os.environ.get("ALERT_TO", "")

    if not (from_addr and to_addr):
        return

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as smtp:
            smtp.starttls()
            if user and password:
                smtp.login(user, password)
            smtp.send_message(msg)
        logger.info(f"Alert sent: {subject}")
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send alert email: {e}")


def _minutes(delta) -> str:
    return f"{delta.total_seconds() / 60:.1f} min"


def stuck_job_summary(job: dict) -> str:
    """One alert line for a reaped job: where it stopped and how far past its lease it ran."""
    stage = job.get("stage") or "not started"
    return (
        f"job {job['id']} (track {job['track_id']}, {job['duration_min']:g} min audio): "
        f"claimed {job['started_at']}, lease {_minutes(job['lease'])}, "
        f"overdue by {_minutes(job['overdue'])}, last stage '{stage}' at {job.get('progress') or 0}%"
    )


def alert_stuck_jobs(jobs: list[dict]) -> None:
    """Tell the operator which render jobs were returned to the queue after losing their lease."""
    lines = "\n".join(f"- {stuck_job_summary(job)}" for job in jobs)
    send_alert(
        subject=f"[Render] {len(jobs)} stuck render job(s) reset",
        body=(
            f"{len(jobs)} render job(s) exceeded their processing lease and were returned to the queue.\n\n"
            f"{lines}\n"
        ),
    )
