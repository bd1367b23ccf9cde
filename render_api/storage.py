import logging
import os

logger = logging.getLogger(__name__)

MEDIA_DIR = os.environ.get("MEDIA_DIR", "/media")
MEDIA_BASE_URL = os.environ.get("MEDIA_BASE_URL", "/media")
RENDERS_SUBDIR = "renders"


def render_path(track_id: str, job_id: int, fmt: str) -> str:
    """Storage path for a render. Every job gets its own file so earlier renders survive edits."""
    return f"{track_id}/{job_id}.{fmt}"


def upload(data: bytes, path: str) -> str:
    """Write ``data`` under the renders directory and return its public URL."""
    if os.path.isabs(path) or ".." in path.split("/"):
        raise ValueError(f"Invalid artifact path: {path}")

    dest = os.path.join(MEDIA_DIR, RENDERS_SUBDIR, path)
    os.makedirs(os.path.dirname(dest), exist_ok=True)
    tmp = dest + ".tmp"
    with open(tmp, "wb") as f:
        f.write(data)
    os.replace(tmp, dest)

    url = f"{MEDIA_BASE_URL.rstrip('/')}/{RENDERS_SUBDIR}/{path}"
    logger.info(f"Uploaded {len(data)} bytes to {dest}")
    return url
