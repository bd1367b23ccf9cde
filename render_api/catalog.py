import logging
import os
import shutil
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from render_api.database import db
from render_api.errors import MusicNotFound, ProviderError, ValidationError

logger = logging.getLogger(__name__)

MEDIA_DIR = os.environ.get("MEDIA_DIR", "/media")
DOWNLOAD_TIMEOUT_S = 120


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    url: str
    volume_db: float


def lookup(music_id: str) -> CatalogEntry:
    with db() as conn:
        row = conn.execute(
            "SELECT id, name, url, volume_db FROM music_catalog WHERE id=?", (music_id,)
        ).fetchone()
    if not row:
        raise MusicNotFound(f"Background music {music_id} not in catalog")
    return CatalogEntry(id=row["id"], name=row["name"], url=row["url"], volume_db=row["volume_db"])


def add_entry(music_id: str, name: str, url: str, volume_db: float = -10.0) -> CatalogEntry:
    with db() as conn:
        conn.execute(
            """
            INSERT INTO music_catalog (id, name, url, volume_db) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name=excluded.name, url=excluded.url, volume_db=excluded.volume_db
            """,
            (music_id, name, url, volume_db),
        )
    logger.info(f"Catalog entry saved: {music_id} -> {url}")
    return CatalogEntry(id=music_id, name=name, url=url, volume_db=volume_db)


def _media_path(path: str) -> str:
    """Resolve ``path`` under MEDIA_DIR, refusing anything that lands outside it."""
    root = os.path.realpath(MEDIA_DIR)
    resolved = os.path.realpath(os.path.join(root, path))
    if os.path.commonpath([root, resolved]) != root:
        raise MusicNotFound(f"Background music path escapes the media directory: {path}")
    return resolved


def fetch_asset(url: str, dest: str, allow_local: bool = False) -> str:
    """Copy or download the asset at ``url`` to ``dest`` and return ``dest``.

    ``url`` is http(s). With ``allow_local`` (catalog entries only) it may also
    be a path relative to MEDIA_DIR or a ``file://`` URL inside it.
    """
    parsed = urlparse(url)
    os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)

    if parsed.scheme in ("http", "https"):
        logger.info(f"Downloading background music: {url}")
        try:
            with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT_S) as resp:
                resp.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=1_048_576):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            raise ProviderError("music", f"Download failed for {url}: {e}") from e
        return dest

    if not allow_local or parsed.scheme not in ("", "file"):
        raise ValidationError(f"Background music URL must be http(s): {url}")

    src = _media_path(parsed.path if parsed.scheme == "file" else url)
    if not os.path.isfile(src):
        raise MusicNotFound(f"Background music file not found: {src}")
    shutil.copyfile(src, dest)
    return dest
