import logging
import os

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from render_api.catalog import add_entry
from render_api.database import get_int_config, set_config

logger = logging.getLogger(__name__)
router = APIRouter()

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")

CONFIG_LIMITS = {
    "free_edit_limit": (0, 100),
    "edit_fee_cents": (0, 100_000),
    "max_jobs_per_cycle": (1, 50),
    "lease_timeout_min": (1, 240),
}


def require_admin(x_admin_token: str = Header(None)):
    if not ADMIN_TOKEN:
        raise HTTPException(500, "ADMIN_TOKEN not configured")
    if x_admin_token != ADMIN_TOKEN:
        raise HTTPException(403, "Invalid admin token")


class ConfigUpdate(BaseModel):
    free_edit_limit: int | None = None
    edit_fee_cents: int | None = None
    max_jobs_per_cycle: int | None = None
    lease_timeout_min: int | None = None


class MusicEntry(BaseModel):
    id: str = Field(min_length=1)
    name: str
    url: str = Field(min_length=1)
    volume_db: float = Field(-10.0, ge=-24, le=0)


@router.get("/admin/config")
def get_admin_config(auth=Depends(require_admin)):
    return {key: get_int_config(key) for key in CONFIG_LIMITS}


@router.post("/admin/config")
def update_admin_config(update: ConfigUpdate, auth=Depends(require_admin)):
    changes = update.model_dump(exclude_none=True)
    for key, value in changes.items():
        low, high = CONFIG_LIMITS[key]
        if not (low <= value <= high):
            raise HTTPException(400, f"{key} must be {low}-{high}")

    for key, value in changes.items():
        set_config(key, str(value))
        logger.info(f"Config {key} set to: {value}")
    return {"ok": True}


@router.post("/admin/music")
def upsert_music(entry: MusicEntry, auth=Depends(require_admin)):
    """Add or replace a background music asset in the catalog."""
    saved = add_entry(entry.id, entry.name, entry.url, entry.volume_db)
    return {"ok": True, "id": saved.id}
