import os
import sqlite3
from contextlib import contextmanager

from render_api.errors import PersistenceError

DB_PATH = os.environ.get("DB_PATH", "/data/render.db")

SCHEMA = """
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS tracks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    script TEXT NOT NULL,
    voice_config TEXT NOT NULL,
    music_config TEXT,
    frequency_config TEXT NOT NULL,
    output_config TEXT NOT NULL,
    gain_config TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    edit_count INTEGER NOT NULL DEFAULT 0,
    original_config TEXT,
    audio_url TEXT,
    duration_sec REAL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audio_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id TEXT NOT NULL REFERENCES tracks(id),
    user_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    progress INTEGER NOT NULL DEFAULT 0,
    stage TEXT,
    payload TEXT NOT NULL,
    duration_min REAL NOT NULL,
    error_msg TEXT,
    result TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audio_jobs_status ON audio_jobs (status, id);

CREATE TABLE IF NOT EXISTS track_renders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id TEXT NOT NULL REFERENCES tracks(id),
    job_id INTEGER NOT NULL REFERENCES audio_jobs(id),
    audio_url TEXT NOT NULL,
    storage_path TEXT NOT NULL,
    duration_sec REAL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS music_catalog (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    url TEXT NOT NULL,
    volume_db REAL NOT NULL DEFAULT -10
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

CONFIG_DEFAULTS = {
    "free_edit_limit": "3",
    "edit_fee_cents": "99",
    "max_jobs_per_cycle": "5",
    "lease_timeout_min": "10",
}


def get_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def db():
    try:
        conn = get_connection()
    except sqlite3.Error as e:
        raise PersistenceError(f"Could not open job store: {e}") from e
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise PersistenceError(str(e)) from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    conn = get_connection()
    try:
        conn.executescript(SCHEMA)
        for key, value in CONFIG_DEFAULTS.items():
            conn.execute(
                "INSERT OR IGNORE INTO config (key, value) VALUES (?, ?)",
                (key, value),
            )
        conn.commit()
    finally:
        conn.close()


def get_config(key: str) -> str:
    with db() as conn:
        row = conn.execute("SELECT value FROM config WHERE key=?", (key,)).fetchone()
        if row:
            return row["value"]
        return CONFIG_DEFAULTS.get(key, "")


def get_int_config(key: str) -> int:
    try:
        return int(get_config(key))
    except ValueError:
        return int(CONFIG_DEFAULTS[key])


def set_config(key: str, value: str):
    with db() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
            (key, value),
        )
