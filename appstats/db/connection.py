"""Database connection management."""
import sqlite3
import os
import json
import uuid
from contextlib import contextmanager
from typing import Iterator, List, Tuple

from ..config import Settings

SCHEMA_VERSION = 1


def get_connection(db_path: str) -> sqlite3.Connection:
    """Create and return a database connection."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor(db_path: str) -> Iterator[sqlite3.Cursor]:
    """Context manager for database operations."""
    conn = get_connection(db_path)
    try:
        cursor = conn.cursor()
        yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _default_settings() -> List[Tuple[str, str]]:
    return [
        ("poll_interval_ms", json.dumps(Settings.DEFAULT_POLL_INTERVAL_MS)),
        ("idle_threshold_ms", json.dumps(Settings.DEFAULT_IDLE_THRESHOLD_MS)),
        ("tracking_mode", json.dumps(Settings.DEFAULT_TRACKING_MODE)),
        ("record_titles", json.dumps(Settings.DEFAULT_RECORD_TITLES)),
        ("break_reminder_mins", json.dumps(Settings.DEFAULT_BREAK_REMINDER_MINS)),
        ("machine_id", json.dumps(str(uuid.uuid4()))),
    ]


def ensure_db_exists(db_path: str) -> None:
    """Ensure database directory, tables and default settings exist."""
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with get_cursor(db_path) as cur:
        cur.executescript("""
            CREATE TABLE IF NOT EXISTS app_groups (
                id         INTEGER PRIMARY KEY AUTOINCREMENT,
                name       TEXT NOT NULL UNIQUE,
                is_manual  INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS apps (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                exe_name     TEXT NOT NULL,
                exe_path     TEXT,
                display_name TEXT NOT NULL,
                group_id     INTEGER REFERENCES app_groups(id) ON DELETE SET NULL,
                is_tracked   INTEGER,
                first_seen   INTEGER NOT NULL,
                last_seen    INTEGER NOT NULL,
                UNIQUE(exe_name, exe_path)
            );

            CREATE TABLE IF NOT EXISTS sessions (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                app_id       INTEGER NOT NULL REFERENCES apps(id) ON DELETE CASCADE,
                session_type TEXT NOT NULL CHECK(session_type IN ('active','running')),
                started_at   INTEGER NOT NULL,
                ended_at     INTEGER,
                window_title TEXT,
                machine_id   TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_app_id     ON sessions(app_id);
            CREATE INDEX IF NOT EXISTS idx_sessions_started_at ON sessions(started_at);
            CREATE INDEX IF NOT EXISTS idx_sessions_type       ON sessions(session_type);

            CREATE TABLE IF NOT EXISTS settings (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS group_rules (
                id         INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id   INTEGER NOT NULL REFERENCES app_groups(id) ON DELETE CASCADE,
                pattern    TEXT NOT NULL,
                match_type TEXT NOT NULL CHECK(match_type IN ('regex','exact','prefix')),
                is_manual  INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY
            );
        """)
        cur.execute(
            "INSERT OR IGNORE INTO schema_migrations (version) VALUES (?)",
            (SCHEMA_VERSION,)
        )
        cur.executemany(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            _default_settings()
        )
