"""SQLite implementation of the Store interface."""
import json
import sqlite3
from typing import Any, List, Mapping, Optional

from ..config import CATALOG_NAME_PREFIX, DB_PATH
from ..models import AppIdentity, Group, GroupRule, MatchType, Session, SessionKind
from .base import Store
from .connection import ensure_db_exists, get_cursor

APP_COLUMNS = "id, exe_name, exe_path, display_name, group_id, is_tracked, first_seen, last_seen"
SESSION_COLUMNS = "id, app_id, session_type, started_at, ended_at, window_title, machine_id"


def _flag(value: Optional[bool]) -> Optional[int]:
    return None if value is None else int(value)


def _app_from_row(row: sqlite3.Row) -> AppIdentity:
    return AppIdentity(
        id=row["id"],
        exe_name=row["exe_name"],
        exe_path=row["exe_path"],
        display_name=row["display_name"],
        group_id=row["group_id"],
        is_tracked=None if row["is_tracked"] is None else bool(row["is_tracked"]),
        first_seen=row["first_seen"],
        last_seen=row["last_seen"],
    )


def _session_from_row(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        app_id=row["app_id"],
        kind=SessionKind(row["session_type"]),
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        window_title=row["window_title"],
        machine_id=row["machine_id"],
    )


def _group_from_row(row: sqlite3.Row) -> Group:
    return Group(
        id=row["id"],
        name=row["name"],
        is_manual=bool(row["is_manual"]),
        created_at=row["created_at"],
    )


class SQLiteStore(Store):
    """Store backed by a single SQLite file, one connection per call."""

    def __init__(self, db_path: str = DB_PATH) -> None:
        self.db_path = db_path

    def ensure_schema(self) -> None:
        """Create tables and seed default settings."""
        ensure_db_exists(self.db_path)

    # Settings

    def get_setting(self, key: str) -> Any:
        with get_cursor(self.db_path) as cur:
            cur.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cur.fetchone()
        return json.loads(row["value"]) if row else None

    def set_setting(self, key: str, value: Any) -> None:
        with get_cursor(self.db_path) as cur:
            cur.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, json.dumps(value))
            )

    # App identities

    def upsert_app_identity(self, exe_name: str, exe_path: Optional[str],
                            display_name: str, now: int,
                            is_tracked: Optional[bool] = None) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute("""
                SELECT id FROM apps
                WHERE exe_name = ? AND (exe_path = ? OR (exe_path IS NULL AND ? IS NULL))
            """, (exe_name, exe_path, exe_path))
            row = cur.fetchone()
            if row:
                cur.execute("UPDATE apps SET last_seen = ? WHERE id = ?", (now, row["id"]))
                return int(row["id"])

            cur.execute("""
                INSERT INTO apps (exe_name, exe_path, display_name, is_tracked, first_seen, last_seen)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (exe_name, exe_path, display_name, _flag(is_tracked), now, now))
            return int(cur.lastrowid)

    def get_app(self, app_id: int) -> Optional[AppIdentity]:
        with get_cursor(self.db_path) as cur:
            cur.execute(f"SELECT {APP_COLUMNS} FROM apps WHERE id = ?", (app_id,))
            row = cur.fetchone()
        return _app_from_row(row) if row else None

    def find_app_by_name(self, exe_name: str) -> Optional[AppIdentity]:
        with get_cursor(self.db_path) as cur:
            cur.execute(
                f"SELECT {APP_COLUMNS} FROM apps WHERE exe_name = ? ORDER BY id LIMIT 1",
                (exe_name,)
            )
            row = cur.fetchone()
        return _app_from_row(row) if row else None

    def list_apps(self) -> List[AppIdentity]:
        with get_cursor(self.db_path) as cur:
            cur.execute(f"SELECT {APP_COLUMNS} FROM apps ORDER BY id")
            return [_app_from_row(r) for r in cur.fetchall()]

    def list_catalog_apps(self) -> List[AppIdentity]:
        with get_cursor(self.db_path) as cur:
            cur.execute(
                f"SELECT {APP_COLUMNS} FROM apps WHERE exe_name LIKE ? ORDER BY id",
                (CATALOG_NAME_PREFIX + "%",)
            )
            return [_app_from_row(r) for r in cur.fetchall()]

    def list_app_identities_by_prefix(self, prefix: str) -> List[AppIdentity]:
        escaped = prefix.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with get_cursor(self.db_path) as cur:
            cur.execute(f"""
                SELECT {APP_COLUMNS} FROM apps
                WHERE lower(replace(exe_name, '.exe', '')) LIKE ? ESCAPE '\\'
                ORDER BY id
            """, (escaped + "%",))
            return [_app_from_row(r) for r in cur.fetchall()]

    def set_app_group(self, app_id: int, group_id: Optional[int]) -> None:
        with get_cursor(self.db_path) as cur:
            cur.execute("UPDATE apps SET group_id = ? WHERE id = ?", (group_id, app_id))

    def set_app_path(self, app_id: int, exe_path: str) -> None:
        with get_cursor(self.db_path) as cur:
            cur.execute("UPDATE apps SET exe_path = ? WHERE id = ?", (exe_path, app_id))

    def set_app_tracked(self, app_id: int, is_tracked: Optional[bool]) -> None:
        with get_cursor(self.db_path) as cur:
            cur.execute("UPDATE apps SET is_tracked = ? WHERE id = ?", (_flag(is_tracked), app_id))

    # Groups and rules

    def find_group_by_name(self, name: str) -> Optional[Group]:
        with get_cursor(self.db_path) as cur:
            cur.execute(
                "SELECT id, name, is_manual, created_at FROM app_groups WHERE name = ?",
                (name,)
            )
            row = cur.fetchone()
        return _group_from_row(row) if row else None

    def create_group(self, name: str, manual: bool, now: int) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute(
                "INSERT INTO app_groups (name, is_manual, created_at) VALUES (?, ?, ?)",
                (name, int(manual), now)
            )
            return int(cur.lastrowid)

    def list_groups(self) -> List[Group]:
        with get_cursor(self.db_path) as cur:
            cur.execute("SELECT id, name, is_manual, created_at FROM app_groups ORDER BY id")
            return [_group_from_row(r) for r in cur.fetchall()]

    def list_manual_rules(self) -> List[GroupRule]:
        with get_cursor(self.db_path) as cur:
            cur.execute("""
                SELECT id, group_id, pattern, match_type, is_manual
                FROM group_rules
                WHERE is_manual = 1
                ORDER BY id
            """)
            return [
                GroupRule(
                    id=r["id"],
                    group_id=r["group_id"],
                    pattern=r["pattern"],
                    match_type=MatchType(r["match_type"]),
                    is_manual=bool(r["is_manual"]),
                )
                for r in cur.fetchall()
            ]

    def create_rule(self, group_id: int, pattern: str,
                    match_type: MatchType = MatchType.EXACT, manual: bool = True) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute("""
                INSERT INTO group_rules (group_id, pattern, match_type, is_manual)
                VALUES (?, ?, ?, ?)
            """, (group_id, pattern, MatchType(match_type).value, int(manual)))
            return int(cur.lastrowid)

    def count_manual_rule_for_group(self, group_id: int) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute(
                "SELECT COUNT(*) AS count FROM group_rules WHERE is_manual = 1 AND group_id = ?",
                (group_id,)
            )
            row = cur.fetchone()
        return int(row["count"]) if row else 0

    # Sessions

    def insert_session(self, app_id: int, kind: SessionKind, start: int,
                       title: Optional[str], machine_id: str) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute("""
                INSERT INTO sessions (app_id, session_type, started_at, window_title, machine_id)
                VALUES (?, ?, ?, ?, ?)
            """, (app_id, SessionKind(kind).value, start, title, machine_id))
            return int(cur.lastrowid)

    def close_session(self, session_id: int, end: int) -> None:
        with get_cursor(self.db_path) as cur:
            cur.execute("UPDATE sessions SET ended_at = ? WHERE id = ?", (end, session_id))

    def close_all_open_sessions(self, now: int,
                                ends: Optional[Mapping[int, int]] = None) -> None:
        with get_cursor(self.db_path) as cur:
            if ends:
                cur.executemany(
                    "UPDATE sessions SET ended_at = ? WHERE id = ?",
                    [(end, session_id) for session_id, end in ends.items()]
                )
            cur.execute("UPDATE sessions SET ended_at = ? WHERE ended_at IS NULL", (now,))

    def recover_orphaned_sessions(self, machine_id: str) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute("""
                UPDATE sessions SET ended_at = started_at
                WHERE ended_at IS NULL AND machine_id = ?
            """, (machine_id,))
            return cur.rowcount

    def list_sessions(self, start: int, end: int,
                      kind: Optional[SessionKind] = None) -> List[Session]:
        with get_cursor(self.db_path) as cur:
            if kind:
                cur.execute(f"""
                    SELECT {SESSION_COLUMNS} FROM sessions
                    WHERE started_at <= ? AND (ended_at IS NULL OR ended_at >= ?)
                      AND session_type = ?
                    ORDER BY started_at ASC
                """, (end, start, SessionKind(kind).value))
            else:
                cur.execute(f"""
                    SELECT {SESSION_COLUMNS} FROM sessions
                    WHERE started_at <= ? AND (ended_at IS NULL OR ended_at >= ?)
                    ORDER BY started_at ASC
                """, (end, start))
            return [_session_from_row(r) for r in cur.fetchall()]

    def count_open_sessions(self) -> int:
        with get_cursor(self.db_path) as cur:
            cur.execute("SELECT COUNT(*) AS count FROM sessions WHERE ended_at IS NULL")
            return int(cur.fetchone()["count"])
