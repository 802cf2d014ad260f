import os
import re
import json
import logging
import time
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .db.base import Store

logger = logging.getLogger(__name__)

DB_PATH: str = os.path.expanduser(os.environ.get("APPSTATS_DB", "~/.local/share/appstats.db"))

# A session is closed and reopened once this many poll intervals pass without an observation
GAP_FACTOR: float = 2.5

# Catalog imports use synthetic exe names ("steam:<appid>") and install under steamapps/common/<Folder>
CATALOG_NAME_PREFIX: str = "steam:"
CATALOG_PATH_PATTERN = re.compile(r"steamapps[\\/]common[\\/]([^\\/]+)", re.IGNORECASE)

TRACKING_MODES = ("blacklist", "whitelist")

# Debug mode - logs detailed tracking information
DEBUG_MODE: bool = os.environ.get("APPSTATS_DEBUG", "0") == "1"
DEBUG_LOG_PATH: str = os.path.expanduser(
    os.environ.get("APPSTATS_DEBUG_LOG", "~/.local/share/appstats_debug.log")
)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# --- Dynamic Configuration Class ---

class Settings:
    """
    Tracker settings backed by the store's settings table.

    Values can change while the tracker runs; the scheduler calls reload()
    at the start of every cycle so a change applies without a restart.
    """
    DEFAULT_POLL_INTERVAL_MS: int = 5000
    DEFAULT_IDLE_THRESHOLD_MS: int = 300_000  # 5 minutes
    DEFAULT_TRACKING_MODE: str = "blacklist"
    DEFAULT_RECORD_TITLES: bool = True
    DEFAULT_BREAK_REMINDER_MINS: int = 0

    def __init__(self, store: Optional['Store'] = None, **overrides: Any) -> None:
        """
        Initializes the settings with defaults, then loads from the store.

        Keyword overrides win over stored values; tests use them to pin
        an interval without touching the database.
        """
        self.store = store
        self._overrides: Dict[str, Any] = overrides

        self.poll_interval_ms: int = self.DEFAULT_POLL_INTERVAL_MS
        self.idle_threshold_ms: int = self.DEFAULT_IDLE_THRESHOLD_MS
        self.tracking_mode: str = self.DEFAULT_TRACKING_MODE
        self.record_titles: bool = self.DEFAULT_RECORD_TITLES
        self.break_reminder_mins: int = self.DEFAULT_BREAK_REMINDER_MINS
        self.machine_id: str = ""

        self.reload()

    def _get(self, key: str) -> Any:
        if key in self._overrides:
            return self._overrides[key]
        if self.store is None:
            return None
        try:
            return self.store.get_setting(key)
        except ValueError:
            # Not valid JSON; the caller falls back to the default
            logger.warning("Ignoring unreadable setting %r", key)
            return None

    @staticmethod
    def _positive_int(value: Any, default: int) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        return int(value) if value > 0 else default

    def reload(self) -> None:
        """
        Re-read every key, falling back to the class defaults for
        missing or malformed values.
        """
        self.poll_interval_ms = self._positive_int(
            self._get("poll_interval_ms"), self.DEFAULT_POLL_INTERVAL_MS
        )
        self.idle_threshold_ms = self._positive_int(
            self._get("idle_threshold_ms"), self.DEFAULT_IDLE_THRESHOLD_MS
        )

        mode = self._get("tracking_mode")
        self.tracking_mode = mode if mode in TRACKING_MODES else self.DEFAULT_TRACKING_MODE

        titles = self._get("record_titles")
        self.record_titles = titles if isinstance(titles, bool) else self.DEFAULT_RECORD_TITLES

        mins = self._get("break_reminder_mins")
        if isinstance(mins, int) and not isinstance(mins, bool) and mins >= 0:
            self.break_reminder_mins = mins
        else:
            self.break_reminder_mins = self.DEFAULT_BREAK_REMINDER_MINS

        machine_id = self._get("machine_id")
        self.machine_id = str(machine_id) if machine_id else ""

    @property
    def gap_threshold_ms(self) -> float:
        return self.poll_interval_ms * GAP_FACTOR

    def as_dict(self) -> Dict[str, Any]:
        return {
            "poll_interval_ms": self.poll_interval_ms,
            "idle_threshold_ms": self.idle_threshold_ms,
            "tracking_mode": self.tracking_mode,
            "record_titles": self.record_titles,
            "break_reminder_mins": self.break_reminder_mins,
            "machine_id": self.machine_id,
        }

    def __repr__(self) -> str:
        return f"Settings({json.dumps(self.as_dict())})"
