"""
Session lifecycle management.

Turns per-tick observations into non-overlapping active and running
intervals. Each (app, kind) pair is either closed or has exactly one
open handle here; the store never sees more than one open row per pair
because only this class opens and closes them.
"""
import logging
from typing import Dict, Optional

from ..config import Settings
from ..db.base import Store
from ..models import OpenSessionHandle, SessionKind

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Owns the open-session handles for one tracker instance.

    Extending a session only touches memory; the store is written when a
    session opens or closes. A session whose last observation is older
    than the gap threshold (2.5 poll intervals) is closed one poll
    interval after that observation and a fresh one is opened.
    """

    def __init__(self, store: Store, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.active_sessions: Dict[int, OpenSessionHandle] = {}
        self.running_sessions: Dict[int, OpenSessionHandle] = {}

    @property
    def machine_id(self) -> str:
        return self.settings.machine_id

    def _handles(self, kind: SessionKind) -> Dict[int, OpenSessionHandle]:
        return self.active_sessions if kind is SessionKind.ACTIVE else self.running_sessions

    def _open(self, app_id: int, kind: SessionKind, now: int,
              window_title: Optional[str]) -> None:
        title = window_title if self.settings.record_titles else None
        try:
            session_id = self.store.insert_session(app_id, kind, now, title, self.machine_id)
        except Exception:
            # No handle is kept, so the next tick retries the open
            logger.exception("Failed to open %s session for app %s", kind.value, app_id)
            return
        self._handles(kind)[app_id] = OpenSessionHandle(
            session_id=session_id,
            started_at=now,
            last_tick=now,
            window_title=window_title,
        )
        logger.debug("Opened %s session %s for app %s", kind.value, session_id, app_id)

    def _close(self, app_id: int, kind: SessionKind, end: int) -> None:
        handle = self._handles(kind).pop(app_id, None)
        if handle is None:
            return
        try:
            self.store.close_session(handle.session_id, end)
        except Exception:
            logger.exception("Failed to close %s session %s", kind.value, handle.session_id)
            return
        logger.debug("Closed %s session %s for app %s at %s",
                     kind.value, handle.session_id, app_id, end)

    def _tick(self, app_id: int, kind: SessionKind, now: int,
              window_title: Optional[str]) -> None:
        interval = self.settings.poll_interval_ms
        handle = self._handles(kind).get(app_id)

        if handle is None:
            self._open(app_id, kind, now, window_title)
            return

        if now - handle.last_tick > self.settings.gap_threshold_ms:
            # Suspend/resume or a long stall: end where the last observation said
            self._close(app_id, kind, handle.last_tick + interval)
            self._open(app_id, kind, now, window_title)
            return

        handle.last_tick = now
        handle.window_title = window_title

    def tick_active(self, app_id: int, window_title: Optional[str], now: int) -> None:
        """Record that app_id holds focus at now. Only one app may be active."""
        interval = self.settings.poll_interval_ms
        for other_id, handle in list(self.active_sessions.items()):
            if other_id != app_id:
                self._close(other_id, SessionKind.ACTIVE, handle.last_tick + interval)

        self._tick(app_id, SessionKind.ACTIVE, now, window_title)

    def tick_running(self, app_id: int, now: int) -> None:
        """Record that app_id has a live process at now."""
        self._tick(app_id, SessionKind.RUNNING, now, None)

    def end_running_session(self, app_id: int, now: int) -> None:
        """
        Close app_id's running session immediately.

        An active session for the same app cannot outlive its process, so
        it is closed as well.
        """
        active = self.active_sessions.get(app_id)
        if active is not None:
            end = min(now, active.last_tick + self.settings.poll_interval_ms)
            self._close(app_id, SessionKind.ACTIVE, end)
        self._close(app_id, SessionKind.RUNNING, now)

    def close_all_sessions(self, now: int) -> None:
        """Close every open session in one batch. Used at shutdown."""
        interval = self.settings.poll_interval_ms
        ends: Dict[int, int] = {}
        for handle in list(self.active_sessions.values()) + list(self.running_sessions.values()):
            ends[handle.session_id] = min(now, handle.last_tick + interval)

        try:
            self.store.close_all_open_sessions(now, ends)
        except Exception:
            logger.exception("Failed to close %d open sessions", len(ends))
        else:
            logger.info("Closed %d open sessions", len(ends))
        finally:
            self.active_sessions.clear()
            self.running_sessions.clear()

    def get_active_app_id(self) -> Optional[int]:
        """App currently holding the active session, if any."""
        return next(iter(self.active_sessions), None)

    def is_open(self, app_id: int, kind: SessionKind) -> bool:
        return app_id in self._handles(kind)
