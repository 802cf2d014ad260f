"""
Business logic for app usage statistics.
"""
from typing import Dict, List, Optional, Tuple

from ..config import now_ms
from ..db.base import Store
from ..models import SessionKind, UsageTotals


class UsageService:
    """Provides statistics about application usage from recorded sessions."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def get_usage_for_period(self, start: int, end: int,
                             now: Optional[int] = None) -> Dict[int, UsageTotals]:
        """
        Calculate active and running time per app during a period.

        Args:
            start: Period start (epoch ms)
            end: Period end (epoch ms)
            now: Current time; open sessions are counted up to min(end, now)

        Returns:
            Dict mapping app_id to its UsageTotals
        """
        # Only count time up to 'end', never past 'now'
        effective_end = min(end, now if now is not None else now_ms())
        totals: Dict[int, UsageTotals] = {}

        for session in self.store.list_sessions(start, end):
            session_end = session.ended_at if session.ended_at is not None else effective_end
            duration = min(session_end, effective_end) - max(session.started_at, start)
            if duration <= 0:
                continue

            app_totals = totals.setdefault(session.app_id, UsageTotals())
            if session.kind is SessionKind.ACTIVE:
                app_totals.active_ms += duration
            else:
                app_totals.running_ms += duration
            app_totals.sessions += 1

        return totals

    def get_top_apps(self, start: int, end: int, limit: int = 10,
                     now: Optional[int] = None) -> List[Tuple[str, UsageTotals]]:
        """
        Get top N applications by active time.

        Returns:
            List of (display_name, totals) tuples sorted by active time
        """
        usage = self.get_usage_for_period(start, end, now)
        names = {app.id: app.display_name for app in self.store.list_apps()}
        rows = [(names.get(app_id, f"app #{app_id}"), t) for app_id, t in usage.items()]
        rows.sort(key=lambda x: (x[1].active_ms, x[1].running_ms), reverse=True)
        return rows[:limit]

    def get_group_usage(self, start: int, end: int,
                        now: Optional[int] = None) -> List[Tuple[str, UsageTotals]]:
        """
        Sum usage per group. Ungrouped apps are listed under their own name.
        """
        usage = self.get_usage_for_period(start, end, now)
        groups = {group.id: group.name for group in self.store.list_groups()}
        apps = {app.id: app for app in self.store.list_apps()}

        grouped: Dict[str, UsageTotals] = {}
        for app_id, t in usage.items():
            app = apps.get(app_id)
            if app is None:
                label = f"app #{app_id}"
            elif app.group_id is not None and app.group_id in groups:
                label = groups[app.group_id]
            else:
                label = app.display_name
            entry = grouped.setdefault(label, UsageTotals())
            entry.active_ms += t.active_ms
            entry.running_ms += t.running_ms
            entry.sessions += t.sessions

        return sorted(grouped.items(), key=lambda x: (x[1].active_ms, x[1].running_ms), reverse=True)
