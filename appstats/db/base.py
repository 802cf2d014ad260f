"""Abstract storage interface consumed by the tracker core."""
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

from ..models import AppIdentity, Group, GroupRule, MatchType, Session, SessionKind


class Store(ABC):
    """
    Persistence for settings, app identities, groups, rules and sessions.

    Each call is atomic on its own; the core never holds a transaction
    open across calls.
    """

    # Settings

    @abstractmethod
    def get_setting(self, key: str) -> Any:
        """Return the decoded value for key, or None if unset."""
        pass

    @abstractmethod
    def set_setting(self, key: str, value: Any) -> None:
        pass

    # App identities

    @abstractmethod
    def upsert_app_identity(self, exe_name: str, exe_path: Optional[str],
                            display_name: str, now: int,
                            is_tracked: Optional[bool] = None) -> int:
        """
        Return the id of the identity keyed by (exe_name, exe_path),
        creating it if needed. An existing row only has last_seen bumped.
        """
        pass

    @abstractmethod
    def get_app(self, app_id: int) -> Optional[AppIdentity]:
        pass

    @abstractmethod
    def find_app_by_name(self, exe_name: str) -> Optional[AppIdentity]:
        """Return the first identity with this executable name, any path."""
        pass

    @abstractmethod
    def list_apps(self) -> List[AppIdentity]:
        pass

    @abstractmethod
    def list_catalog_apps(self) -> List[AppIdentity]:
        """Identities created by a catalog import (synthetic name prefix)."""
        pass

    @abstractmethod
    def list_app_identities_by_prefix(self, prefix: str) -> List[AppIdentity]:
        """Identities whose lowercased name, minus a .exe suffix, starts with prefix."""
        pass

    @abstractmethod
    def set_app_group(self, app_id: int, group_id: Optional[int]) -> None:
        pass

    @abstractmethod
    def set_app_path(self, app_id: int, exe_path: str) -> None:
        pass

    @abstractmethod
    def set_app_tracked(self, app_id: int, is_tracked: Optional[bool]) -> None:
        pass

    # Groups and rules

    @abstractmethod
    def find_group_by_name(self, name: str) -> Optional[Group]:
        pass

    @abstractmethod
    def create_group(self, name: str, manual: bool, now: int) -> int:
        pass

    @abstractmethod
    def list_groups(self) -> List[Group]:
        pass

    @abstractmethod
    def list_manual_rules(self) -> List[GroupRule]:
        pass

    @abstractmethod
    def create_rule(self, group_id: int, pattern: str,
                    match_type: MatchType = MatchType.EXACT, manual: bool = True) -> int:
        pass

    @abstractmethod
    def count_manual_rule_for_group(self, group_id: int) -> int:
        pass

    # Sessions

    @abstractmethod
    def insert_session(self, app_id: int, kind: SessionKind, start: int,
                       title: Optional[str], machine_id: str) -> int:
        pass

    @abstractmethod
    def close_session(self, session_id: int, end: int) -> None:
        pass

    @abstractmethod
    def close_all_open_sessions(self, now: int,
                                ends: Optional[Mapping[int, int]] = None) -> None:
        """
        Atomically close sessions: explicit end times from ends first,
        then every remaining open session at now.
        """
        pass

    @abstractmethod
    def recover_orphaned_sessions(self, machine_id: str) -> int:
        """Close sessions left open by a crash at their own start time."""
        pass

    @abstractmethod
    def list_sessions(self, start: int, end: int,
                      kind: Optional[SessionKind] = None) -> List[Session]:
        """Sessions overlapping [start, end]; open sessions are included."""
        pass
