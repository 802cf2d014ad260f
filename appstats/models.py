"""
Data models for the application.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionKind(str, Enum):
    """Kind of usage interval recorded for an app."""
    ACTIVE = "active"
    RUNNING = "running"


class MatchType(str, Enum):
    """How a group rule's pattern is compared against an executable name."""
    EXACT = "exact"
    PREFIX = "prefix"
    REGEX = "regex"


@dataclass
class AppIdentity:
    """Represents one observed executable (a row in the apps table)."""
    id: int
    exe_name: str
    display_name: str
    first_seen: int
    last_seen: int
    exe_path: Optional[str] = None
    group_id: Optional[int] = None
    is_tracked: Optional[bool] = None  # None: follow the tracking mode


@dataclass
class Session:
    """A single active or running interval for an app."""
    id: int
    app_id: int
    kind: SessionKind
    started_at: int
    machine_id: str
    ended_at: Optional[int] = None
    window_title: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@dataclass
class Group:
    """A named cluster of app identities."""
    id: int
    name: str
    is_manual: bool = False
    created_at: int = 0


@dataclass
class GroupRule:
    """A pattern mapping executable names onto a group."""
    id: int
    group_id: int
    pattern: str
    match_type: MatchType = MatchType.EXACT
    is_manual: bool = True


@dataclass
class OpenSessionHandle:
    """In-memory bookkeeping for a session that is currently open."""
    session_id: int
    started_at: int
    last_tick: int
    window_title: Optional[str] = None


@dataclass
class ActiveWindow:
    """Result of an active window probe."""
    exe_name: str
    window_title: str
    pid: int
    exe_path: Optional[str] = None


@dataclass(frozen=True)
class RunningProcess:
    """One entry of a process list probe."""
    exe_name: str
    pid: int


@dataclass
class UsageTotals:
    """Accumulated active and running time, in milliseconds."""
    active_ms: int = 0
    running_ms: int = 0
    sessions: int = field(default=0, compare=False)
