"""Tracker event system: tick and app-discovery notifications."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Any, Dict, List, Optional, TypeVar

from ..models import AppIdentity

logger = logging.getLogger(__name__)


class Event(Enum):
    """Tracker events subscribers can listen for."""
    TRACKING_TICK = "tracking_tick"
    APP_SEEN = "app_seen"


class EventContext:
    """Base context for event handlers."""
    pass


@dataclass
class ActiveAppInfo:
    """The app holding focus during a tick."""
    app_id: int
    exe_name: str
    display_name: str


class TickContext(EventContext):
    """Context passed to TRACKING_TICK handlers once per scheduler cycle."""
    def __init__(self, active_app: Optional[ActiveAppInfo], timestamp: int, is_idle: bool) -> None:
        self.active_app = active_app
        self.timestamp = timestamp
        self.is_idle = is_idle

    def __repr__(self) -> str:
        return f"TickContext(active_app={self.active_app!r}, timestamp={self.timestamp}, is_idle={self.is_idle})"


class AppSeenContext(EventContext):
    """Context passed to APP_SEEN handlers when a new executable is recorded."""
    def __init__(self, app: AppIdentity) -> None:
        self.app = app


ContextT = TypeVar('ContextT', bound=EventContext)


class EventBus:
    """Central event dispatcher."""

    def __init__(self) -> None:
        # Store handlers with Any type to allow different context subtypes
        self._handlers: Dict[Event, List[Callable[[Any], None]]] = {}

    def subscribe(self, event: Event, handler: Callable[[ContextT], None]) -> None:
        """Subscribe to an event with a typed handler."""
        if event not in self._handlers:
            self._handlers[event] = []
        self._handlers[event].append(handler)  # type: ignore[arg-type]

    def unsubscribe(self, event: Event, handler: Callable[[ContextT], None]) -> None:
        """Remove a handler; unknown handlers are ignored."""
        try:
            self._handlers.get(event, []).remove(handler)  # type: ignore[arg-type]
        except ValueError:
            pass

    def emit(self, event: Event, context: EventContext) -> None:
        """Emit an event to all subscribers."""
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(context)
            except Exception:
                logger.exception("Event handler error (%s)", event.value)


__all__ = ['Event', 'EventBus', 'EventContext', 'TickContext', 'AppSeenContext', 'ActiveAppInfo']
