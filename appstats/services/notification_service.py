"""Desktop notification service."""
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

APP_NAME = "AppStats"
NOTIFY_BUS_NAME = "org.freedesktop.Notifications"
NOTIFY_OBJECT_PATH = "/org/freedesktop/Notifications"


class NotificationService:
    """
    Sends freedesktop notifications over the D-Bus session bus.

    dbus-python is optional; without it (or without a session bus) every
    notify() call logs a warning and returns False. A repeated reminder
    replaces the previous bubble instead of stacking a new one.
    """

    def __init__(self, app_name: str = APP_NAME) -> None:
        self.app_name = app_name
        self._interface: Optional[Any] = None
        self._last_id = 0

    def _get_interface(self) -> Any:
        if self._interface is None:
            import dbus  # type: ignore[import-untyped]

            bus = dbus.SessionBus()  # type: ignore[reportUnknownMemberType]
            obj = bus.get_object(NOTIFY_BUS_NAME, NOTIFY_OBJECT_PATH)  # type: ignore[reportUnknownMemberType]
            self._interface = dbus.Interface(obj, NOTIFY_BUS_NAME)  # type: ignore[reportUnknownMemberType]
        return self._interface

    def notify(self, title: str, message: str, icon: str = "dialog-information",
               timeout: int = 0, replace: bool = False) -> bool:
        """
        Send desktop notification.

        Args:
            title: Notification title
            message: Notification message
            icon: Icon name (theme icon)
            timeout: Timeout in ms (0 = no timeout)
            replace: Replace the previously sent notification

        Returns:
            True if DBus notification succeeded, False otherwise
        """
        try:
            interface = self._get_interface()
            replaces_id = self._last_id if replace else 0
            self._last_id = int(interface.Notify(  # type: ignore[reportUnknownMemberType]
                self.app_name, replaces_id, icon, title, message, [], {}, timeout
            ))
            return True
        except Exception as e:
            self._interface = None
            logger.warning("DBus notification failed: %s", e)
            return False

    def notify_break_reminder(self, active_ms: int) -> bool:
        """Tell the user how long they have been continuously active."""
        total_min = active_ms // 60_000
        h, m = divmod(total_min, 60)
        time_str = f"{h}h {m}m" if h > 0 else f"{m}m"
        return self.notify(
            "Time for a break!",
            f"You've been active for {time_str}. Consider taking a short break.",
            "chronometer-pause-symbolic",
            timeout=10_000,
            replace=True,
        )
