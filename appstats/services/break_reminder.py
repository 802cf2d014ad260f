"""Break reminder driven by tracker ticks."""
import logging
from typing import Optional

from ..config import Settings
from ..events import Event, EventBus, TickContext
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class BreakReminder:
    """
    Counts continuous active time from tick events and sends a desktop
    notification once it reaches settings.break_reminder_mins.

    Each active, non-idle tick adds one poll interval. An idle tick or a
    tick without an active app resets the count.
    """

    def __init__(self, settings: Settings,
                 notifier: Optional[NotificationService] = None) -> None:
        self.settings = settings
        self.notifier = notifier or NotificationService()
        self.continuous_active_ms = 0
        self.last_notified_at: Optional[int] = None

    def register(self, events: EventBus) -> None:
        events.subscribe(Event.TRACKING_TICK, self.on_tick)

    def unregister(self, events: EventBus) -> None:
        events.unsubscribe(Event.TRACKING_TICK, self.on_tick)

    def on_tick(self, ctx: TickContext) -> None:
        reminder_mins = self.settings.break_reminder_mins
        if reminder_mins <= 0 or ctx.active_app is None or ctx.is_idle:
            self.continuous_active_ms = 0
            return

        self.continuous_active_ms += self.settings.poll_interval_ms
        threshold_ms = reminder_mins * 60_000

        if self.continuous_active_ms < threshold_ms:
            return
        if self.last_notified_at is not None and ctx.timestamp - self.last_notified_at <= threshold_ms:
            return

        self.last_notified_at = ctx.timestamp
        logger.info("Break reminder after %d ms of continuous activity", self.continuous_active_ms)
        self.notifier.notify_break_reminder(self.continuous_active_ms)
