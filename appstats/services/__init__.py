"""Business logic services."""
from .usage_service import UsageService
from .notification_service import NotificationService
from .break_reminder import BreakReminder

__all__ = ['UsageService', 'NotificationService', 'BreakReminder']
