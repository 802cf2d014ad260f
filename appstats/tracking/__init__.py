"""Polling scheduler and session lifecycle."""
from .sessions import SessionLifecycleManager
from .scheduler import Scheduler

__all__ = ['SessionLifecycleManager', 'Scheduler']
