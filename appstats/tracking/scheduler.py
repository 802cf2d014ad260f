"""
Polling scheduler.

One cycle per poll interval: probe idle time, focus and the process list,
drive the session lifecycle, record newly seen executables and hand them
to the identity resolver in the background, then notify subscribers.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Set

from ..config import Settings, now_ms
from ..db.base import Store
from ..events import ActiveAppInfo, AppSeenContext, Event, EventBus, TickContext
from ..grouping.engine import IdentityResolver
from ..grouping.rules import derive_display_name
from ..models import ActiveWindow, AppIdentity, RunningProcess
from ..platform.base import ActiveWindowProbe, IdleProbe, ProcessListProbe
from .sessions import SessionLifecycleManager

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Self-rescheduling poll loop on the running asyncio event loop.

    The next cycle is scheduled only after the current one finishes, with
    the interval read at the start of that cycle, so cycles never overlap.
    stop() cancels the pending timer and leaves an in-flight cycle alone.
    """

    def __init__(
        self,
        store: Store,
        settings: Settings,
        lifecycle: SessionLifecycleManager,
        resolver: IdentityResolver,
        active_probe: ActiveWindowProbe,
        process_probe: ProcessListProbe,
        idle_probe: Optional[IdleProbe] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.settings = settings
        self.lifecycle = lifecycle
        self.resolver = resolver
        self.active_probe = active_probe
        self.process_probe = process_probe
        self.idle_probe = idle_probe
        self.events = events if events is not None else EventBus()
        self.clock = clock

        self._running = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cycle: Optional["asyncio.Task[None]"] = None
        self._background: Set["asyncio.Task[None]"] = set()
        self._prev_running: Set[int] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    # Lifecycle

    def start(self) -> None:
        """Begin scheduling cycles. Must be called with an event loop running."""
        if self._running:
            return
        self._running = True
        logger.info("Tracker started (poll interval %d ms)", self.settings.poll_interval_ms)
        # A cycle still in flight schedules the next one when it finishes
        if self._cycle is None:
            self._schedule_next()

    def stop(self) -> None:
        """Cancel the pending timer; a cycle already running is left to finish."""
        if not self._running:
            return
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.info("Tracker stopped")

    async def wait_for_pending(self) -> None:
        """Wait for the in-flight cycle and every detached resolution."""
        if self._cycle is not None:
            await asyncio.gather(self._cycle, return_exceptions=True)
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop, drain outstanding work, then close every open session."""
        self.stop()
        await self.wait_for_pending()
        self.lifecycle.close_all_sessions(self.clock())
        self._prev_running.clear()

    def _schedule_next(self) -> None:
        if not self._running or self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        delay = self.settings.poll_interval_ms / 1000.0
        self._timer = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if not self._running:
            return
        self._cycle = asyncio.ensure_future(self._run_cycle())

    async def _run_cycle(self) -> None:
        try:
            await self.poll_tick()
        finally:
            self._cycle = None
            self._schedule_next()

    # Cycle

    async def poll_tick(self) -> Optional[TickContext]:
        """Run one observation cycle. Never raises."""
        now = self.clock()
        try:
            return await self._tick(now)
        except Exception:
            logger.exception("Poll cycle failed")
            return None

    async def _tick(self, now: int) -> TickContext:
        self.settings.reload()

        idle_ms = await self._probe_idle()
        is_idle = idle_ms >= self.settings.idle_threshold_ms

        active, processes = await asyncio.gather(self._probe_active(), self._probe_processes())

        current_running: Set[int] = set()
        seen_names: Set[str] = set()

        for proc in processes:
            if proc.exe_name in seen_names:
                continue
            seen_names.add(proc.exe_name)

            app = self._observe(proc.exe_name, None, now)
            if app is None or not self._is_tracked(app):
                continue
            current_running.add(app.id)
            self.lifecycle.tick_running(app.id, now)

        active_info = self._handle_active(active, is_idle, current_running, now)

        # Processes that vanished since the previous cycle
        for app_id in self._prev_running - current_running:
            self.lifecycle.end_running_session(app_id, now)
        self._prev_running = current_running

        logger.debug(
            "tick: active=%s idle=%s (%d ms) running=%d",
            active_info.exe_name if active_info else None, is_idle, idle_ms, len(current_running)
        )

        context = TickContext(active_app=active_info, timestamp=now, is_idle=is_idle)
        self.events.emit(Event.TRACKING_TICK, context)
        return context

    def _handle_active(self, active: Optional[ActiveWindow], is_idle: bool,
                       current_running: Set[int], now: int) -> Optional[ActiveAppInfo]:
        if active is None or not active.exe_name:
            return None

        app = self._observe(active.exe_name, active.exe_path, now)
        if app is None or not self._is_tracked(app) or is_idle:
            return None

        # Focused but absent from the process list (sandboxed or system processes):
        # still running, so active time stays within running time
        if app.id not in current_running:
            self.lifecycle.tick_running(app.id, now)
            current_running.add(app.id)

        self.lifecycle.tick_active(app.id, active.window_title, now)

        if active.exe_path and not app.exe_path:
            self._backfill_path(app, active.exe_path)

        return ActiveAppInfo(app_id=app.id, exe_name=active.exe_name, display_name=app.display_name)

    def _observe(self, exe_name: str, exe_path: Optional[str], now: int) -> Optional[AppIdentity]:
        """Existing identity for exe_name, or a newly recorded one."""
        try:
            app = self.store.find_app_by_name(exe_name)
            if app is not None:
                return app
            return self._discover(exe_name, exe_path, now)
        except Exception:
            logger.exception("Failed to look up or record %s", exe_name)
            return None

    def _is_tracked(self, app: AppIdentity) -> bool:
        """
        The user's include/exclude choice wins; without one, blacklist mode
        tracks the app and whitelist mode does not.
        """
        if app.is_tracked is not None:
            return app.is_tracked
        return self.settings.tracking_mode == "blacklist"

    def _discover(self, exe_name: str, exe_path: Optional[str], now: int) -> Optional[AppIdentity]:
        app_id = self.store.upsert_app_identity(
            exe_name, exe_path, derive_display_name(exe_name), now
        )
        app = self.store.get_app(app_id)
        if app is None:
            return None

        logger.info("Discovered new app %s (id=%s, tracked=%s)",
                    exe_name, app_id, self._is_tracked(app))
        self._spawn_resolution(app_id, exe_name, exe_path)
        self.events.emit(Event.APP_SEEN, AppSeenContext(app))
        return app

    def _backfill_path(self, app: AppIdentity, exe_path: str) -> None:
        try:
            self.store.set_app_path(app.id, exe_path)
        except Exception:
            logger.exception("Failed to store path for app %s", app.id)
            return
        app.exe_path = exe_path
        # A path can unlock catalog-folder matching for ungrouped apps
        if app.group_id is None:
            self._spawn_resolution(app.id, app.exe_name, exe_path)

    # Detached resolution

    def _spawn_resolution(self, app_id: int, exe_name: str, exe_path: Optional[str]) -> None:
        task = asyncio.get_running_loop().create_task(
            self._resolve_and_store(app_id, exe_name, exe_path),
            name=f"resolve:{exe_name}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _resolve_and_store(self, app_id: int, exe_name: str, exe_path: Optional[str]) -> None:
        try:
            group_id = self.resolver.resolve(exe_name, exe_path)
            if group_id is not None:
                self.store.set_app_group(app_id, group_id)
                logger.debug("Grouped %s into group %s", exe_name, group_id)
        except Exception:
            logger.exception("Group resolution failed for %s", exe_name)

    # Probes

    async def _probe_idle(self) -> int:
        if self.idle_probe is None:
            return 0
        try:
            return int(await asyncio.to_thread(self.idle_probe.get_idle_ms))
        except Exception:
            logger.warning("Idle probe failed", exc_info=True)
            return 0

    async def _probe_active(self) -> Optional[ActiveWindow]:
        try:
            return await asyncio.to_thread(self.active_probe.poll)
        except Exception:
            logger.warning("Active window probe failed", exc_info=True)
            return None

    async def _probe_processes(self) -> List[RunningProcess]:
        try:
            return list(await asyncio.to_thread(self.process_probe.poll) or [])
        except Exception:
            logger.warning("Process list probe failed", exc_info=True)
            return []
