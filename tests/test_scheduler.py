"""Unit tests for the polling Scheduler."""
import asyncio
import os
import shutil
import tempfile
import unittest
from typing import List, Optional
from unittest.mock import Mock

from appstats.config import Settings
from appstats.db.store import SQLiteStore
from appstats.events import Event, EventBus
from appstats.grouping.engine import IdentityResolver
from appstats.models import ActiveWindow, RunningProcess, SessionKind
from appstats.platform.base import ActiveWindowProbe, IdleProbe, ProcessListProbe
from appstats.tracking.scheduler import Scheduler
from appstats.tracking.sessions import SessionLifecycleManager


class FakeActiveProbe(ActiveWindowProbe):
    def __init__(self) -> None:
        self.window: Optional[ActiveWindow] = None
        self.error: Optional[Exception] = None

    def poll(self) -> Optional[ActiveWindow]:
        if self.error:
            raise self.error
        return self.window


class FakeProcessProbe(ProcessListProbe):
    def __init__(self) -> None:
        self.names: List[str] = []

    def poll(self) -> List[RunningProcess]:
        return [RunningProcess(exe_name=name, pid=1000 + i) for i, name in enumerate(self.names)]


class FakeIdleProbe(IdleProbe):
    def __init__(self) -> None:
        self.idle_ms = 0

    def get_idle_ms(self) -> int:
        return self.idle_ms


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    """Drives poll_tick() directly with a controlled clock."""

    settings_overrides = {"poll_interval_ms": 5000}

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteStore(os.path.join(self.tmpdir, "test.db"))
        self.store.ensure_schema()
        self.settings = Settings(self.store, **self.settings_overrides)

        self.active = FakeActiveProbe()
        self.processes = FakeProcessProbe()
        self.idle = FakeIdleProbe()
        self.events = EventBus()
        self.now = 0

        self.lifecycle = SessionLifecycleManager(self.store, self.settings)
        self.scheduler = Scheduler(
            store=self.store,
            settings=self.settings,
            lifecycle=self.lifecycle,
            resolver=IdentityResolver(self.store),
            active_probe=self.active,
            process_probe=self.processes,
            idle_probe=self.idle,
            events=self.events,
            clock=lambda: self.now,
        )

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir)

    def focus(self, exe_name: Optional[str], title: str = "", path: Optional[str] = None) -> None:
        self.active.window = ActiveWindow(exe_name, title, 42, path) if exe_name else None

    async def tick_at(self, now: int):
        self.now = now
        return await self.scheduler.poll_tick()

    def sessions(self, kind: SessionKind):
        return self.store.list_sessions(0, 10**12, kind)


class TestSchedulerCycle(SchedulerTestCase):

    async def test_discovery_and_background_grouping(self) -> None:
        self.processes.names = ["firefox.exe"]
        self.focus("firefox.exe", "Mozilla Firefox")

        ctx = await self.tick_at(0)
        await self.scheduler.wait_for_pending()

        app = self.store.find_app_by_name("firefox.exe")
        self.assertIsNotNone(app)
        self.assertEqual(app.display_name, "Firefox")
        self.assertEqual(app.group_id, self.store.find_group_by_name("Firefox").id)
        self.assertEqual(ctx.active_app.app_id, app.id)
        self.assertTrue(self.lifecycle.is_open(app.id, SessionKind.ACTIVE))
        self.assertTrue(self.lifecycle.is_open(app.id, SessionKind.RUNNING))

    async def test_events_emitted(self) -> None:
        seen = Mock()
        ticks = Mock()
        self.events.subscribe(Event.APP_SEEN, seen)
        self.events.subscribe(Event.TRACKING_TICK, ticks)
        self.processes.names = ["vlc", "vlc"]

        await self.tick_at(0)
        await self.tick_at(5000)

        self.assertEqual(seen.call_count, 1)
        self.assertEqual(seen.call_args[0][0].app.exe_name, "vlc")
        self.assertEqual(ticks.call_count, 2)
        self.assertEqual(ticks.call_args[0][0].timestamp, 5000)

    async def test_duplicate_processes_counted_once(self) -> None:
        self.processes.names = ["chrome", "chrome", "chrome"]
        await self.tick_at(0)
        self.assertEqual(len(self.store.list_apps()), 1)
        self.assertEqual(len(self.sessions(SessionKind.RUNNING)), 1)

    async def test_probe_failure_is_tolerated(self) -> None:
        self.processes.names = ["slack"]
        self.active.error = RuntimeError("no display")

        ctx = await self.tick_at(0)

        self.assertIsNotNone(ctx)
        self.assertIsNone(ctx.active_app)
        self.assertEqual(len(self.sessions(SessionKind.RUNNING)), 1)
        self.assertEqual(self.sessions(SessionKind.ACTIVE), [])

    async def test_store_failure_does_not_raise(self) -> None:
        self.processes.names = ["slack"]
        self.store.find_app_by_name = Mock(side_effect=RuntimeError("database is locked"))

        ctx = await self.tick_at(0)

        self.assertIsNotNone(ctx)
        self.assertEqual(self.store.count_open_sessions(), 0)

    async def test_idle_user_has_no_active_session(self) -> None:
        self.processes.names = ["code"]
        self.focus("code", "main.py")
        self.idle.idle_ms = self.settings.idle_threshold_ms

        ctx = await self.tick_at(0)

        self.assertTrue(ctx.is_idle)
        self.assertIsNone(ctx.active_app)
        self.assertEqual(self.sessions(SessionKind.ACTIVE), [])
        self.assertEqual(len(self.sessions(SessionKind.RUNNING)), 1)

    async def test_vanished_process_closes_running_session(self) -> None:
        self.processes.names = ["alpha", "beta"]
        await self.tick_at(0)
        self.processes.names = ["alpha"]
        await self.tick_at(5000)

        beta = self.store.find_app_by_name("beta")
        running = {s.app_id: s for s in self.sessions(SessionKind.RUNNING)}
        self.assertEqual(running[beta.id].ended_at, 5000)
        self.assertFalse(self.lifecycle.is_open(beta.id, SessionKind.RUNNING))

    async def test_focused_app_missing_from_process_list_is_running(self) -> None:
        """Sandboxed apps can hold focus without appearing in the process list."""
        self.focus("flatpak-app", "Window")

        await self.tick_at(0)
        await self.tick_at(5000)

        app = self.store.find_app_by_name("flatpak-app")
        self.assertTrue(self.lifecycle.is_open(app.id, SessionKind.RUNNING))
        self.assertTrue(self.lifecycle.is_open(app.id, SessionKind.ACTIVE))
        self.assertEqual(len(self.sessions(SessionKind.RUNNING)), 1)

    async def test_path_backfill_triggers_catalog_grouping(self) -> None:
        catalog_id = self.store.upsert_app_identity("steam:1145360", None, "Hades", 0)
        self.processes.names = ["hades.exe"]

        await self.tick_at(0)
        await self.scheduler.wait_for_pending()
        app = self.store.find_app_by_name("hades.exe")
        self.assertIsNone(app.exe_path)
        self.assertIsNone(app.group_id)

        self.focus("hades.exe", "Hades", path="D:/Steam/steamapps/common/Hades/x64/Hades.exe")
        await self.tick_at(5000)
        await self.scheduler.wait_for_pending()

        app = self.store.get_app(app.id)
        group = self.store.find_group_by_name("Hades")
        self.assertEqual(app.exe_path, "D:/Steam/steamapps/common/Hades/x64/Hades.exe")
        self.assertIsNotNone(group)
        self.assertEqual(app.group_id, group.id)
        self.assertEqual(self.store.get_app(catalog_id).group_id, group.id)

    async def test_shutdown_closes_everything(self) -> None:
        self.processes.names = ["alpha", "beta"]
        self.focus("alpha")
        await self.tick_at(0)
        await self.tick_at(5000)

        self.now = 7000
        await self.scheduler.shutdown()

        self.assertEqual(self.store.count_open_sessions(), 0)
        for session in self.sessions(SessionKind.RUNNING):
            self.assertLessEqual(session.ended_at, 7000)

    async def test_active_time_within_running_time(self) -> None:
        """Every active session lies inside a running session of the same app."""
        timeline = [
            (0, ["alpha", "beta"], "alpha"),
            (5000, ["alpha", "beta"], "beta"),
            (10000, ["alpha"], "alpha"),
            (15000, ["alpha"], "gamma"),
            (20000, [], "alpha"),
            (25000, ["beta"], None),
        ]
        for now, names, focused in timeline:
            self.processes.names = names
            self.focus(focused)
            await self.tick_at(now)
        self.now = 30000
        await self.scheduler.shutdown()

        running = self.sessions(SessionKind.RUNNING)
        for active in self.sessions(SessionKind.ACTIVE):
            self.assertTrue(
                any(r.app_id == active.app_id
                    and r.started_at <= active.started_at
                    and active.ended_at <= r.ended_at
                    for r in running),
                f"active session {active} outside running time",
            )


class TestWhitelistMode(SchedulerTestCase):

    settings_overrides = {"poll_interval_ms": 5000, "tracking_mode": "whitelist"}

    async def test_new_apps_are_untracked(self) -> None:
        self.processes.names = ["newgame"]
        self.focus("newgame")

        ctx = await self.tick_at(0)

        app = self.store.find_app_by_name("newgame")
        self.assertIsNone(app.is_tracked)
        self.assertIsNone(ctx.active_app)
        self.assertEqual(self.store.count_open_sessions(), 0)

    async def test_tracked_app_is_recorded(self) -> None:
        app_id = self.store.upsert_app_identity("editor", None, "Editor", 0, is_tracked=True)
        self.processes.names = ["editor"]

        await self.tick_at(0)

        self.assertTrue(self.lifecycle.is_open(app_id, SessionKind.RUNNING))


class TestSettingsChangedWhileRunning(SchedulerTestCase):
    """Settings written to the store apply from the next cycle."""

    settings_overrides = {}

    async def test_switch_to_blacklist_tracks_apps_seen_in_whitelist(self) -> None:
        self.store.set_setting("tracking_mode", "whitelist")
        self.processes.names = ["newgame"]
        await self.tick_at(0)
        self.assertEqual(self.store.count_open_sessions(), 0)

        self.store.set_setting("tracking_mode", "blacklist")
        await self.tick_at(5000)

        app = self.store.find_app_by_name("newgame")
        self.assertIsNone(app.is_tracked)
        self.assertTrue(self.lifecycle.is_open(app.id, SessionKind.RUNNING))

    async def test_excluded_app_stays_excluded_across_modes(self) -> None:
        app_id = self.store.upsert_app_identity("steam", None, "Steam", 0, is_tracked=False)
        self.processes.names = ["steam"]

        await self.tick_at(0)
        self.store.set_setting("tracking_mode", "whitelist")
        await self.tick_at(5000)

        self.assertFalse(self.lifecycle.is_open(app_id, SessionKind.RUNNING))
        self.assertEqual(self.sessions(SessionKind.RUNNING), [])

    async def test_new_poll_interval_sets_gap_threshold(self) -> None:
        self.processes.names = ["alpha"]
        await self.tick_at(0)
        await self.tick_at(5000)

        self.store.set_setting("poll_interval_ms", 20_000)
        # 20 s apart: a gap at the old 12.5 s threshold, not at the new 50 s one
        await self.tick_at(25_000)
        self.assertEqual(len(self.sessions(SessionKind.RUNNING)), 1)

        await self.tick_at(80_000)

        first, second = sorted(self.sessions(SessionKind.RUNNING), key=lambda s: s.started_at)
        self.assertEqual(first.ended_at, 45_000)
        self.assertEqual(second.started_at, 80_000)
        self.assertIsNone(second.ended_at)


class TestResolutionFailure(SchedulerTestCase):

    async def test_one_failed_resolution_leaves_other_apps_grouped(self) -> None:
        resolve = self.scheduler.resolver.resolve

        def flaky_resolve(exe_name, exe_path=None, now=None):
            if exe_name == "broken":
                raise RuntimeError("database is locked")
            return resolve(exe_name, exe_path, now)

        self.scheduler.resolver.resolve = flaky_resolve
        self.processes.names = ["broken", "firefox.exe"]

        with self.assertLogs("appstats.tracking.scheduler", level="ERROR"):
            await self.tick_at(0)
            await self.scheduler.wait_for_pending()

        broken = self.store.find_app_by_name("broken")
        firefox = self.store.find_app_by_name("firefox.exe")
        self.assertIsNone(broken.group_id)
        self.assertEqual(firefox.group_id, self.store.find_group_by_name("Firefox").id)
        self.assertTrue(self.lifecycle.is_open(broken.id, SessionKind.RUNNING))
        self.assertTrue(self.lifecycle.is_open(firefox.id, SessionKind.RUNNING))


class TestSchedulerLoop(SchedulerTestCase):
    """The real timer loop, with a short interval."""

    settings_overrides = {"poll_interval_ms": 10}

    async def _wait_for(self, predicate, timeout: float = 2.0) -> None:
        async def poll() -> None:
            while not predicate():
                await asyncio.sleep(0.005)
        await asyncio.wait_for(poll(), timeout)

    async def test_start_and_stop_are_idempotent(self) -> None:
        self.scheduler.start()
        self.scheduler.start()
        self.assertTrue(self.scheduler.is_running)

        self.scheduler.stop()
        self.scheduler.stop()
        self.assertFalse(self.scheduler.is_running)
        await self.scheduler.wait_for_pending()

    async def test_loop_keeps_running_after_failed_cycle(self) -> None:
        calls = []
        original_reload = self.settings.reload

        def flaky_reload() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            original_reload()

        self.settings.reload = flaky_reload
        self.processes.names = ["alpha"]

        self.scheduler.start()
        try:
            await self._wait_for(lambda: len(calls) >= 3)
        finally:
            await self.scheduler.shutdown()

        self.assertIsNotNone(self.store.find_app_by_name("alpha"))
        self.assertEqual(self.store.count_open_sessions(), 0)

    async def test_restart_during_cycle_keeps_one_timer_chain(self) -> None:
        tick = self.scheduler._tick
        state = {"in_flight": 0, "max": 0, "cycles": 0}

        async def slow_tick(now):
            state["in_flight"] += 1
            state["max"] = max(state["max"], state["in_flight"])
            try:
                await asyncio.sleep(0.03)
                return await tick(now)
            finally:
                state["in_flight"] -= 1
                state["cycles"] += 1

        self.scheduler._tick = slow_tick
        self.scheduler.start()
        try:
            await self._wait_for(lambda: state["in_flight"] == 1)
            self.scheduler.stop()
            self.scheduler.start()
            await self._wait_for(lambda: state["cycles"] >= 4)
        finally:
            await self.scheduler.shutdown()

        self.assertEqual(state["max"], 1)

    async def test_no_cycles_after_stop(self) -> None:
        ticks = Mock()
        self.events.subscribe(Event.TRACKING_TICK, ticks)

        self.scheduler.start()
        await self._wait_for(lambda: ticks.call_count >= 1)
        await self.scheduler.shutdown()
        count = ticks.call_count

        await asyncio.sleep(0.05)
        self.assertEqual(ticks.call_count, count)


if __name__ == "__main__":
    unittest.main()
