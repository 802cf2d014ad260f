"""Unit tests for SQLiteStore."""
import os
import shutil
import tempfile
import unittest

from appstats.config import Settings
from appstats.db.connection import get_cursor
from appstats.db.store import SQLiteStore
from appstats.models import MatchType, SessionKind


class TestSQLiteStore(unittest.TestCase):

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmpdir, "nested", "test.db")
        self.store = SQLiteStore(self.db_path)
        self.store.ensure_schema()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir)

    def test_schema_is_idempotent_and_seeds_settings(self) -> None:
        machine_id = self.store.get_setting("machine_id")
        self.store.ensure_schema()

        self.assertTrue(machine_id)
        self.assertEqual(self.store.get_setting("machine_id"), machine_id)
        self.assertEqual(self.store.get_setting("poll_interval_ms"), 5000)
        self.assertEqual(self.store.get_setting("tracking_mode"), "blacklist")
        self.assertIs(self.store.get_setting("record_titles"), True)

    def test_settings_round_trip_json(self) -> None:
        self.store.set_setting("idle_threshold_ms", 60000)
        self.store.set_setting("record_titles", False)

        self.assertEqual(self.store.get_setting("idle_threshold_ms"), 60000)
        self.assertIs(self.store.get_setting("record_titles"), False)
        self.assertIsNone(self.store.get_setting("missing"))

    def test_upsert_returns_same_id_and_updates_last_seen(self) -> None:
        first = self.store.upsert_app_identity("app.exe", None, "App", 100)
        second = self.store.upsert_app_identity("app.exe", None, "Other Name", 200)

        self.assertEqual(first, second)
        app = self.store.get_app(first)
        self.assertEqual(app.display_name, "App")
        self.assertEqual((app.first_seen, app.last_seen), (100, 200))

    def test_upsert_distinguishes_paths(self) -> None:
        a = self.store.upsert_app_identity("app.exe", "/opt/a/app.exe", "App", 0)
        b = self.store.upsert_app_identity("app.exe", "/opt/b/app.exe", "App", 0)
        c = self.store.upsert_app_identity("app.exe", None, "App", 0)

        self.assertEqual(len({a, b, c}), 3)
        self.assertEqual(self.store.find_app_by_name("app.exe").id, a)

    def test_upsert_untracked(self) -> None:
        app_id = self.store.upsert_app_identity("x", None, "X", 0, is_tracked=False)
        self.assertFalse(self.store.get_app(app_id).is_tracked)

        self.store.set_app_tracked(app_id, True)
        self.assertTrue(self.store.get_app(app_id).is_tracked)

    def test_tracked_flag_defaults_to_unset(self) -> None:
        app_id = self.store.upsert_app_identity("y", None, "Y", 0)
        self.assertIsNone(self.store.get_app(app_id).is_tracked)

        self.store.set_app_tracked(app_id, False)
        self.store.set_app_tracked(app_id, None)
        self.assertIsNone(self.store.get_app(app_id).is_tracked)

    def test_prefix_lookup_ignores_exe_suffix_and_escapes_wildcards(self) -> None:
        self.store.upsert_app_identity("Game.exe", None, "Game", 0)
        self.store.upsert_app_identity("game-editor", None, "Game Editor", 0)
        self.store.upsert_app_identity("gamexbox", None, "G", 0)
        self.store.upsert_app_identity("my_tool", None, "T", 0)
        self.store.upsert_app_identity("myxtool", None, "T", 0)

        names = {a.exe_name for a in self.store.list_app_identities_by_prefix("game")}
        self.assertEqual(names, {"Game.exe", "game-editor", "gamexbox"})

        names = {a.exe_name for a in self.store.list_app_identities_by_prefix("my_")}
        self.assertEqual(names, {"my_tool"})

    def test_catalog_apps(self) -> None:
        self.store.upsert_app_identity("steam:570", None, "Dota 2", 0)
        self.store.upsert_app_identity("dota2.exe", None, "Dota2", 0)

        catalog = self.store.list_catalog_apps()
        self.assertEqual([a.exe_name for a in catalog], ["steam:570"])

    def test_groups_and_manual_rules(self) -> None:
        group_id = self.store.create_group("Browsers", True, 10)
        self.store.create_rule(group_id, "firefox", MatchType.PREFIX, manual=True)
        self.store.create_rule(group_id, "auto", MatchType.EXACT, manual=False)

        group = self.store.find_group_by_name("Browsers")
        self.assertTrue(group.is_manual)
        self.assertEqual(group.created_at, 10)

        rules = self.store.list_manual_rules()
        self.assertEqual(len(rules), 1)
        self.assertEqual(rules[0].match_type, MatchType.PREFIX)
        self.assertEqual(self.store.count_manual_rule_for_group(group_id), 1)

    def test_set_app_group_and_clear(self) -> None:
        group_id = self.store.create_group("G", False, 0)
        app_id = self.store.upsert_app_identity("a", None, "A", 0)

        self.store.set_app_group(app_id, group_id)
        self.assertEqual(self.store.get_app(app_id).group_id, group_id)
        self.store.set_app_group(app_id, None)
        self.assertIsNone(self.store.get_app(app_id).group_id)

    def test_insert_and_close_session(self) -> None:
        app_id = self.store.upsert_app_identity("a", None, "A", 0)
        session_id = self.store.insert_session(app_id, SessionKind.ACTIVE, 1000, "Title", "m1")

        self.assertEqual(self.store.count_open_sessions(), 1)
        self.store.close_session(session_id, 4000)

        session = self.store.list_sessions(0, 10000)[0]
        self.assertEqual(session.kind, SessionKind.ACTIVE)
        self.assertEqual((session.started_at, session.ended_at), (1000, 4000))
        self.assertEqual(session.window_title, "Title")
        self.assertEqual(self.store.count_open_sessions(), 0)

    def test_list_sessions_overlap_and_kind(self) -> None:
        app_id = self.store.upsert_app_identity("a", None, "A", 0)
        early = self.store.insert_session(app_id, SessionKind.RUNNING, 0, None, "m")
        self.store.close_session(early, 500)
        spanning = self.store.insert_session(app_id, SessionKind.RUNNING, 900, None, "m")
        self.store.close_session(spanning, 2500)
        self.store.insert_session(app_id, SessionKind.ACTIVE, 1500, None, "m")

        in_window = self.store.list_sessions(1000, 2000)
        self.assertEqual([s.started_at for s in in_window], [900, 1500])
        running = self.store.list_sessions(1000, 2000, SessionKind.RUNNING)
        self.assertEqual([s.id for s in running], [spanning])

    def test_close_all_open_sessions_applies_ends_then_sweeps(self) -> None:
        app_id = self.store.upsert_app_identity("a", None, "A", 0)
        known = self.store.insert_session(app_id, SessionKind.RUNNING, 0, None, "m")
        self.store.insert_session(app_id, SessionKind.ACTIVE, 100, None, "m")

        self.store.close_all_open_sessions(9000, {known: 5000})

        ends = {s.id: s.ended_at for s in self.store.list_sessions(0, 10000)}
        self.assertEqual(ends[known], 5000)
        self.assertIn(9000, ends.values())
        self.assertEqual(self.store.count_open_sessions(), 0)

    def test_close_all_rolls_back_on_failure(self) -> None:
        app_id = self.store.upsert_app_identity("a", None, "A", 0)
        self.store.insert_session(app_id, SessionKind.RUNNING, 0, None, "m")

        with self.assertRaises(Exception):
            # An unbindable session id fails the whole call
            self.store.close_all_open_sessions(9000, {object(): 5000})  # type: ignore[dict-item]

        self.assertEqual(self.store.count_open_sessions(), 1)

    def test_recover_orphaned_sessions_only_for_this_machine(self) -> None:
        app_id = self.store.upsert_app_identity("a", None, "A", 0)
        self.store.insert_session(app_id, SessionKind.RUNNING, 100, None, "mine")
        self.store.insert_session(app_id, SessionKind.RUNNING, 200, None, "other")

        recovered = self.store.recover_orphaned_sessions("mine")

        self.assertEqual(recovered, 1)
        sessions = {s.machine_id: s for s in self.store.list_sessions(0, 1000)}
        self.assertEqual(sessions["mine"].ended_at, 100)
        self.assertIsNone(sessions["other"].ended_at)

    def test_get_cursor_rolls_back(self) -> None:
        with self.assertRaises(RuntimeError):
            with get_cursor(self.db_path) as cur:
                cur.execute("INSERT INTO app_groups (name, is_manual, created_at) VALUES ('X', 0, 0)")
                raise RuntimeError("abort")
        self.assertIsNone(self.store.find_group_by_name("X"))


class TestSettings(unittest.TestCase):

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteStore(os.path.join(self.tmpdir, "test.db"))
        self.store.ensure_schema()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir)

    def test_defaults_without_store(self) -> None:
        settings = Settings()
        self.assertEqual(settings.poll_interval_ms, 5000)
        self.assertEqual(settings.gap_threshold_ms, 12500)
        self.assertEqual(settings.tracking_mode, "blacklist")

    def test_reload_picks_up_changes(self) -> None:
        settings = Settings(self.store)
        self.store.set_setting("poll_interval_ms", 2000)
        self.store.set_setting("tracking_mode", "whitelist")

        settings.reload()

        self.assertEqual(settings.poll_interval_ms, 2000)
        self.assertEqual(settings.gap_threshold_ms, 5000)
        self.assertEqual(settings.tracking_mode, "whitelist")

    def test_malformed_values_fall_back_to_defaults(self) -> None:
        self.store.set_setting("poll_interval_ms", -5)
        self.store.set_setting("idle_threshold_ms", "soon")
        self.store.set_setting("tracking_mode", "everything")
        self.store.set_setting("record_titles", "yes")
        self.store.set_setting("break_reminder_mins", True)

        settings = Settings(self.store)

        self.assertEqual(settings.poll_interval_ms, Settings.DEFAULT_POLL_INTERVAL_MS)
        self.assertEqual(settings.idle_threshold_ms, Settings.DEFAULT_IDLE_THRESHOLD_MS)
        self.assertEqual(settings.tracking_mode, "blacklist")
        self.assertTrue(settings.record_titles)
        self.assertEqual(settings.break_reminder_mins, 0)

    def test_unreadable_value_falls_back_for_that_key_only(self) -> None:
        self.store.set_setting("idle_threshold_ms", 60_000)
        with get_cursor(self.store.db_path) as cur:
            cur.execute("UPDATE settings SET value = 'fast' WHERE key = 'poll_interval_ms'")

        with self.assertLogs("appstats.config", level="WARNING") as logs:
            settings = Settings(self.store)

        self.assertIn("poll_interval_ms", logs.output[0])
        self.assertEqual(settings.poll_interval_ms, Settings.DEFAULT_POLL_INTERVAL_MS)
        self.assertEqual(settings.idle_threshold_ms, 60_000)

    def test_overrides_win(self) -> None:
        self.store.set_setting("poll_interval_ms", 2000)
        settings = Settings(self.store, poll_interval_ms=1000)
        self.assertEqual(settings.poll_interval_ms, 1000)


if __name__ == "__main__":
    unittest.main()
