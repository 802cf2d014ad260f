#!/usr/bin/env python3
"""
Background tracker service and command-line entry point.
"""
import argparse
import asyncio
import datetime
import logging
import signal
import sys
from typing import List, Optional

from .config import DB_PATH, Settings, now_ms
from .db import SQLiteStore
from .events import EventBus
from .grouping import IdentityResolver
from .log import setup_logging
from .models import MatchType
from .platform import get_platform
from .services import BreakReminder, UsageService
from .tracking import Scheduler, SessionLifecycleManager

logger = logging.getLogger("appstats.main")


def open_store(db_path: str) -> SQLiteStore:
    store = SQLiteStore(db_path)
    store.ensure_schema()
    return store


async def run_tracker(store: SQLiteStore) -> None:
    """Run the poll loop until SIGINT/SIGTERM, then close every session."""
    settings = Settings(store)
    platform = get_platform()
    if not platform.supports_window_tracking:
        logger.warning("Active window tracking unavailable on %s; recording running time only",
                       platform.name)

    recovered = store.recover_orphaned_sessions(settings.machine_id)
    if recovered:
        logger.info("Closed %d sessions left open by a previous run", recovered)

    events = EventBus()
    BreakReminder(settings).register(events)

    scheduler = Scheduler(
        store=store,
        settings=settings,
        lifecycle=SessionLifecycleManager(store, settings),
        resolver=IdentityResolver(store),
        active_probe=platform.active_window_probe(),
        process_probe=platform.process_list_probe(),
        idle_probe=platform.idle_probe(),
        events=events,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    scheduler.start()
    try:
        await stop_event.wait()
    finally:
        await scheduler.shutdown()


def cmd_run(args: argparse.Namespace) -> int:
    store = open_store(args.db)
    try:
        asyncio.run(run_tracker(store))
    except KeyboardInterrupt:
        logger.info("Tracker interrupted")
    return 0


def cmd_reanalyze(args: argparse.Namespace) -> int:
    store = open_store(args.db)
    changed = IdentityResolver(store).reanalyze_groups()
    print(f"Reanalyzed groups: {changed} apps changed")
    return 0


def _format_duration(ms: int) -> str:
    total_s = ms // 1000
    h, rem = divmod(total_s, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h}h {m}m"
    if m > 0:
        return f"{m}m {s}s"
    return f"{s}s"


def cmd_report(args: argparse.Namespace) -> int:
    store = open_store(args.db)
    service = UsageService(store)
    now = now_ms()
    start = now - args.days * 24 * 3600 * 1000

    if args.groups:
        rows = service.get_group_usage(start, now, now=now)[:args.limit]
    else:
        rows = service.get_top_apps(start, now, limit=args.limit, now=now)

    since = datetime.datetime.fromtimestamp(start / 1000).isoformat(timespec="minutes")
    print(f"=== Usage since {since} ===")
    if not rows:
        print("No usage recorded")
    for name, totals in rows:
        print(f"{name:30s} active {_format_duration(totals.active_ms):>9s}"
              f"   running {_format_duration(totals.running_ms):>9s}")
    return 0


def cmd_group_add(args: argparse.Namespace) -> int:
    store = open_store(args.db)
    group_id = IdentityResolver(store).create_manual_group(args.name)
    print(f"Group {args.name!r} has id {group_id}")
    return 0


def cmd_rule_add(args: argparse.Namespace) -> int:
    store = open_store(args.db)
    group = store.find_group_by_name(args.group)
    if group is None:
        raise ValueError(f"No group named {args.group!r}")
    rule_id = IdentityResolver(store).add_manual_rule(args.pattern, group.id, args.match)
    print(f"Rule {rule_id}: {args.match} {args.pattern!r} -> {group.name}")
    return 0


def cmd_track(args: argparse.Namespace) -> int:
    store = open_store(args.db)
    app = store.find_app_by_name(args.exe_name.lower())
    if app is None:
        raise ValueError(f"No app named {args.exe_name!r} has been seen yet")
    if args.clear:
        store.set_app_tracked(app.id, None)
        print(f"{app.display_name}: tracking follows the tracking mode")
    else:
        store.set_app_tracked(app.id, not args.off)
        print(f"{app.display_name}: tracking {'off' if args.off else 'on'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="appstats", description="Application usage tracker")
    parser.add_argument("--db", default=DB_PATH, help="database path (default: %(default)s)")
    parser.add_argument("--debug", action="store_true", default=None,
                        help="write debug logging to the debug log file")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="track application usage until interrupted").set_defaults(func=cmd_run)
    sub.add_parser("reanalyze", help="re-run automatic grouping").set_defaults(func=cmd_reanalyze)

    report = sub.add_parser("report", help="print top apps by active time")
    report.add_argument("--days", type=int, default=1)
    report.add_argument("--limit", type=int, default=10)
    report.add_argument("--groups", action="store_true", help="aggregate by group")
    report.set_defaults(func=cmd_report)

    group = sub.add_parser("group", help="manage groups")
    group_sub = group.add_subparsers(dest="group_command", required=True)
    group_add = group_sub.add_parser("add", help="create a manual group")
    group_add.add_argument("name")
    group_add.set_defaults(func=cmd_group_add)

    rule = sub.add_parser("rule", help="manage manual grouping rules")
    rule_sub = rule.add_subparsers(dest="rule_command", required=True)
    rule_add = rule_sub.add_parser("add", help="map an executable pattern to a group")
    rule_add.add_argument("pattern")
    rule_add.add_argument("group", help="target group name")
    rule_add.add_argument("--match", choices=[m.value for m in MatchType], default=MatchType.EXACT.value)
    rule_add.set_defaults(func=cmd_rule_add)

    track = sub.add_parser("track", help="include or exclude an app from tracking")
    track.add_argument("exe_name")
    choice = track.add_mutually_exclusive_group()
    choice.add_argument("--off", action="store_true", help="stop tracking this app")
    choice.add_argument("--clear", action="store_true", help="forget the choice and follow the tracking mode")
    track.set_defaults(func=cmd_track)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug)

    func = getattr(args, "func", cmd_run)
    try:
        return func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
