"""
CLI (Command Line Interface).

This module provides terminal commands for the operator and for scheduled jobs, e.g.:

    timetable-sync ingest
    timetable-sync sync [--subscriber ID]
    timetable-sync run
    timetable-sync courses [text]
    timetable-sync select <subscriber> <course_code>
    timetable-sync deselect <subscriber> <course_code>
    timetable-sync parse <file.xlsx|file.csv> [--course CODE ...]

Note:
- All settings come from the JSON config file (see config.py)
- Output is rendered with rich; library modules only log
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from timetable_sync.config import ConfigError, SyncConfig, load_config
from timetable_sync.gcal import CredentialsError, load_credentials
from timetable_sync.model import RunSummary, ScheduleEvent
from timetable_sync.source import LocalFileStrategy, ScheduleSourceError, build_strategies, fetch_schedule
from timetable_sync.storage import ScheduleStore
from timetable_sync.sync import ingest, parse_snapshot, run

console = Console()
log = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _strategies(config: SyncConfig):
    """
    Build the source fallback chain; admin credentials are optional (public export still works).
    """
    credentials = None
    if config.admin_token_file:
        try:
            credentials = load_credentials(config.admin_token_file)
        except CredentialsError as e:
            log.warning("Admin credentials unavailable (%s); using public export only", e)
    return build_strategies(config.sheet_id, config.sheet_name, credentials, config.source_file, config.gid)


def _print_summary(summary: RunSummary) -> None:
    table = Table(title="Sync summary", box=box.SIMPLE_HEAVY)
    for col in ("subscribers", "succeeded", "failed", "skipped", "created", "updated", "deleted", "op errors"):
        table.add_column(col, justify="right")
    t = summary.totals
    table.add_row(
        str(summary.subscribers),
        str(summary.succeeded),
        str(summary.failed),
        str(summary.skipped),
        str(t.created),
        str(t.updated),
        str(t.deleted),
        str(t.failed),
    )
    console.print(table)
    for sid, msg in sorted(summary.errors.items()):
        console.print(f"[red]{sid}[/]: {msg}")
    if summary.timed_out:
        console.print("[yellow]Run timed out; remaining work will be picked up by the next run.[/]")


def _print_events(events: List[ScheduleEvent]) -> None:
    table = Table(box=box.SIMPLE)
    for col in ("date", "day", "time", "course", "location", "professor", "status"):
        table.add_column(col)
    for ev in sorted(events, key=lambda e: (e.date, e.time_slot.start_time(), e.course_code)):
        status = f"[red]{ev.status}[/]" if ev.is_cancelled else ev.status
        table.add_row(
            ev.date.isoformat(),
            ev.day,
            f"{ev.time_slot.start}-{ev.time_slot.end}",
            f"[bold cyan]{ev.course_code}[/]",
            ev.location,
            ev.professor,
            status,
        )
    console.print(table)


def _cmd_ingest(args: argparse.Namespace, config: SyncConfig, store: ScheduleStore) -> int:
    try:
        result = ingest(config, store, _strategies(config))
    except ScheduleSourceError as e:
        console.print(f"[red]{e}[/]")
        return 1
    console.print(
        f"Ingested {result.courses} courses and {result.events} events "
        f"({result.cancelled} cancelled) via {result.strategy}"
    )
    for msg in result.diagnostics:
        console.print(f"[yellow]{msg}[/]")
    return 0


def _cmd_sync(args: argparse.Namespace, config: SyncConfig, store: ScheduleStore, with_ingest: bool) -> int:
    try:
        ingested, summary = run(
            config,
            store,
            strategies=_strategies(config) if with_ingest else None,
            subscriber_id=getattr(args, "subscriber", None),
        )
    except ScheduleSourceError as e:
        console.print(f"[red]{e}[/]")
        return 1
    if ingested is not None:
        console.print(f"Ingested {ingested.courses} courses and {ingested.events} events via {ingested.strategy}")
    _print_summary(summary)
    return 1 if "*" in summary.errors else 0


def _cmd_courses(args: argparse.Namespace, store: ScheduleStore) -> int:
    courses = store.load_courses()
    if courses is None:
        console.print("No courses yet. Run 'timetable-sync ingest' first.")
        return 1

    query = (args.text or "").strip().lower()
    matches = [c for c in courses if not query or query in f"{c.code} {c.name} {c.location}".lower()]
    if not matches:
        print("No results.")
        return 0

    table = Table(box=box.SIMPLE)
    for col in ("code", "name", "section", "location"):
        table.add_column(col)
    for c in matches:
        table.add_row(f"[bold cyan]{c.code}[/]", c.name, c.section, c.location)
    console.print(table)
    return 0


def _cmd_select(args: argparse.Namespace, store: ScheduleStore) -> int:
    code = (args.course_code or "").strip()
    if not code:
        print("Please provide a course code.")
        return 1

    courses = store.load_courses() or []
    if code not in {c.code for c in courses}:
        print(f"Warning: course '{code}' not found in courses.json (adding anyway).")

    if not store.select_course(args.subscriber, code):
        print(f"Already selected: {code}")
        return 0
    print(f"Added: {code} for {args.subscriber}")
    return 0


def _cmd_deselect(args: argparse.Namespace, store: ScheduleStore) -> int:
    code = (args.course_code or "").strip()
    if not store.deselect_course(args.subscriber, code):
        print(f"Not selected: {code}")
        return 0
    print(f"Removed: {code} for {args.subscriber}")
    return 0


def _cmd_parse(args: argparse.Namespace, config: SyncConfig) -> int:
    """
    Parse a local file and print its events without touching the store.
    """
    try:
        snapshot = fetch_schedule([LocalFileStrategy(args.file, config.sheet_name)])
    except ScheduleSourceError as e:
        console.print(f"[red]{e}[/]")
        return 1

    courses, events, diagnostics = parse_snapshot(snapshot, config)
    if args.course:
        wanted = set(args.course)
        events = [e for e in events if e.course_code in wanted or wanted & set(e.combined_codes)]
    for msg in diagnostics:
        console.print(f"[yellow]{msg}[/]")
    _print_events(events)
    console.print(f"{len(courses)} courses, {len(events)} events")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="timetable-sync", description="Timetable to calendar sync")
    parser.add_argument("--config", type=str, default=None, help="Path to the JSON config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ingest", help="Fetch and parse the timetable into the store")

    p_sync = sub.add_parser("sync", help="Sync subscriber calendars from the stored schedule")
    p_sync.add_argument("--subscriber", type=str, default=None, help="Only sync this subscriber")

    sub.add_parser("run", help="Ingest, then sync every subscriber")

    p_courses = sub.add_parser("courses", help="List or search the course catalog")
    p_courses.add_argument("text", type=str, nargs="?", default="", help="Search text")

    p_select = sub.add_parser("select", help="Add a course to a subscriber's selection")
    p_select.add_argument("subscriber", type=str, help="Subscriber id")
    p_select.add_argument("course_code", type=str, help="Course code (e.g. CS101-A)")

    p_deselect = sub.add_parser("deselect", help="Remove a course from a subscriber's selection")
    p_deselect.add_argument("subscriber", type=str, help="Subscriber id")
    p_deselect.add_argument("course_code", type=str, help="Course code (e.g. CS101-A)")

    p_parse = sub.add_parser("parse", help="Parse a local .xlsx/.csv timetable and print its events")
    p_parse.add_argument("file", type=str, help="Timetable file")
    p_parse.add_argument("--course", action="append", default=[], help="Only show this course (repeatable)")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)
    store = ScheduleStore(config.data_dir)

    if args.command == "ingest":
        raise SystemExit(_cmd_ingest(args, config, store))
    if args.command == "sync":
        raise SystemExit(_cmd_sync(args, config, store, with_ingest=False))
    if args.command == "run":
        raise SystemExit(_cmd_sync(args, config, store, with_ingest=True))
    if args.command == "courses":
        raise SystemExit(_cmd_courses(args, store))
    if args.command == "select":
        raise SystemExit(_cmd_select(args, store))
    if args.command == "deselect":
        raise SystemExit(_cmd_deselect(args, store))
    if args.command == "parse":
        raise SystemExit(_cmd_parse(args, config))

    raise SystemExit(2)
