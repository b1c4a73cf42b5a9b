"""
Run orchestration.

One run = ingest the timetable once, then reconcile every enabled
subscriber's calendar against the fresh canonical event set:

    source -> styles -> parse -> normalize -> store      (ingest)
    store -> select -> list remote -> reconcile -> apply  (per subscriber)

Subscribers are synced concurrently and independently; one subscriber's
failure never aborts the others. The whole run is bounded by a wall-clock
timeout; operations already applied stay applied and the next run converges.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from dateutil import tz as dateutil_tz

from timetable_sync.batch import RemoteCalendar, apply_plan
from timetable_sync.config import SyncConfig
from timetable_sync.gcal import CredentialsError, calendar_for
from timetable_sync.model import Course, RunSummary, ScheduleEvent, Subscriber, SyncStats
from timetable_sync.normalize import normalize_courses, normalize_events
from timetable_sync.parse import course_codes, extract_courses, parse_schedule_events, parse_time_slots
from timetable_sync.reconcile import reconcile, select_subscriber_events
from timetable_sync.source import SheetSnapshot, SourceStrategy, fetch_schedule
from timetable_sync.storage import ScheduleStore
from timetable_sync.styles import extract_cancellations

log = logging.getLogger(__name__)

CalendarFactory = Callable[[Subscriber], RemoteCalendar]


@dataclass
class IngestResult:
    courses: int = 0
    events: int = 0
    cancelled: int = 0
    strategy: str = ""
    diagnostics: List[str] = field(default_factory=list)


def google_calendar_factory(subscriber: Subscriber) -> RemoteCalendar:
    return calendar_for(subscriber.token_file, subscriber.calendar_id or "primary")


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


def parse_snapshot(
    snapshot: SheetSnapshot, config: SyncConfig
) -> Tuple[List[Course], List[ScheduleEvent], List[str]]:
    """
    Turn a fetched grid into the canonical (courses, events) pair plus diagnostics.
    """
    diagnostics: List[str] = []
    grid = snapshot.grid

    cancellations = {}
    if snapshot.supports_style_detection:
        assert snapshot.archive is not None
        cancellations = extract_cancellations(snapshot.archive, snapshot.sheet_name)
    else:
        diagnostics.append(f"{snapshot.strategy or 'source'} carries no cell styles; cancellations not detected")

    slots = parse_time_slots(grid, config.header_scan_rows, config.min_time_slots)
    if not slots:
        diagnostics.append(f"No time-slot header row found in the first {config.header_scan_rows} rows")

    courses = normalize_courses(extract_courses(grid))
    raw_events = parse_schedule_events(
        grid,
        course_codes(courses),
        time_slots=slots,
        block_rows=config.day_block_rows,
    )
    events = normalize_events(raw_events, cancellations)
    return courses, events, diagnostics


def ingest(config: SyncConfig, store: ScheduleStore, strategies: Sequence[SourceStrategy]) -> IngestResult:
    """
    Fetch, parse and persist the timetable. Raises ScheduleSourceError if no source works.
    """
    snapshot = fetch_schedule(strategies)
    courses, events, diagnostics = parse_snapshot(snapshot, config)
    for msg in diagnostics:
        log.warning(msg)

    store.save_schedule(courses, events, strategy=snapshot.strategy)
    result = IngestResult(
        courses=len(courses),
        events=len(events),
        cancelled=sum(1 for e in events if e.is_cancelled),
        strategy=snapshot.strategy,
        diagnostics=diagnostics,
    )
    log.info(
        "Ingested %d courses and %d events (%d cancelled) via %s",
        result.courses,
        result.events,
        result.cancelled,
        result.strategy,
    )
    return result


# ---------------------------------------------------------------------------
# Per-subscriber sync
# ---------------------------------------------------------------------------


def sync_window(config: SyncConfig, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    tzinfo = dateutil_tz.gettz(config.timezone)
    current = now.astimezone(tzinfo) if now is not None else datetime.now(tzinfo)
    start = (current - timedelta(days=config.lookback_days)).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, current + timedelta(days=config.lookahead_days)


async def sync_subscriber(
    subscriber: Subscriber,
    events: Sequence[ScheduleEvent],
    calendar: RemoteCalendar,
    config: SyncConfig,
    now: Optional[datetime] = None,
) -> SyncStats:
    """
    Make one subscriber's calendar mirror their selected, active events inside the sync window.
    """
    window = sync_window(config, now)
    wanted = select_subscriber_events(events, subscriber.selected_courses, window, config.timezone)
    records = await asyncio.to_thread(calendar.list, window[0], window[1])
    plan = reconcile(wanted, records, subscriber.selected_courses, config.timezone)
    if plan.is_empty:
        log.info("%s: calendar already up to date", subscriber.subscriber_id)
        return SyncStats()
    return await apply_plan(plan, calendar, config.timezone, config.batch_size, config.color_id)


async def sync_all(
    config: SyncConfig,
    store: ScheduleStore,
    calendar_factory: CalendarFactory = google_calendar_factory,
    subscriber_id: Optional[str] = None,
    summary: Optional[RunSummary] = None,
    now: Optional[datetime] = None,
) -> RunSummary:
    """
    Sync every enabled subscriber (or just `subscriber_id`) concurrently.

    `summary` is filled in place, so a caller that times out still sees partial totals.
    """
    summary = summary if summary is not None else RunSummary()

    subscribers = [s for s in store.load_subscribers() if s.sync_enabled]
    if subscriber_id is not None:
        subscribers = [s for s in subscribers if s.subscriber_id == subscriber_id]
    summary.subscribers = len(subscribers)

    events = store.load_events()
    if events is None:
        log.error("No canonical schedule data available; run ingest first")
        summary.skipped = len(subscribers)
        summary.errors["*"] = "no canonical schedule data"
        return summary

    async def _one(sub: Subscriber) -> None:
        if not sub.calendar_id:
            log.warning("%s: no calendar assigned, skipping", sub.subscriber_id)
            summary.skipped += 1
            summary.errors[sub.subscriber_id] = "no calendar id"
            store.record_sync(sub.subscriber_id, None, "no calendar id")
            return
        try:
            calendar = await asyncio.to_thread(calendar_factory, sub)
        except CredentialsError as e:
            log.error("%s: %s", sub.subscriber_id, e)
            summary.failed += 1
            summary.errors[sub.subscriber_id] = str(e)
            store.record_sync(sub.subscriber_id, None, str(e))
            return

        try:
            stats = await sync_subscriber(sub, events, calendar, config, now)
        except Exception as e:
            log.exception("%s: sync failed", sub.subscriber_id)
            summary.failed += 1
            summary.errors[sub.subscriber_id] = str(e)
            store.record_sync(sub.subscriber_id, None, str(e))
            return

        summary.succeeded += 1
        summary.totals.add(stats)
        store.record_sync(sub.subscriber_id, stats)
        log.info(
            "%s: +%d ~%d -%d (%d failed)",
            sub.subscriber_id,
            stats.created,
            stats.updated,
            stats.deleted,
            stats.failed,
        )

    await asyncio.gather(*(_one(s) for s in subscribers))
    log.info(
        "Sync complete: %d succeeded, %d failed, %d skipped",
        summary.succeeded,
        summary.failed,
        summary.skipped,
    )
    return summary


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------


async def _run(
    config: SyncConfig,
    store: ScheduleStore,
    strategies: Optional[Sequence[SourceStrategy]],
    calendar_factory: CalendarFactory,
    subscriber_id: Optional[str],
    summary: RunSummary,
    now: Optional[datetime],
) -> Optional[IngestResult]:
    ingested = None
    if strategies is not None:
        ingested = await asyncio.to_thread(ingest, config, store, strategies)
    await sync_all(config, store, calendar_factory, subscriber_id, summary, now)
    return ingested


def run(
    config: SyncConfig,
    store: ScheduleStore,
    strategies: Optional[Sequence[SourceStrategy]] = None,
    calendar_factory: CalendarFactory = google_calendar_factory,
    subscriber_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[IngestResult], RunSummary]:
    """
    Ingest (when strategies are given) and sync, bounded by config.run_timeout_seconds.

    Blocking calls run on a private thread pool. On timeout the pool is
    abandoned rather than joined, so a hung provider call cannot hold the run
    past its budget; the HTTP timeout on the Google clients ends such calls.
    """
    summary = RunSummary()
    executor = ThreadPoolExecutor(thread_name_prefix="timetable-sync")
    loop = asyncio.new_event_loop()
    loop.set_default_executor(executor)

    async def _bounded() -> Optional[IngestResult]:
        return await asyncio.wait_for(
            _run(config, store, strategies, calendar_factory, subscriber_id, summary, now),
            timeout=config.run_timeout_seconds,
        )

    try:
        ingested = loop.run_until_complete(_bounded())
    except asyncio.TimeoutError:
        log.error("Run timed out after %s seconds; applied operations are kept", config.run_timeout_seconds)
        summary.timed_out = True
        ingested = None
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()
    return ingested, summary
