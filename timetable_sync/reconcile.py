"""
Reconciliation (canonical events vs. remote calendar records).

The remote calendar has no notion of the timetable's identity; the only link
is the private metadata we attach at creation time. Each canonical event is
matched against the remote records in tiers:

    1. exact      remote scheduleEventId == event id        -> update if changed
    2. base key   same courseCode + date + start time       -> update (location moved)
    3. fallback   same title + date + start time, for records
                  lacking metadata                           -> update
    4. none of the above                                     -> create

Every record this system created that no tier claimed is deleted.
A record is claimed at most once, so the create and update sets are disjoint
and a location change never shows up as a delete + create pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from dateutil import parser as dateparser
from dateutil import tz as dateutil_tz

from timetable_sync.model import META_APP_CREATED, META_COURSE_CODE, META_EVENT_ID, ScheduleEvent

log = logging.getLogger(__name__)

RemoteRecord = Dict[str, Any]

TIER_EXACT = "exact"
TIER_BASE_KEY = "base_key"
TIER_FALLBACK = "fallback"

REASON_DESELECTED = "deselected"
REASON_STALE = "stale"
REASON_ORPHANED = "orphaned"


@dataclass
class Update:
    remote_id: str
    event: ScheduleEvent
    tier: str


@dataclass
class Delete:
    remote_id: str
    reason: str
    summary: str = ""


@dataclass
class SyncPlan:
    creates: List[ScheduleEvent] = field(default_factory=list)
    updates: List[Update] = field(default_factory=list)
    deletes: List[Delete] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def base_key(course_code: str, start: datetime) -> str:
    """
    courseCode + date (ymd) + start time (24h hh:mm). Location is deliberately left out.
    """
    return f"{course_code}|{start:%Y-%m-%d}|{start:%H:%M}"


def event_base_key(event: ScheduleEvent) -> str:
    return base_key(event.course_code, datetime.combine(event.date, event.time_slot.start_time()))


def private_metadata(record: RemoteRecord) -> Dict[str, str]:
    return (record.get("extendedProperties") or {}).get("private") or {}


def remote_start(record: RemoteRecord, tzname: str) -> Optional[datetime]:
    """
    Start of a remote record as a naive wall-clock datetime in `tzname`.

    All-day records and unparseable timestamps give None.
    """
    start = record.get("start") or {}
    raw = start.get("dateTime")
    if not raw:
        return None
    try:
        dt = dateparser.isoparse(raw)
    except (ValueError, OverflowError):
        return None

    target = dateutil_tz.gettz(tzname)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=dateutil_tz.gettz(start.get("timeZone") or tzname))
    return dt.astimezone(target).replace(tzinfo=None)


def remote_base_key(record: RemoteRecord, tzname: str) -> Optional[str]:
    code = private_metadata(record).get(META_COURSE_CODE)
    start = remote_start(record, tzname)
    if not code or start is None:
        return None
    return base_key(code, start)


def _summary_key(title: str, start: datetime) -> Tuple[str, str, str]:
    return (title.strip(), f"{start:%Y-%m-%d}", f"{start:%H:%M}")


# ---------------------------------------------------------------------------
# Subscriber selection
# ---------------------------------------------------------------------------


def select_subscriber_events(
    events: Iterable[ScheduleEvent],
    selected_courses: Iterable[str],
    window: Optional[Tuple[datetime, datetime]] = None,
    tzname: str = "UTC",
) -> List[ScheduleEvent]:
    """
    Active events of one subscriber's courses, optionally limited to a time window.

    A combined-section event is handed to the first of its sections the
    subscriber selected, under that section's identity.
    """
    selected = set(selected_courses)
    seen: Set[str] = set()
    out: List[ScheduleEvent] = []

    for ev in events:
        if ev.is_cancelled:
            continue

        if ev.course_code not in selected:
            owner = next((code for code in ev.combined_codes if code in selected), None)
            if owner is None:
                continue
            ev = ev.with_identity(owner, owner.rsplit("-", 1)[-1])

        if window is not None:
            start = ev.start_datetime(tzname)
            if not (window[0] <= start < window[1]):
                continue

        if ev.id in seen:
            continue
        seen.add(ev.id)
        out.append(ev)

    return out


# ---------------------------------------------------------------------------
# Matching (CORE LOGIC)
# ---------------------------------------------------------------------------


def needs_update(record: RemoteRecord, event: ScheduleEvent) -> bool:
    return (record.get("location") or "") != event.location or (record.get("description") or "") != event.description


def reconcile(
    events: Iterable[ScheduleEvent],
    remote_records: Iterable[RemoteRecord],
    selected_courses: Iterable[str],
    tzname: str,
) -> SyncPlan:
    """
    Compute the create/update/delete sets that make the remote calendar mirror `events`.

    `events` must already be the subscriber's active selection (see
    select_subscriber_events); records not created by this system are ignored.
    """
    selected = set(selected_courses)
    canonical = list(events)
    records = [
        r for r in remote_records if r.get("id") and private_metadata(r).get(META_APP_CREATED) == "true"
    ]

    plan = SyncPlan()
    claimed: Set[str] = set()
    matched: Set[str] = set()

    # Tier 1: exact id
    by_event_id: Dict[str, RemoteRecord] = {}
    for r in records:
        sid = private_metadata(r).get(META_EVENT_ID)
        if sid and sid not in by_event_id:
            by_event_id[sid] = r

    for ev in canonical:
        record = by_event_id.get(ev.id)
        if record is None or record["id"] in claimed:
            continue
        claimed.add(record["id"])
        matched.add(ev.id)
        if needs_update(record, ev):
            plan.updates.append(Update(remote_id=record["id"], event=ev, tier=TIER_EXACT))

    # Tier 2: base key (same session, location changed)
    by_base_key: Dict[str, List[RemoteRecord]] = {}
    for r in records:
        if r["id"] in claimed:
            continue
        key = remote_base_key(r, tzname)
        if key is not None:
            by_base_key.setdefault(key, []).append(r)

    for ev in canonical:
        if ev.id in matched:
            continue
        candidates = [r for r in by_base_key.get(event_base_key(ev), []) if r["id"] not in claimed]
        if not candidates:
            continue
        record = candidates[0]
        claimed.add(record["id"])
        matched.add(ev.id)
        plan.updates.append(Update(remote_id=record["id"], event=ev, tier=TIER_BASE_KEY))

    # Tier 3: title + date + time, for records without reliable metadata
    by_summary: Dict[Tuple[str, str, str], List[RemoteRecord]] = {}
    for r in records:
        meta = private_metadata(r)
        if r["id"] in claimed or (meta.get(META_EVENT_ID) and meta.get(META_COURSE_CODE)):
            continue
        start = remote_start(r, tzname)
        if start is not None:
            by_summary.setdefault(_summary_key(r.get("summary") or "", start), []).append(r)

    for ev in canonical:
        if ev.id in matched:
            continue
        key = _summary_key(ev.summary, datetime.combine(ev.date, ev.time_slot.start_time()))
        candidates = [r for r in by_summary.get(key, []) if r["id"] not in claimed]
        if candidates:
            record = candidates[0]
            claimed.add(record["id"])
            matched.add(ev.id)
            plan.updates.append(Update(remote_id=record["id"], event=ev, tier=TIER_FALLBACK))
            continue

        # Tier 4: nothing matched
        matched.add(ev.id)
        plan.creates.append(ev)

    # Deletes: everything we created that no tier claimed
    for r in records:
        if r["id"] in claimed:
            continue
        meta = private_metadata(r)
        code = meta.get(META_COURSE_CODE)
        if code and code not in selected:
            reason = REASON_DESELECTED
        elif meta.get(META_EVENT_ID):
            reason = REASON_STALE
        else:
            reason = REASON_ORPHANED
        plan.deletes.append(Delete(remote_id=r["id"], reason=reason, summary=r.get("summary") or ""))

    log.info(
        "Reconciled %d events against %d records: %d create, %d update, %d delete",
        len(canonical),
        len(records),
        len(plan.creates),
        len(plan.updates),
        len(plan.deletes),
    )
    return plan
