"""
Event normalization.

Turns raw parser output into the canonical data set:
- courses: deduplicated by code (first seen wins), sorted by code
- events: cancellation status applied, deterministic ids stamped, duplicates dropped
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Mapping, Optional, Tuple

from timetable_sync.model import STATUS_ACTIVE, STATUS_CANCELLED, Course, ScheduleEvent, make_event_id


def normalize_courses(courses: Iterable[Course]) -> List[Course]:
    seen: set[str] = set()
    out: List[Course] = []
    for c in courses:
        if c.code in seen:
            continue
        seen.add(c.code)
        out.append(c)
    return sorted(out, key=lambda c: c.code)


def normalize_events(
    events: Iterable[ScheduleEvent],
    cancellations: Optional[Mapping[Tuple[int, int], bool]] = None,
) -> List[ScheduleEvent]:
    """
    Stamp ids and cancellation status onto freshly parsed events.

    A cell listed in `cancellations` cancels every event parsed from that cell.
    When two events end up with the same id only the first is kept, so one id
    can never map to two remote records.
    """
    marks = cancellations or {}
    seen: set[str] = set()
    out: List[ScheduleEvent] = []

    for ev in events:
        cancelled = bool(ev.source_cell is not None and marks.get(ev.source_cell, False))
        stamped = replace(
            ev,
            status=STATUS_CANCELLED if cancelled else STATUS_ACTIVE,
            is_cancelled=cancelled,
            combined_codes=list(ev.combined_codes),
        )
        stamped.id = make_event_id(stamped)
        if stamped.id in seen:
            continue
        seen.add(stamped.id)
        out.append(stamped)

    return out
