"""
Central data model definitions used across the project.

This module defines the canonical structure of Course and ScheduleEvent objects so that:
- the parser, the normalizer and the reconciliation engine share the same field names
- events survive a JSON round trip through the canonical store unchanged
- remote calendar bodies are built in exactly one place
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from dateutil import tz as dateutil_tz

STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_RESCHEDULED = "rescheduled"
STATUSES = (STATUS_ACTIVE, STATUS_CANCELLED, STATUS_RESCHEDULED)

# Private metadata keys attached to every remote record we create
META_EVENT_ID = "scheduleEventId"
META_COURSE_CODE = "courseCode"
META_APP_CREATED = "appCreated"

_CLOCK_RE = re.compile(r"^\s*(\d{1,2})[:.](\d{2})\s*([AaPp][Mm])\s*$")


def make_event_id(event: "ScheduleEvent") -> str:
    """
    Deterministic identity of one session: code + location + ISO date + slot start.
    """
    return f"{event.course_code}-{event.location}-{event.date.isoformat()}-{event.time_slot.start}"


def parse_clock(text: str) -> time:
    """
    Convert a display time like '9:00AM' or '12.30PM' to datetime.time.
    Raises ValueError for invalid formats.
    """
    m = _CLOCK_RE.match(text or "")
    if not m:
        raise ValueError(f"Invalid time format: {text!r}")
    hours = int(m.group(1))
    minutes = int(m.group(2))
    period = m.group(3).upper()
    if not (1 <= hours <= 12 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time value: {text!r}")
    if period == "PM" and hours != 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0
    return time(hours, minutes)


@dataclass(frozen=True)
class TimeSlot:
    """
    One column of the source grid: a (start, end) pair of display strings.
    """

    start: str
    end: str

    def start_time(self) -> time:
        return parse_clock(self.start)

    def end_time(self) -> time:
        return parse_clock(self.end)

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeSlot":
        return cls(start=str(data.get("start", "")), end=str(data.get("end", "")))


@dataclass
class Course:
    """
    Represents one course section as stored in courses.json.

    `code` is the join key used by subscriber selections and remote metadata.
    """

    code: str
    name: str
    section: str
    location: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "name": self.name, "section": self.section, "location": self.location}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Course":
        return cls(
            code=str(data.get("code", "")),
            name=str(data.get("name", "")),
            section=str(data.get("section", "")),
            location=str(data.get("location", "") or ""),
        )


@dataclass
class ScheduleEvent:
    """
    Represents one concrete teaching session (single date & time slot).

    Each event corresponds to exactly one course line inside one grid cell.
    """

    id: str
    course_code: str
    course_name: str
    section: str
    location: str
    professor: str
    date: date
    time_slot: TimeSlot
    week: int
    day: str
    status: str = STATUS_ACTIVE
    is_cancelled: bool = False
    combined_codes: List[str] = field(default_factory=list)
    source_cell: Optional[Tuple[int, int]] = None

    @property
    def summary(self) -> str:
        return self.course_code

    @property
    def description(self) -> str:
        return f"Professor: {self.professor}\nLocation: {self.location}\nWeek: {self.week}"

    def start_datetime(self, tzname: str) -> datetime:
        return datetime.combine(self.date, self.time_slot.start_time(), tzinfo=dateutil_tz.gettz(tzname))

    def end_datetime(self, tzname: str) -> datetime:
        return datetime.combine(self.date, self.time_slot.end_time(), tzinfo=dateutil_tz.gettz(tzname))

    def with_identity(self, course_code: str, section: str) -> "ScheduleEvent":
        """
        Return a copy of a combined-section event owned by another of its sections.
        """
        ev = replace(self, course_code=course_code, section=section, combined_codes=list(self.combined_codes))
        ev.id = make_event_id(ev)
        return ev

    def to_gcal_body(self, tzname: str, color_id: str = "9") -> Dict[str, Any]:
        start = datetime.combine(self.date, self.time_slot.start_time())
        end = datetime.combine(self.date, self.time_slot.end_time())
        return {
            "summary": self.summary,
            "location": self.location,
            "description": self.description,
            "start": {"dateTime": start.isoformat(), "timeZone": tzname},
            "end": {"dateTime": end.isoformat(), "timeZone": tzname},
            "colorId": color_id,
            "extendedProperties": {
                "private": {
                    META_EVENT_ID: self.id,
                    META_COURSE_CODE: self.course_code,
                    META_APP_CREATED: "true",
                }
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "course_code": self.course_code,
            "course_name": self.course_name,
            "section": self.section,
            "location": self.location,
            "professor": self.professor,
            "date": self.date.isoformat(),
            "time_slot": self.time_slot.to_dict(),
            "week": self.week,
            "day": self.day,
            "status": self.status,
            "is_cancelled": self.is_cancelled,
            "combined_codes": list(self.combined_codes),
            "source_cell": list(self.source_cell) if self.source_cell is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleEvent":
        cell = data.get("source_cell")
        return cls(
            id=str(data.get("id", "")),
            course_code=str(data.get("course_code", "")),
            course_name=str(data.get("course_name", "")),
            section=str(data.get("section", "")),
            location=str(data.get("location", "") or ""),
            professor=str(data.get("professor", "") or ""),
            date=date.fromisoformat(str(data["date"])[:10]),
            time_slot=TimeSlot.from_dict(data.get("time_slot") or {}),
            week=int(data.get("week", 1)),
            day=str(data.get("day", "")),
            status=str(data.get("status", STATUS_ACTIVE)),
            is_cancelled=bool(data.get("is_cancelled", False)),
            combined_codes=[str(c) for c in data.get("combined_codes") or []],
            source_cell=(int(cell[0]), int(cell[1])) if isinstance(cell, (list, tuple)) and len(cell) == 2 else None,
        )


@dataclass
class Subscriber:
    """
    One person whose calendar mirrors their selected courses.
    """

    subscriber_id: str
    email: str = ""
    selected_courses: List[str] = field(default_factory=list)
    calendar_id: Optional[str] = None
    token_file: Optional[str] = None
    sync_enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "email": self.email,
            "selected_courses": list(self.selected_courses),
            "calendar_id": self.calendar_id,
            "token_file": self.token_file,
            "sync_enabled": self.sync_enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subscriber":
        selected = data.get("selected_courses", [])
        return cls(
            subscriber_id=str(data.get("subscriber_id", "")).strip(),
            email=str(data.get("email", "") or ""),
            selected_courses=[str(x).strip() for x in selected if str(x).strip()] if isinstance(selected, list) else [],
            calendar_id=data.get("calendar_id") or None,
            token_file=data.get("token_file") or None,
            sync_enabled=bool(data.get("sync_enabled", True)),
        )


@dataclass
class SyncStats:
    """
    Running totals for one subscriber's reconciliation run.
    """

    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0

    def add(self, other: "SyncStats") -> None:
        self.created += other.created
        self.updated += other.updated
        self.deleted += other.deleted
        self.failed += other.failed

    def to_dict(self) -> Dict[str, int]:
        return {"created": self.created, "updated": self.updated, "deleted": self.deleted, "failed": self.failed}


@dataclass
class RunSummary:
    """
    Totals reported at the end of one sync run over all subscribers.
    """

    subscribers: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    totals: SyncStats = field(default_factory=SyncStats)
    errors: Dict[str, str] = field(default_factory=dict)
    timed_out: bool = False
