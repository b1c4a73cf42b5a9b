"""
Parsing (timetable grid -> structured courses and events).

- Finds the header row holding the time-slot columns
- Walks the grid top to bottom, carrying the current week and date
- Expands every day block into (course row, professor row) pairs
- Recognises course lines with a small three-tier grammar:

    1. combined section   Name-X and Y (Location)
    2. multi section      Name-X (Location)
    3. single section     Name (Location)

Important rules (DO NOT CHANGE):
- 1 course line in 1 cell = 1 event
- Dates in column A are day-first (D/M/YYYY)
- Time-slot order follows column order, never a chronological sort
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple

from timetable_sync.model import Course, ScheduleEvent, TimeSlot

log = logging.getLogger(__name__)

Grid = Sequence[Sequence[Any]]

HEADER_SCAN_ROWS = 40
MIN_TIME_SLOTS = 5
DAY_BLOCK_ROWS = 4
FIRST_SLOT_COLUMN = 2
SINGLE_SECTION = "1"

_TIME_RANGE_RE = re.compile(r"(\d{1,2}[:.]\d{2}\s*[AaPp][Mm])\s*-\s*(\d{1,2}[:.]\d{2}\s*[AaPp][Mm])")
_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_WEEK_RE = re.compile(r"Week\s*(\d+)", re.IGNORECASE)
_WORD_RE = re.compile(r"[A-Za-z]+")

_COMBINED_RE = re.compile(r"^([A-Z][A-Za-z0-9&-]*)-([A-Z])\s+(?i:and)\s+([A-Z])\s*\(([^)]+)\)")
_MULTI_RE = re.compile(r"^([A-Z][A-Za-z0-9&-]*)-([A-Z])\s*\(([^)]+)\)")
_SINGLE_RE = re.compile(r"^([A-Z][A-Za-z0-9&]*(?:-[A-Za-z0-9&]*)*)\s*\(([^)]+)\)")

_DAY_NAMES = {
    "Mon": ("mon", "monday", "mondy", "monady"),
    "Tue": ("tue", "tues", "tuesday", "teusday", "tuseday"),
    "Wed": ("wed", "weds", "wednes", "wednesday", "wedensday", "wednessday"),
    "Thu": ("thu", "thur", "thurs", "thursday", "thrusday", "thursady"),
    "Fri": ("fri", "friday", "firday"),
    "Sat": ("sat", "satur", "saturday", "satuday", "saterday"),
    "Sun": ("sun", "sunday", "sundy"),
}
DAY_VOCABULARY = {alias: day for day, aliases in _DAY_NAMES.items() for alias in aliases}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _cell_text(row: Sequence[Any], col: int) -> str:
    """
    Return a cell as text, or '' when the row is too short or the cell empty.
    """
    if col >= len(row):
        return ""
    value = row[col]
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime("%d/%m/%Y")
    return str(value)


def _normalize_clock(text: str) -> str:
    # "9.00 AM" -> "9:00AM"
    return re.sub(r"\s+", "", text).replace(".", ":").upper()


def _lines(text: str) -> List[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Header / week / date / day detection
# ---------------------------------------------------------------------------


def parse_time_slots(
    grid: Grid,
    scan_rows: int = HEADER_SCAN_ROWS,
    min_slots: int = MIN_TIME_SLOTS,
) -> List[TimeSlot]:
    """
    Find the first row (within `scan_rows`) holding at least `min_slots` time ranges.

    Only the LAST range of each cell counts, because header cells are sometimes
    prefixed with unrelated text such as a term label. Returns [] when no row qualifies.
    """
    for row_index, row in enumerate(grid[:scan_rows]):
        slots: List[TimeSlot] = []
        for col in range(FIRST_SLOT_COLUMN, len(row)):
            matches = _TIME_RANGE_RE.findall(_cell_text(row, col))
            if not matches:
                continue
            slot = TimeSlot(start=_normalize_clock(matches[-1][0]), end=_normalize_clock(matches[-1][1]))
            try:
                slot.start_time()
                slot.end_time()
            except ValueError:
                log.debug("Ignoring impossible time range %s-%s in row %d", slot.start, slot.end, row_index)
                continue
            slots.append(slot)

        if len(slots) >= min_slots:
            log.debug("Found %d time slots in row %d", len(slots), row_index)
            return slots

    log.warning("No valid time slot header row found in the first %d rows", scan_rows)
    return []


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a day-first 'D/M/YYYY' cell into a date.

    '14/2/2026' -> 14 February 2026. Returns None for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        return None

    m = _DATE_RE.search(str(value))
    if not m:
        return None
    day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_week(value: Any) -> Optional[int]:
    m = _WEEK_RE.search(str(value or ""))
    return int(m.group(1)) if m else None


def match_day(value: Any) -> Optional[str]:
    """
    Map a column-B cell to a canonical 3-letter day name, tolerating partial
    and misspelled forms ('Thurs', 'Wedensday'). Returns None for non-day cells.
    """
    m = _WORD_RE.search(str(value or ""))
    if not m:
        return None
    return DAY_VOCABULARY.get(m.group(0).lower())


# ---------------------------------------------------------------------------
# Course line grammar (CORE LOGIC)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CourseMatch:
    """
    One recognised course line.

    `codes` lists every section code the line stands for; a combined-section
    line carries two codes, the other forms exactly one.
    """

    name: str
    sections: Tuple[str, ...]
    location: str
    combined: bool = False

    @property
    def codes(self) -> Tuple[str, ...]:
        if self.sections == (SINGLE_SECTION,) and not self.combined:
            return (self.name,)
        return tuple(f"{self.name}-{s}" for s in self.sections)


def match_course_line(line: str) -> Optional[CourseMatch]:
    """
    Recognise one course line, trying combined, multi then single section.
    """
    text = line.strip()

    m = _COMBINED_RE.match(text)
    if m:
        name, first, second, location = m.groups()
        return CourseMatch(name=name, sections=(first, second), location=location.strip(), combined=True)

    m = _MULTI_RE.match(text)
    if m:
        name, section, location = m.groups()
        return CourseMatch(name=name, sections=(section,), location=location.strip())

    m = _SINGLE_RE.match(text)
    if m:
        name, location = m.groups()
        # "CS101- (Room1)" is a multi-section line missing its letter, not a course named "CS101-"
        if name.endswith("-"):
            return None
        return CourseMatch(name=name, sections=(SINGLE_SECTION,), location=location.strip())

    return None


def parse_cell_events(
    cell_value: str,
    week: int,
    day: str,
    current_date: date,
    time_slot: TimeSlot,
    selected_courses: Iterable[str],
    professor_cell: str = "",
    source_cell: Optional[Tuple[int, int]] = None,
) -> List[ScheduleEvent]:
    """
    Parse the course lines of one cell into events for the selected courses.

    The professor for course line k is professor line k, else professor line 0, else ''.
    Event ids are left empty; the normalizer stamps them.
    """
    selected = set(selected_courses)
    lines = _lines(cell_value)
    professor_lines = _lines(professor_cell)

    events: List[ScheduleEvent] = []
    for line_index, line in enumerate(lines):
        match = match_course_line(line)
        if match is None:
            continue

        # First listed section wins when several are selected
        chosen = next(((code, sec) for code, sec in zip(match.codes, match.sections) if code in selected), None)
        if chosen is None:
            continue
        course_code, section = chosen

        if line_index < len(professor_lines):
            professor = professor_lines[line_index]
        elif professor_lines:
            professor = professor_lines[0]
        else:
            professor = ""

        events.append(
            ScheduleEvent(
                id="",
                course_code=course_code,
                course_name=match.name,
                section=section,
                location=match.location,
                professor=professor,
                date=current_date,
                time_slot=time_slot,
                week=week,
                day=day,
                combined_codes=list(match.codes) if match.combined else [],
                source_cell=source_cell,
            )
        )

    return events


# ---------------------------------------------------------------------------
# Grid parsing
# ---------------------------------------------------------------------------


def _block_pairs(start_row: int, block_rows: int) -> List[Tuple[int, int]]:
    if block_rows < 2 or block_rows % 2:
        raise ValueError(f"Day block must hold an even number of rows (got {block_rows})")
    return [(start_row + k, start_row + k + 1) for k in range(0, block_rows, 2)]


def parse_schedule_events(
    grid: Grid,
    selected_courses: Iterable[str],
    time_slots: Optional[List[TimeSlot]] = None,
    block_rows: int = DAY_BLOCK_ROWS,
    scan_rows: int = HEADER_SCAN_ROWS,
    min_slots: int = MIN_TIME_SLOTS,
) -> List[ScheduleEvent]:
    """
    Parse every day block of the grid into events for the selected courses.

    Returns [] (with a warning) when no time-slot header row is found.
    """
    selected = set(selected_courses)
    slots = time_slots if time_slots is not None else parse_time_slots(grid, scan_rows, min_slots)
    if not slots:
        log.warning("No time slots found; no events can be produced")
        return []

    events: List[ScheduleEvent] = []
    current_week = 1
    current_date: Optional[date] = None

    for i, row in enumerate(grid):
        first = row[0] if row else None

        week = parse_week(first)
        if week is not None:
            current_week = week

        parsed = parse_date(first)
        if parsed is not None:
            current_date = parsed

        day = match_day(_cell_text(row, 1))
        if day is None:
            continue

        if current_date is None:
            log.warning("Skipping %s block at row %d: no date seen yet", day, i)
            continue

        for course_row_index, prof_row_index in _block_pairs(i, block_rows):
            course_row = grid[course_row_index] if course_row_index < len(grid) else []
            prof_row = grid[prof_row_index] if prof_row_index < len(grid) else []

            for col in range(FIRST_SLOT_COLUMN, min(len(course_row), len(slots) + FIRST_SLOT_COLUMN)):
                cell = _cell_text(course_row, col)
                if not cell.strip():
                    continue
                events.extend(
                    parse_cell_events(
                        cell,
                        week=current_week,
                        day=day,
                        current_date=current_date,
                        time_slot=slots[col - FIRST_SLOT_COLUMN],
                        selected_courses=selected,
                        professor_cell=_cell_text(prof_row, col),
                        source_cell=(course_row_index, col),
                    )
                )

    return events


def extract_courses(grid: Grid) -> List[Course]:
    """
    Build the course catalog from every course line in the grid, regardless of selection.

    Combined-section lines contribute both sections. Not deduplicated; see normalize_courses.
    """
    courses: List[Course] = []
    for row in grid:
        for col in range(FIRST_SLOT_COLUMN, len(row)):
            for line in _lines(_cell_text(row, col)):
                match = match_course_line(line)
                if match is None:
                    continue
                for code, section in zip(match.codes, match.sections):
                    courses.append(Course(code=code, name=match.name, section=section, location=match.location))
    return courses


def course_codes(courses: Iterable[Course]) -> Set[str]:
    return {c.code for c in courses}
