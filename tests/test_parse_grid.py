"""
Unit tests for timetable grid parsing.

Parser contract:
- The header row is the first row with >= 5 time ranges; the LAST range of a cell counts
- Dates in column A are day-first
- Each day block is (course row, professor row) pairs; one course line = one event
- Course lines: combined (Name-X and Y), multi (Name-X) then single (Name) section
"""

import unittest
from datetime import date

from sheet_fixtures import timetable_grid
from timetable_sync.model import TimeSlot
from timetable_sync.normalize import normalize_courses, normalize_events
from timetable_sync.parse import (
    course_codes,
    extract_courses,
    match_course_line,
    match_day,
    parse_cell_events,
    parse_date,
    parse_schedule_events,
    parse_time_slots,
    parse_week,
)

ALL_CODES = {"CS101-A", "CS101-B", "SA-A", "SA-B", "LETV", "Fintech-B"}


class TestTimeSlots(unittest.TestCase):
    def test_header_row_needs_five_slots(self) -> None:
        # Row 0 only has 4 ranges and must be skipped in favour of row 1
        slots = parse_time_slots(timetable_grid())
        self.assertEqual(len(slots), 5)
        self.assertEqual(slots[0], TimeSlot("8:00AM", "9:30AM"))

    def test_last_range_in_cell_wins(self) -> None:
        slots = parse_time_slots(timetable_grid())
        self.assertEqual(slots[1], TimeSlot("9:45AM", "11:15AM"))

    def test_dot_separator_is_normalized(self) -> None:
        row = ["", "", "9.00AM - 10.00AM", "10:00AM-11:00AM", "11:00AM - 12:00PM", "1:00PM - 2:00PM", "2:00PM - 3:00PM"]
        slots = parse_time_slots([row])
        self.assertEqual(slots[0], TimeSlot("9:00AM", "10:00AM"))
        self.assertEqual(slots[0].start_time().hour, 9)
        self.assertEqual(slots[4].end_time().hour, 15)

    def test_no_header_returns_empty(self) -> None:
        self.assertEqual(parse_time_slots([["Week 1"], ["14/2/2026", "Sat", "CS101 (R1)"]]), [])

    def test_header_outside_scan_window_is_ignored(self) -> None:
        grid = [[""] for _ in range(40)] + [timetable_grid()[1]]
        self.assertEqual(parse_time_slots(grid), [])
        self.assertEqual(len(parse_time_slots(grid, scan_rows=41)), 5)


class TestCellHelpers(unittest.TestCase):
    def test_parse_date_is_day_first(self) -> None:
        self.assertEqual(parse_date("14/2/2026"), date(2026, 2, 14))
        self.assertEqual(parse_date("1/12/2025"), date(2025, 12, 1))

    def test_parse_date_rejects_non_dates(self) -> None:
        self.assertIsNone(parse_date("Week 1"))
        self.assertIsNone(parse_date("31/2/2026"))
        self.assertIsNone(parse_date(""))
        self.assertIsNone(parse_date(None))

    def test_parse_date_accepts_date_objects(self) -> None:
        self.assertEqual(parse_date(date(2026, 3, 1)), date(2026, 3, 1))

    def test_parse_week(self) -> None:
        self.assertEqual(parse_week("Week 12"), 12)
        self.assertEqual(parse_week("week3"), 3)
        self.assertIsNone(parse_week("Weekend"))

    def test_day_vocabulary_tolerates_partial_and_misspelled(self) -> None:
        self.assertEqual(match_day("Thurs"), "Thu")
        self.assertEqual(match_day("Wedensday"), "Wed")
        self.assertEqual(match_day("SATURDAY"), "Sat")
        self.assertEqual(match_day(" Mon "), "Mon")

    def test_day_vocabulary_rejects_other_words(self) -> None:
        self.assertIsNone(match_day("Days"))
        self.assertIsNone(match_day("Monsoon"))
        self.assertIsNone(match_day(""))


class TestCourseGrammar(unittest.TestCase):
    def test_single_section(self) -> None:
        m = match_course_line("LETV (PT-1-2)")
        self.assertIsNotNone(m)
        self.assertEqual(m.codes, ("LETV",))
        self.assertEqual(m.location, "PT-1-2")

    def test_multi_section_wins_over_single(self) -> None:
        m = match_course_line("CS101-A (Room1)")
        self.assertEqual(m.codes, ("CS101-A",))
        self.assertEqual(m.sections, ("A",))

    def test_multi_section_mixed_case_name(self) -> None:
        m = match_course_line("Fintech-B(PT-1-2)")
        self.assertEqual(m.codes, ("Fintech-B",))

    def test_single_section_mixed_case_name(self) -> None:
        m = match_course_line("Fintech (PT-1-2)")
        self.assertIsNotNone(m)
        self.assertEqual(m.codes, ("Fintech",))
        self.assertEqual(m.sections, ("1",))
        self.assertEqual(m.location, "PT-1-2")

    def test_single_section_hyphenated_mixed_case_name(self) -> None:
        self.assertEqual(match_course_line("Data-Viz (Lab 3)").codes, ("Data-Viz",))

    def test_combined_section(self) -> None:
        m = match_course_line("SA-A and B (PT-2-4)")
        self.assertTrue(m.combined)
        self.assertEqual(m.codes, ("SA-A", "SA-B"))
        self.assertEqual(m.location, "PT-2-4")

    def test_combined_section_upper_and(self) -> None:
        self.assertEqual(match_course_line("SA-A AND B (PT-2-4)").codes, ("SA-A", "SA-B"))

    def test_dangling_hyphen_is_not_a_course(self) -> None:
        self.assertIsNone(match_course_line("CS101- (Room1)"))

    def test_professor_lines_are_not_courses(self) -> None:
        self.assertIsNone(match_course_line("Prof X (Guest)"))
        self.assertIsNone(match_course_line("Dr Z"))

    def test_line_must_start_with_course(self) -> None:
        self.assertIsNone(match_course_line("moved: CS101-A (Room1)"))


class TestCellEvents(unittest.TestCase):
    slot = TimeSlot("8:00AM", "9:30AM")
    day = date(2026, 2, 14)

    def test_two_lines_map_to_professor_lines(self) -> None:
        events = parse_cell_events(
            "CS101-A (Room1)\nCS101-B (Room2)",
            week=1,
            day="Sat",
            current_date=self.day,
            time_slot=self.slot,
            selected_courses={"CS101-A", "CS101-B"},
            professor_cell="Prof X\nProf Y",
        )
        self.assertEqual(
            [(e.course_code, e.location, e.professor) for e in events],
            [("CS101-A", "Room1", "Prof X"), ("CS101-B", "Room2", "Prof Y")],
        )

    def test_only_selected_line_is_emitted(self) -> None:
        events = parse_cell_events(
            "CS101-A (Room1)\nCS101-B (Room2)",
            week=1,
            day="Sat",
            current_date=self.day,
            time_slot=self.slot,
            selected_courses=["CS101-A"],
            professor_cell="Prof X\nProf Y",
        )
        self.assertEqual(len(events), 1)
        self.assertEqual((events[0].course_code, events[0].location, events[0].professor), ("CS101-A", "Room1", "Prof X"))

    def test_missing_professor_line_falls_back_to_first(self) -> None:
        events = parse_cell_events(
            "CS101-A (Room1)\nCS101-B (Room2)",
            week=1,
            day="Sat",
            current_date=self.day,
            time_slot=self.slot,
            selected_courses={"CS101-B"},
            professor_cell="Prof X",
        )
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].professor, "Prof X")

    def test_no_professor_cell(self) -> None:
        events = parse_cell_events("LETV (R)", 1, "Sat", self.day, self.slot, {"LETV"})
        self.assertEqual(events[0].professor, "")
        self.assertEqual(events[0].section, "1")

    def test_combined_only_second_selected(self) -> None:
        events = parse_cell_events("SA-A and B (PT-2-4)", 1, "Sat", self.day, self.slot, {"SA-B"}, "Dr Z")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].course_code, "SA-B")
        self.assertEqual(events[0].section, "B")
        self.assertEqual(events[0].combined_codes, ["SA-A", "SA-B"])

    def test_combined_both_selected_first_wins(self) -> None:
        events = parse_cell_events("SA-A and B (PT-2-4)", 1, "Sat", self.day, self.slot, {"SA-A", "SA-B"})
        self.assertEqual([e.course_code for e in events], ["SA-A"])

    def test_mixed_case_single_section_is_emitted(self) -> None:
        events = parse_cell_events("Fintech (PT-1-2)", 1, "Sat", self.day, self.slot, ["Fintech"], "Prof F")
        self.assertEqual([(e.course_code, e.section, e.location) for e in events], [("Fintech", "1", "PT-1-2")])

    def test_unselected_lines_are_dropped(self) -> None:
        self.assertEqual(parse_cell_events("CS101-A (Room1)", 1, "Sat", self.day, self.slot, {"LETV"}), [])


class TestGridParsing(unittest.TestCase):
    def test_parse_whole_grid(self) -> None:
        events = parse_schedule_events(timetable_grid(), ALL_CODES)
        got = {(e.course_code, e.date, e.time_slot.start, e.professor, e.source_cell) for e in events}
        self.assertEqual(
            got,
            {
                ("CS101-A", date(2026, 2, 14), "8:00AM", "Prof X", (3, 2)),
                ("CS101-B", date(2026, 2, 14), "8:00AM", "Prof Y", (3, 2)),
                ("SA-A", date(2026, 2, 14), "11:30AM", "Dr Z", (3, 4)),
                ("LETV", date(2026, 2, 14), "9:45AM", "Prof L", (5, 3)),
                ("Fintech-B", date(2026, 2, 16), "11:30AM", "Prof F", (7, 4)),
            },
        )
        self.assertTrue(all(e.week == 1 for e in events))
        self.assertEqual({e.day for e in events}, {"Sat", "Mon"})

    def test_selection_filters_events(self) -> None:
        events = parse_schedule_events(timetable_grid(), {"LETV"})
        self.assertEqual([e.course_code for e in events], ["LETV"])

    def test_week_marker_updates_week(self) -> None:
        grid = timetable_grid()
        grid.insert(7, ["Week 2"])
        events = parse_schedule_events(grid, {"Fintech-B", "LETV"})
        weeks = {e.course_code: e.week for e in events}
        self.assertEqual(weeks, {"LETV": 1, "Fintech-B": 2})

    def test_no_header_yields_no_events(self) -> None:
        grid = [row for i, row in enumerate(timetable_grid()) if i != 1]
        self.assertEqual(parse_schedule_events(grid, ALL_CODES), [])

    def test_day_before_any_date_is_skipped(self) -> None:
        grid = timetable_grid()[:3] + [["", "Sat", "CS101-A (Room1)"], ["", "", "Prof X"]]
        self.assertEqual(parse_schedule_events(grid, ALL_CODES), [])

    def test_shorter_block_drops_second_pair(self) -> None:
        events = parse_schedule_events(timetable_grid(), {"LETV"}, block_rows=2)
        self.assertEqual(events, [])

    def test_odd_block_rows_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_schedule_events(timetable_grid(), ALL_CODES, block_rows=3)

    def test_parsing_is_deterministic(self) -> None:
        # Same grid twice -> identical ids and catalog
        first = normalize_events(parse_schedule_events(timetable_grid(), ALL_CODES))
        second = normalize_events(parse_schedule_events(timetable_grid(), ALL_CODES))
        self.assertEqual([e.id for e in first], [e.id for e in second])
        self.assertEqual(
            normalize_courses(extract_courses(timetable_grid())),
            normalize_courses(extract_courses(timetable_grid())),
        )


class TestCatalog(unittest.TestCase):
    def test_extract_courses(self) -> None:
        courses = normalize_courses(extract_courses(timetable_grid()))
        self.assertEqual([c.code for c in courses], sorted(ALL_CODES))
        self.assertEqual(course_codes(courses), ALL_CODES)

    def test_combined_line_adds_both_sections(self) -> None:
        courses = extract_courses([["", "", "SA-A and B (PT-2-4)"]])
        self.assertEqual([(c.code, c.section) for c in courses], [("SA-A", "A"), ("SA-B", "B")])

    def test_mixed_case_single_section_is_in_catalog(self) -> None:
        courses = extract_courses([["", "", "Fintech (PT-1-2)"], ["", "", "Prof F (Guest)"]])
        self.assertEqual([(c.code, c.name, c.section) for c in courses], [("Fintech", "Fintech", "1")])


if __name__ == "__main__":
    unittest.main()
