"""
Unit tests for the canonical JSON store.

Storage contract:
- Missing/invalid files -> None for schedule data, [] / {} for the rest
- courses.json and events.json are replaced on every ingestion
- subscriber selections survive re-ingestion
"""

import json
import tempfile
import unittest
from datetime import date
from pathlib import Path

from timetable_sync.model import Course, ScheduleEvent, Subscriber, SyncStats, TimeSlot, make_event_id
from timetable_sync.storage import ScheduleStore


def sample_event() -> ScheduleEvent:
    ev = ScheduleEvent(
        id="",
        course_code="SA-A",
        course_name="SA",
        section="A",
        location="PT-2-4",
        professor="Dr Z",
        date=date(2026, 2, 14),
        time_slot=TimeSlot("11:30AM", "1:00PM"),
        week=3,
        day="Sat",
        combined_codes=["SA-A", "SA-B"],
        source_cell=(3, 4),
    )
    ev.id = make_event_id(ev)
    return ev


class TestScheduleStore(unittest.TestCase):
    def test_missing_files(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(Path(d) / "missing")
            self.assertIsNone(store.load_courses())
            self.assertIsNone(store.load_events())
            self.assertEqual(store.load_subscribers(), [])
            self.assertEqual(store.load_metadata(), {})
            self.assertEqual(store.load_sync_log(), {})

    def test_corrupted_file_is_treated_as_missing(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(d)
            store.events_path.write_text("{not json", encoding="utf-8")
            self.assertIsNone(store.load_events())

    def test_schedule_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(d)
            course = Course("SA-A", "SA", "A", "PT-2-4")
            event = sample_event()
            store.save_schedule([course], [event], strategy="local_file")

            self.assertEqual(store.load_courses(), [course])
            self.assertEqual(store.load_events(), [event])
            meta = store.load_metadata()
            self.assertEqual(meta["source"], "local_file")
            self.assertEqual(meta["events"], 1)

            data = json.loads(store.events_path.read_text(encoding="utf-8"))
            self.assertEqual(data[0]["date"], "2026-02-14")
            self.assertEqual(data[0]["time_slot"], {"start": "11:30AM", "end": "1:00PM"})

    def test_ingestion_replaces_schedule_but_keeps_subscribers(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(d)
            store.save_schedule([Course("A-A", "A", "A")], [sample_event()])
            store.select_course("alice", "SA-A")
            store.save_schedule([], [])
            self.assertEqual(store.load_courses(), [])
            self.assertEqual(store.load_events(), [])
            self.assertEqual(store.get_subscriber("alice").selected_courses, ["SA-A"])

    def test_select_and_deselect(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(d)
            self.assertTrue(store.select_course("alice", "SA-B"))
            self.assertTrue(store.select_course("alice", " CS101-A "))
            self.assertFalse(store.select_course("alice", "SA-B"))
            self.assertEqual(store.get_subscriber("alice").selected_courses, ["CS101-A", "SA-B"])

            self.assertTrue(store.deselect_course("alice", "SA-B"))
            self.assertFalse(store.deselect_course("alice", "SA-B"))
            self.assertFalse(store.deselect_course("bob", "SA-B"))
            self.assertEqual(store.get_subscriber("alice").selected_courses, ["CS101-A"])

    def test_subscriber_fields_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(d)
            sub = Subscriber("alice", "a@example.com", ["SA-A"], "cal-1", "tokens/alice.json", False)
            store.save_subscribers([sub, Subscriber("")])
            self.assertEqual(store.load_subscribers(), [sub])

    def test_record_sync(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            store = ScheduleStore(d)
            store.record_sync("alice", SyncStats(created=2, deleted=1))
            store.record_sync("bob", None, "no calendar id")

            log = store.load_sync_log()
            self.assertEqual(log["alice"]["status"], "success")
            self.assertEqual(log["alice"]["created"], 2)
            self.assertEqual(log["alice"]["deleted"], 1)
            self.assertNotIn("error_message", log["alice"])
            self.assertEqual(log["bob"]["status"], "error")
            self.assertEqual(log["bob"]["error_message"], "no calendar id")


if __name__ == "__main__":
    unittest.main()
