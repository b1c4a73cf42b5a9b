"""
Unit tests for the Google Calendar provider (API client mocked).
"""

import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from timetable_sync.gcal import CredentialsError, GoogleCalendar, load_credentials


class TestGoogleCalendar(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch("timetable_sync.gcal.build")
        self.build = patcher.start()
        self.addCleanup(patcher.stop)
        self.events = self.build.return_value.events.return_value
        self.calendar = GoogleCalendar(credentials=object(), calendar_id="cal-1")

    def test_list_pages_through_results(self) -> None:
        self.events.list.return_value.execute.side_effect = [
            {"items": [{"id": "a"}], "nextPageToken": "p2"},
            {"items": [{"id": "b"}]},
        ]
        start = datetime(2026, 2, 1, tzinfo=timezone.utc)
        items = self.calendar.list(start, datetime(2026, 5, 1, tzinfo=timezone.utc))

        self.assertEqual([i["id"] for i in items], ["a", "b"])
        first, second = self.events.list.call_args_list
        self.assertEqual(first.kwargs["calendarId"], "cal-1")
        self.assertEqual(first.kwargs["timeMin"], start.isoformat())
        self.assertEqual(first.kwargs["privateExtendedProperty"], ["appCreated=true"])
        self.assertTrue(first.kwargs["singleEvents"])
        self.assertEqual(second.kwargs["pageToken"], "p2")

    def test_list_everything(self) -> None:
        self.events.list.return_value.execute.return_value = {"items": []}
        now = datetime(2026, 2, 1, tzinfo=timezone.utc)
        self.calendar.list(now, now, app_created_only=False)
        self.assertNotIn("privateExtendedProperty", self.events.list.call_args.kwargs)

    def test_insert_update_delete(self) -> None:
        self.events.insert.return_value.execute.return_value = {"id": "new-1"}
        self.assertEqual(self.calendar.insert({"summary": "SA-B"}), "new-1")
        self.calendar.update("new-1", {"summary": "SA-B"})
        self.calendar.delete("new-1")

        self.events.insert.assert_called_once_with(calendarId="cal-1", body={"summary": "SA-B"})
        self.events.update.assert_called_once_with(calendarId="cal-1", eventId="new-1", body={"summary": "SA-B"})
        self.events.delete.assert_called_once_with(calendarId="cal-1", eventId="new-1")

    def test_client_is_built_once_per_thread(self) -> None:
        self.events.list.return_value.execute.return_value = {"items": []}
        now = datetime(2026, 2, 1, tzinfo=timezone.utc)
        self.calendar.list(now, now)
        self.calendar.delete("x")
        self.assertEqual(self.build.call_count, 1)

    def test_client_uses_timed_transport(self) -> None:
        creds = object()
        GoogleCalendar(creds, "cal-2", timeout=5).delete("x")
        http = self.build.call_args.kwargs["http"]
        self.assertIs(http.credentials, creds)
        self.assertEqual(http.http.timeout, 5)
        self.assertNotIn("credentials", self.build.call_args.kwargs)


class TestLoadCredentials(unittest.TestCase):
    def test_no_token_file(self) -> None:
        with self.assertRaises(CredentialsError):
            load_credentials(None)

    def test_missing_token_file(self) -> None:
        with self.assertRaises(CredentialsError):
            load_credentials("/nonexistent/token.json")

    def test_malformed_token_file(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "token.json"
            p.write_text(json.dumps({"token": "abc"}), encoding="utf-8")
            with self.assertRaises(CredentialsError):
                load_credentials(str(p))


if __name__ == "__main__":
    unittest.main()
