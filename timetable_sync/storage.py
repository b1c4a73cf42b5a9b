"""
Canonical store.

The store is a directory of JSON files:

    courses.json      last ingested course catalog
    events.json       last ingested canonical event set (all courses)
    metadata.json     when/how the last ingestion ran
    subscribers.json  per-subscriber course selection + calendar identity
    sync_log.json     outcome of each subscriber's latest sync

Design rationale:
- courses.json and events.json are wholly replaced on every ingestion
- subscriber state is preserved independently from repeated ingestion runs
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from timetable_sync.model import Course, ScheduleEvent, Subscriber, SyncStats


def _load_json(path: Path) -> Any:
    """
    Load JSON from a file, or None if it is missing or broken.

    Store behaviour: never crash if data is missing or corrupted.
    """
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return None


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


class ScheduleStore:
    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    @property
    def courses_path(self) -> Path:
        return self.data_dir / "courses.json"

    @property
    def events_path(self) -> Path:
        return self.data_dir / "events.json"

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / "metadata.json"

    @property
    def subscribers_path(self) -> Path:
        return self.data_dir / "subscribers.json"

    @property
    def sync_log_path(self) -> Path:
        return self.data_dir / "sync_log.json"

    # -- canonical schedule ------------------------------------------------

    def save_schedule(self, courses: List[Course], events: List[ScheduleEvent], strategy: str = "") -> None:
        _write_json(self.courses_path, [c.to_dict() for c in courses])
        _write_json(self.events_path, [e.to_dict() for e in events])
        _write_json(
            self.metadata_path,
            {
                "last_ingested": datetime.now().isoformat(timespec="seconds"),
                "source": strategy,
                "courses": len(courses),
                "events": len(events),
            },
        )

    def load_courses(self) -> Optional[List[Course]]:
        """
        Return the stored catalog, or None if nothing was ingested yet.
        """
        raw = _load_json(self.courses_path)
        if not isinstance(raw, list):
            return None
        return [Course.from_dict(c) for c in raw if isinstance(c, dict) and c.get("code")]

    def load_events(self) -> Optional[List[ScheduleEvent]]:
        """
        Return the stored canonical events, or None if nothing was ingested yet.
        """
        raw = _load_json(self.events_path)
        if not isinstance(raw, list):
            return None
        out: List[ScheduleEvent] = []
        for e in raw:
            if not isinstance(e, dict):
                continue
            try:
                out.append(ScheduleEvent.from_dict(e))
            except (KeyError, ValueError, TypeError):
                continue
        return out

    def load_metadata(self) -> Dict[str, Any]:
        raw = _load_json(self.metadata_path)
        return raw if isinstance(raw, dict) else {}

    # -- subscribers ---------------------------------------------------------

    def load_subscribers(self) -> List[Subscriber]:
        raw = _load_json(self.subscribers_path)
        if not isinstance(raw, list):
            return []
        subs = [Subscriber.from_dict(s) for s in raw if isinstance(s, dict)]
        return [s for s in subs if s.subscriber_id]

    def save_subscribers(self, subscribers: Iterable[Subscriber]) -> None:
        _write_json(self.subscribers_path, [s.to_dict() for s in subscribers])

    def get_subscriber(self, subscriber_id: str) -> Optional[Subscriber]:
        return next((s for s in self.load_subscribers() if s.subscriber_id == subscriber_id), None)

    def select_course(self, subscriber_id: str, code: str) -> bool:
        """
        Add a course code to a subscriber's selection (creating the subscriber if needed).
        Returns False if it was already selected.
        """
        code = code.strip()
        subscribers = self.load_subscribers()
        sub = next((s for s in subscribers if s.subscriber_id == subscriber_id), None)
        if sub is None:
            sub = Subscriber(subscriber_id=subscriber_id)
            subscribers.append(sub)
        if code in sub.selected_courses:
            return False
        sub.selected_courses.append(code)
        sub.selected_courses.sort()
        self.save_subscribers(subscribers)
        return True

    def deselect_course(self, subscriber_id: str, code: str) -> bool:
        """
        Remove a course code from a subscriber's selection. Returns False if it was not selected.
        """
        code = code.strip()
        subscribers = self.load_subscribers()
        sub = next((s for s in subscribers if s.subscriber_id == subscriber_id), None)
        if sub is None or code not in sub.selected_courses:
            return False
        sub.selected_courses.remove(code)
        self.save_subscribers(subscribers)
        return True

    # -- sync log --------------------------------------------------------------

    def record_sync(self, subscriber_id: str, stats: Optional[SyncStats], error: Optional[str] = None) -> None:
        raw = _load_json(self.sync_log_path)
        log = raw if isinstance(raw, dict) else {}
        entry: Dict[str, Any] = {
            "synced_at": datetime.now().isoformat(timespec="seconds"),
            "status": "error" if error else "success",
        }
        entry.update((stats or SyncStats()).to_dict())
        if error:
            entry["error_message"] = error
        log[subscriber_id] = entry
        _write_json(self.sync_log_path, log)

    def load_sync_log(self) -> Dict[str, Any]:
        raw = _load_json(self.sync_log_path)
        return raw if isinstance(raw, dict) else {}
