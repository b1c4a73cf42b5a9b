"""
Google Calendar provider.

Wraps the Calendar v3 API behind the four operations the sync needs:
list / insert / update / delete on one calendar id. Records are plain API
dicts; the private extended properties set in model.ScheduleEvent.to_gcal_body
are the only link back to the timetable.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from timetable_sync.model import META_APP_CREATED

log = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]
MAX_RESULTS = 2500
HTTP_TIMEOUT_SECONDS = 60


class CredentialsError(RuntimeError):
    """No usable OAuth credentials for a subscriber (or for the schedule source)."""


def load_credentials(token_file: Optional[str]) -> Credentials:
    """
    Load authorized-user credentials from a token file, refreshing them if expired.

    Raises CredentialsError when the file is missing/invalid or cannot be refreshed.
    """
    if not token_file:
        raise CredentialsError("No token file configured")
    try:
        creds = Credentials.from_authorized_user_file(token_file, SCOPES)
    except (OSError, ValueError) as e:
        raise CredentialsError(f"Cannot read credentials from {token_file}: {e}") from e

    if not creds.valid:
        if not (creds.expired and creds.refresh_token):
            raise CredentialsError(f"Credentials in {token_file} are invalid and cannot be refreshed")
        try:
            creds.refresh(Request())
        except GoogleAuthError as e:
            raise CredentialsError(f"Failed to refresh credentials from {token_file}: {e}") from e
        with open(token_file, "w", encoding="utf-8") as f:
            f.write(creds.to_json())
    return creds


def authorized_http(credentials, timeout: float = HTTP_TIMEOUT_SECONDS) -> google_auth_httplib2.AuthorizedHttp:
    """
    An authorized transport whose socket operations give up after `timeout` seconds.
    """
    return google_auth_httplib2.AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))


class GoogleCalendar:
    """
    One calendar of one subscriber.

    The API client and its httplib2 transport are not thread-safe, so each
    worker thread builds its own.
    """

    def __init__(
        self, credentials: Credentials, calendar_id: str = "primary", timeout: float = HTTP_TIMEOUT_SECONDS
    ) -> None:
        self.credentials = credentials
        self.calendar_id = calendar_id
        self.timeout = timeout
        self._local = threading.local()

    def _service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            service = build("calendar", "v3", http=authorized_http(self.credentials, self.timeout), cache_discovery=False)
            self._local.service = service
        return service

    def list(self, time_min: datetime, time_max: datetime, app_created_only: bool = True) -> List[Dict[str, Any]]:
        """
        Every single-instance record starting inside [time_min, time_max).
        """
        log.info("Fetching existing events of %s from %s to %s", self.calendar_id, time_min, time_max)
        items: List[Dict[str, Any]] = []
        page_token = None
        while True:
            params: Dict[str, Any] = dict(
                calendarId=self.calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                showDeleted=False,
                maxResults=MAX_RESULTS,
                pageToken=page_token,
            )
            if app_created_only:
                params["privateExtendedProperty"] = [f"{META_APP_CREATED}=true"]
            result = self._service().events().list(**params).execute()
            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        log.info("Found %d existing events", len(items))
        return items

    def insert(self, body: Dict[str, Any]) -> str:
        created = self._service().events().insert(calendarId=self.calendar_id, body=body).execute()
        log.debug("Created %s (%s)", created.get("id"), body.get("summary"))
        return created.get("id", "")

    def update(self, event_id: str, body: Dict[str, Any]) -> None:
        self._service().events().update(calendarId=self.calendar_id, eventId=event_id, body=body).execute()
        log.debug("Updated %s (%s)", event_id, body.get("summary"))

    def delete(self, event_id: str) -> None:
        self._service().events().delete(calendarId=self.calendar_id, eventId=event_id).execute()
        log.debug("Deleted %s", event_id)


def calendar_for(token_file: Optional[str], calendar_id: str) -> GoogleCalendar:
    return GoogleCalendar(load_credentials(token_file), calendar_id)
