"""
Google Calendar event store.

Thin wrapper over the Calendar v3 API that speaks in RemoteEvent / EventTemplate
and translates HttpError into the store error kinds the reconciliation engine
branches on. Nothing here retries; that policy lives in reconcile.py.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import os
from typing import Any, Dict, Iterator, List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pool_schedule.errors import StoreError, TransientStoreFailure
from pool_schedule.recurrence import EventTemplate

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.events"]

PAGE_SIZE = 2500

# Google reports per-user rate limits as 403 as well as 429.
TRANSIENT_STATUSES = frozenset({403, 429, 500, 502, 503, 504})
NOT_FOUND_STATUSES = frozenset({404, 410})


# -----------------------------
# Auth
# -----------------------------

def get_calendar_service(credentials_path: str = "credentials.json", token_path: str = "token.json"):
    creds = None
    if os.path.exists(token_path):
        try:
            creds = Credentials.from_authorized_user_file(token_path, SCOPES)
        except ValueError:
            logger.warning("Ignoring unreadable token file %s", token_path)
            creds = None

    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
        with open(token_path, "w", encoding="utf-8") as f:
            f.write(creds.to_json())
    if not creds or not creds.valid:
        flow = InstalledAppFlow.from_client_secrets_file(credentials_path, SCOPES)
        creds = flow.run_local_server(port=0)
        with open(token_path, "w", encoding="utf-8") as f:
            f.write(creds.to_json())
        logger.info("Token saved to %s", token_path)

    return build("calendar", "v3", credentials=creds)


# -----------------------------
# Types
# -----------------------------

@dataclasses.dataclass(frozen=True)
class RemoteEvent:
    id: str
    summary: str
    start: str
    end: str
    recurring_event_id: Optional[str] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "RemoteEvent":
        start = item.get("start") or {}
        end = item.get("end") or {}
        return cls(
            id=item["id"],
            summary=item.get("summary") or "(no title)",
            start=start.get("dateTime") or start.get("date") or "",
            end=end.get("dateTime") or end.get("date") or "",
            recurring_event_id=item.get("recurringEventId"),
        )

    @property
    def is_recurring_instance(self) -> bool:
        return bool(self.recurring_event_id)


class DeleteOutcome(enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


def http_status(error: HttpError) -> Optional[int]:
    status = getattr(error.resp, "status", None)
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def translate_http_error(error: HttpError, action: str) -> StoreError:
    status = http_status(error)
    message = f"{action} failed with HTTP {status}: {error}"
    if status in TRANSIENT_STATUSES:
        return TransientStoreFailure(message, status)
    return StoreError(message, status)


# -----------------------------
# Store
# -----------------------------

class GoogleCalendarStore:
    def __init__(self, service):
        self.service = service

    def iter_pages(
        self,
        calendar_id: str,
        time_min: str,
        time_max: str,
        private_filter: Optional[str] = None,
    ) -> Iterator[List[Dict[str, Any]]]:
        """
        Yields one list of raw event resources per API page. Recurring events are
        expanded into their instances (singleEvents=True). The next page is only
        requested once the caller asks for it.
        """
        params: Dict[str, Any] = {
            "calendarId": calendar_id,
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": True,
            "maxResults": PAGE_SIZE,
            "orderBy": "startTime",
        }
        if private_filter:
            params["privateExtendedProperty"] = [private_filter]

        page_token = None
        while True:
            request = dict(params, pageToken=page_token) if page_token else params
            try:
                response = self.service.events().list(**request).execute()
            except HttpError as e:
                raise translate_http_error(e, f"Listing events in {calendar_id}") from e
            yield response.get("items", [])
            page_token = response.get("nextPageToken")
            if not page_token:
                return

    def list_events(
        self,
        calendar_id: str,
        time_min: str,
        time_max: str,
        private_filter: Optional[str] = None,
    ) -> Iterator[RemoteEvent]:
        for page in self.iter_pages(calendar_id, time_min, time_max, private_filter):
            for item in page:
                yield RemoteEvent.from_api(item)

    def insert(self, calendar_id: str, template: EventTemplate) -> RemoteEvent:
        try:
            created = self.service.events().insert(
                calendarId=calendar_id,
                body=template.to_event_body(),
            ).execute()
        except HttpError as e:
            raise translate_http_error(e, f"Creating {template.summary}") from e
        return RemoteEvent.from_api(created)

    def delete(self, calendar_id: str, event_id: str) -> DeleteOutcome:
        try:
            self.service.events().delete(calendarId=calendar_id, eventId=event_id).execute()
        except HttpError as e:
            if http_status(e) in NOT_FOUND_STATUSES:
                return DeleteOutcome.NOT_FOUND
            raise translate_http_error(e, f"Deleting {event_id}") from e
        return DeleteOutcome.DELETED
