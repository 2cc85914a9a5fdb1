"""Google Calendar API v3 client for doctors' linked calendars.

Each doctor authorises the clinic once; the resulting OAuth refresh token is
stored on the doctor row and exchanged for short-lived access tokens by
``google-auth`` on demand.

API docs: https://developers.google.com/calendar/api/v3/reference
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from dental_agent.config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_TOKEN_URI
from dental_agent.errors import CalendarAPIError
from dental_agent.services.clock import parse_hhmm
from dental_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Passed to HttpRequest.execute; googleapiclient backs off on 5xx, 429 and socket errors
MAX_RETRIES = 3


@dataclass
class CalendarEvent:
    """What the clinic writes into a doctor's calendar for one appointment."""

    patient_name: str
    doctor_name: str
    day: date
    time: str
    service: str
    duration: int = 30
    notes: str | None = None

    def to_body(self, timezone: str) -> dict[str, Any]:
        tz = ZoneInfo(timezone)
        start = datetime.combine(self.day, datetime.min.time(), tzinfo=tz) + timedelta(
            minutes=parse_hhmm(self.time),
        )
        end = start + timedelta(minutes=self.duration)
        description = f"Patient: {self.patient_name}\nService: {self.service}"
        if self.notes:
            description += f"\nNotes: {self.notes}"
        return {
            "summary": f"{self.service} - {self.patient_name}",
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": timezone},
            "reminders": {"useDefault": True},
        }


def build_credentials(refresh_token: str) -> Credentials:
    return Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
        scopes=SCOPES,
    )


class GoogleCalendarClient:
    """Thin wrapper over the Calendar v3 discovery client.

    ``service_factory`` turns a refresh token into a discovery ``Resource``;
    tests inject a fake.
    """

    def __init__(self, service_factory: Callable[[str], Any] | None = None):
        self._service_factory = service_factory or self._build_service

    @staticmethod
    def _build_service(refresh_token: str):
        return build("calendar", "v3", credentials=build_credentials(refresh_token),
                     cache_discovery=False)

    def _execute(self, operation: str, request: Any) -> Any:
        """Run a prepared API request; every failure becomes ``CalendarAPIError``."""
        try:
            with metrics.track("google_calendar", operation):
                return request.execute(num_retries=MAX_RETRIES)
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            status = int(status) if status is not None else None
            if status is not None and status >= 500:
                logger.warning("Google Calendar %s gave up after %d retries (%s)", operation, MAX_RETRIES, status)
            raise CalendarAPIError(f"Google Calendar {operation} failed: {exc}", status_code=status) from exc
        except GoogleAuthError as exc:
            raise CalendarAPIError(f"Google credentials rejected: {exc}") from exc
        except (OSError, httplib2.HttpLib2Error) as exc:
            raise CalendarAPIError(f"Google Calendar {operation} unreachable: {exc!r}") from exc

    # ── Public API ───────────────────────────────────────────────────

    def create_event(
        self,
        credential: str,
        calendar_id: str,
        event: CalendarEvent,
        timezone: str,
    ) -> str:
        """Insert *event* and return the new event id."""
        service = self._service_factory(credential)
        body = event.to_body(timezone)
        created = self._execute(
            "events.insert",
            service.events().insert(calendarId=calendar_id, body=body),
        )
        event_id = created.get("id")
        if not event_id:
            raise CalendarAPIError("Google Calendar returned an event without an id")
        logger.info("Created calendar event %s on %s", event_id, calendar_id)
        return event_id

    def delete_event(self, credential: str, calendar_id: str, event_id: str) -> None:
        """Delete an event; an already-deleted event is not an error."""
        service = self._service_factory(credential)
        try:
            self._execute(
                "events.delete",
                service.events().delete(calendarId=calendar_id, eventId=event_id),
            )
        except CalendarAPIError as exc:
            if exc.status_code in (404, 410):
                logger.info("Calendar event %s already gone", event_id)
                return
            raise
        logger.info("Deleted calendar event %s on %s", event_id, calendar_id)

    def list_calendars(self, credential: str) -> list[dict[str, Any]]:
        """Calendars the credential can see, as ``{id, summary, primary}`` dicts."""
        service = self._service_factory(credential)
        response = self._execute(
            "calendarList.list", service.calendarList().list(),
        )
        return [
            {
                "id": item.get("id"),
                "summary": item.get("summary", ""),
                "primary": bool(item.get("primary", False)),
            }
            for item in response.get("items", [])
        ]
