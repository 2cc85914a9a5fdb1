"""Tests for the Google Calendar client."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from dental_agent.errors import CalendarAPIError
from dental_agent.services.calendar_client import (
    MAX_RETRIES,
    CalendarEvent,
    GoogleCalendarClient,
)

EVENT = CalendarEvent(
    patient_name="Anna de Boer",
    doctor_name="Sarah de Vries",
    day=date(2025, 3, 10),
    time="10:00",
    service="Teeth Cleaning",
)


# ── Helpers ──────────────────────────────────────────────────────────


def _http_error(status: int) -> HttpError:
    return HttpError(MagicMock(status=status, reason="error"), b"")


def _client(service: MagicMock) -> GoogleCalendarClient:
    return GoogleCalendarClient(service_factory=lambda token: service)


# ── Tests: CalendarEvent ─────────────────────────────────────────────


class TestCalendarEvent:
    def test_body_uses_local_times(self):
        body = EVENT.to_body("Europe/Amsterdam")
        assert body["summary"] == "Teeth Cleaning - Anna de Boer"
        assert body["start"]["dateTime"] == "2025-03-10T10:00:00+01:00"
        assert body["end"]["dateTime"] == "2025-03-10T10:30:00+01:00"
        assert body["start"]["timeZone"] == "Europe/Amsterdam"

    def test_notes_are_appended(self):
        event = CalendarEvent(**{**EVENT.__dict__, "notes": "Sensitive teeth"})
        assert "Notes: Sensitive teeth" in event.to_body("Europe/Amsterdam")["description"]


# ── Tests: create_event ──────────────────────────────────────────────


class TestCreateEvent:
    def test_returns_event_id(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.return_value = {"id": "evt-1"}

        event_id = _client(service).create_event("token", "cal@example.com", EVENT, "Europe/Amsterdam")

        assert event_id == "evt-1"
        kwargs = service.events.return_value.insert.call_args.kwargs
        assert kwargs["calendarId"] == "cal@example.com"

    def test_missing_id_raises(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.return_value = {}
        with pytest.raises(CalendarAPIError):
            _client(service).create_event("token", "primary", EVENT, "Europe/Amsterdam")

    def test_request_is_executed_with_retries(self):
        service = MagicMock()
        request = service.events.return_value.insert.return_value
        request.execute.return_value = {"id": "evt-2"}

        _client(service).create_event("token", "primary", EVENT, "Europe/Amsterdam")

        request.execute.assert_called_once_with(num_retries=MAX_RETRIES)

    def test_5xx_after_retries_raises(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.side_effect = _http_error(503)

        with pytest.raises(CalendarAPIError) as exc_info:
            _client(service).create_event("token", "primary", EVENT, "Europe/Amsterdam")

        assert exc_info.value.status_code == 503

    def test_4xx_keeps_status_code(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.side_effect = _http_error(403)

        with pytest.raises(CalendarAPIError) as exc_info:
            _client(service).create_event("token", "primary", EVENT, "Europe/Amsterdam")

        assert exc_info.value.status_code == 403

    @pytest.mark.parametrize("error", [
        TimeoutError("timed out"),
        ConnectionResetError(),
        httplib2.ServerNotFoundError("Unable to find the server"),
    ])
    def test_transport_errors_become_calendar_errors(self, error):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.side_effect = error

        with pytest.raises(CalendarAPIError, match="unreachable") as exc_info:
            _client(service).create_event("token", "primary", EVENT, "Europe/Amsterdam")

        assert exc_info.value.status_code is None


# ── Tests: delete_event / list_calendars ─────────────────────────────


class TestDeleteEvent:
    def test_deletes(self):
        service = MagicMock()
        _client(service).delete_event("token", "primary", "evt-1")
        service.events.return_value.delete.assert_called_once_with(calendarId="primary", eventId="evt-1")

    @pytest.mark.parametrize("status", [404, 410])
    def test_already_gone_is_not_an_error(self, status):
        service = MagicMock()
        service.events.return_value.delete.return_value.execute.side_effect = _http_error(status)
        _client(service).delete_event("token", "primary", "evt-1")

    def test_other_errors_propagate(self):
        service = MagicMock()
        service.events.return_value.delete.return_value.execute.side_effect = _http_error(401)
        with pytest.raises(CalendarAPIError):
            _client(service).delete_event("token", "primary", "evt-1")


class TestListCalendars:
    def test_flattens_items(self):
        service = MagicMock()
        service.calendarList.return_value.list.return_value.execute.return_value = {
            "items": [
                {"id": "primary@example.com", "summary": "Sarah", "primary": True},
                {"id": "team@example.com"},
            ]
        }
        calendars = _client(service).list_calendars("token")
        assert calendars == [
            {"id": "primary@example.com", "summary": "Sarah", "primary": True},
            {"id": "team@example.com", "summary": "", "primary": False},
        ]
