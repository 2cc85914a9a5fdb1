"""Tests for reminder rows and the reminder poller."""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import MagicMock

import pytest

from dental_agent.db import session_scope
from dental_agent.errors import EmailDeliveryError
from dental_agent.services.reminders import (
    ReminderScheduler,
    cancel_reminders,
    process_due_reminders,
    reschedule_reminders,
    schedule_reminders,
)
from dental_agent.storage import Storage

MONDAY = date(2025, 3, 10)

# Monday 10:00 Amsterdam is 09:00 UTC
DAY_BEFORE = datetime(2025, 3, 9, 9, 0)
HOUR_BEFORE = datetime(2025, 3, 10, 8, 0)


def _schedule(session_factory, code: str) -> list[tuple[int, str]]:
    with session_scope(session_factory) as session:
        storage = Storage(session)
        rows = schedule_reminders(storage, storage.get_appointment_by_reference(code))
        return [(r.offset_minutes, r.channel) for r in rows]


def _statuses(session_factory, code: str) -> list[tuple[int, str, str | None]]:
    with session_scope(session_factory) as session:
        storage = Storage(session)
        appointment = storage.get_appointment_by_reference(code)
        return [(r.offset_minutes, r.status, r.error) for r in storage.reminders_for(appointment.id)]


@pytest.fixture
def booked(clinic, add_appointment):
    return add_appointment(1, MONDAY, "10:00", email="anna@example.com", phone="+31 6 5555 0001")


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.send_reminder.return_value = True
    return mock


class TestReminderRows:
    def test_defaults_are_day_and_hour_before_by_email(self, session_factory, booked):
        assert _schedule(session_factory, booked) == [(1440, "email"), (60, "email")]

    def test_scheduling_is_idempotent(self, session_factory, booked):
        _schedule(session_factory, booked)
        assert _schedule(session_factory, booked) == []
        assert len(_statuses(session_factory, booked)) == 2

    def test_disabled_in_settings(self, session_factory, booked):
        with session_scope(session_factory) as session:
            Storage(session).get_settings().reminder_enabled = False
        assert _schedule(session_factory, booked) == []

    def test_reschedule_replaces_rows(self, session_factory, booked):
        _schedule(session_factory, booked)
        with session_scope(session_factory) as session:
            storage = Storage(session)
            appointment = storage.get_appointment_by_reference(booked)
            storage.reminders_for(appointment.id)[0].status = "sent"
            reschedule_reminders(storage, appointment)
        assert [s for _, s, _ in _statuses(session_factory, booked)] == ["pending", "pending"]

    def test_cancel_removes_rows(self, session_factory, booked):
        _schedule(session_factory, booked)
        with session_scope(session_factory) as session:
            storage = Storage(session)
            assert cancel_reminders(storage, storage.get_appointment_by_reference(booked)) == 2
        assert _statuses(session_factory, booked) == []


class TestProcessDueReminders:
    def test_sends_only_due_reminders(self, session_factory, booked, notifier):
        _schedule(session_factory, booked)

        counts = process_due_reminders(session_factory, notifier, now=DAY_BEFORE)

        assert counts == {"sent": 1, "failed": 0}
        email = notifier.send_reminder.call_args[0][0]
        assert email.when == "Monday 10 March 2025 at 10:00"
        assert email.doctor_name == "Sarah de Vries"
        assert _statuses(session_factory, booked) == [(1440, "sent", None), (60, "pending", None)]

    def test_sent_reminders_are_not_repeated(self, session_factory, booked, notifier):
        _schedule(session_factory, booked)
        process_due_reminders(session_factory, notifier, now=DAY_BEFORE)
        counts = process_due_reminders(session_factory, notifier, now=HOUR_BEFORE)
        assert counts == {"sent": 1, "failed": 0}
        assert notifier.send_reminder.call_count == 2

    def test_nothing_due_yet(self, session_factory, booked, notifier):
        _schedule(session_factory, booked)
        assert process_due_reminders(session_factory, notifier, now=datetime(2025, 3, 8, 9, 0)) == {
            "sent": 0, "failed": 0,
        }
        notifier.send_reminder.assert_not_called()

    def test_past_appointments_are_skipped(self, session_factory, booked, notifier):
        _schedule(session_factory, booked)
        counts = process_due_reminders(session_factory, notifier, now=datetime(2025, 3, 10, 10, 0))
        assert counts == {"sent": 0, "failed": 0}

    def test_patient_without_email_fails(self, session_factory, add_appointment, clinic, notifier):
        code = add_appointment(1, MONDAY, "11:00", phone="+31 6 5555 0002")
        _schedule(session_factory, code)
        counts = process_due_reminders(session_factory, notifier, now=DAY_BEFORE)
        assert counts == {"sent": 0, "failed": 1}
        assert _statuses(session_factory, code)[0] == (1440, "failed", "patient has no email")

    def test_unsupported_channel_fails(self, session_factory, booked, notifier):
        with session_scope(session_factory) as session:
            Storage(session).get_settings().reminder_channels = ["sms"]
        _schedule(session_factory, booked)
        process_due_reminders(session_factory, notifier, now=DAY_BEFORE)
        assert _statuses(session_factory, booked)[0] == (1440, "failed", "unsupported channel: sms")
        notifier.send_reminder.assert_not_called()

    def test_delivery_error_is_recorded(self, session_factory, booked, notifier):
        notifier.send_reminder.side_effect = EmailDeliveryError("throttled")
        _schedule(session_factory, booked)
        assert process_due_reminders(session_factory, notifier, now=DAY_BEFORE)["failed"] == 1
        assert _statuses(session_factory, booked)[0] == (1440, "failed", "throttled")

    def test_unconfigured_email_fails(self, session_factory, booked, notifier):
        notifier.send_reminder.return_value = False
        _schedule(session_factory, booked)
        process_due_reminders(session_factory, notifier, now=DAY_BEFORE)
        assert _statuses(session_factory, booked)[0][2] == "email service not configured"


class TestReminderScheduler:
    def test_run_once_uses_clock(self, session_factory, booked, notifier):
        _schedule(session_factory, booked)
        scheduler = ReminderScheduler(
            session_factory, notifier, now_fn=lambda: datetime(2025, 3, 10, 8, 30, tzinfo=UTC),
        )
        assert scheduler.run_once() == {"sent": 2, "failed": 0}

    def test_start_and_stop(self, session_factory, clinic, notifier):
        scheduler = ReminderScheduler(session_factory, notifier, interval_seconds=60)
        scheduler.start()
        assert scheduler.running
        scheduler.stop()
        assert not scheduler.running
