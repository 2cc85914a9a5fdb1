"""Fire-and-forget work that follows a committed booking change.

Calendar sync, patient emails and reminder rows run on a small thread pool
after the booking transaction has committed, each job in its own database
session.  Each channel is guarded separately, so a calendar or email
failure never costs the appointment its reminder rows.  Failures are logged
and never reach the patient.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from dental_agent.config import SIDE_EFFECT_WORKERS
from dental_agent.db import session_scope
from dental_agent.models import Appointment, ClinicSettings
from dental_agent.services.calendar_client import CalendarEvent, GoogleCalendarClient
from dental_agent.services.clock import ClinicClock, format_minutes, format_when
from dental_agent.services.notifications import AppointmentEmail, EmailNotifier
from dental_agent.services.reminders import cancel_reminders, reschedule_reminders, schedule_reminders
from dental_agent.storage import Storage

logger = logging.getLogger(__name__)


def _guarded(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("Background job %s failed", getattr(fn, "__name__", fn))


# ── Dispatchers ──────────────────────────────────────────────────────


class SideEffectDispatcher:
    """Runs jobs on a thread pool; exceptions are logged, never raised."""

    def __init__(self, max_workers: int = SIDE_EFFECT_WORKERS):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="side-effects")

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._executor.submit(_guarded, fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineDispatcher:
    """Runs jobs immediately in the caller's thread (CLI and tests)."""

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        _guarded(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        pass


# ── Booking follow-ups ───────────────────────────────────────────────


class BookingSideEffects:
    """Calendar, email and reminder follow-ups for one appointment id.

    ``calendar`` and ``notifier`` may be ``None`` to disable that channel.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        calendar: GoogleCalendarClient | None = None,
        notifier: EmailNotifier | None = None,
    ):
        self._session_factory = session_factory
        self._calendar = calendar
        self._notifier = notifier

    def on_booked(self, appointment_id: int) -> None:
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            appointment = session.get(Appointment, appointment_id)
            if appointment is None:
                logger.warning("on_booked: appointment %s vanished", appointment_id)
                return
            settings = storage.get_settings()
            self._push_calendar_event(appointment, settings)
            self._email(appointment, settings, "send_confirmation")
            schedule_reminders(storage, appointment)

    def on_rescheduled(self, appointment_id: int, previous_date: datetime, old_event_id: str | None) -> None:
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            appointment = session.get(Appointment, appointment_id)
            if appointment is None:
                logger.warning("on_rescheduled: appointment %s vanished", appointment_id)
                return
            settings = storage.get_settings()
            if old_event_id:
                self._delete_calendar_event(appointment, old_event_id)
                appointment.google_event_id = None
            self._push_calendar_event(appointment, settings)
            self._email(appointment, settings, "send_rescheduled", previous_date=previous_date)
            reschedule_reminders(storage, appointment)

    def on_cancelled(self, appointment_id: int) -> None:
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            appointment = session.get(Appointment, appointment_id)
            if appointment is None:
                logger.warning("on_cancelled: appointment %s vanished", appointment_id)
                return
            settings = storage.get_settings()
            if appointment.google_event_id:
                self._delete_calendar_event(appointment, appointment.google_event_id)
                appointment.google_event_id = None
            self._email(appointment, settings, "send_cancelled")
            cancel_reminders(storage, appointment)

    # ── Channels ─────────────────────────────────────────────────────

    def _push_calendar_event(self, appointment: Appointment, settings: ClinicSettings) -> None:
        doctor = appointment.doctor
        if self._calendar is None or doctor is None:
            return
        if not (doctor.google_refresh_token and doctor.google_calendar_id):
            logger.debug("Doctor %s has no linked calendar", doctor.id)
            return
        day, minutes = ClinicClock(settings.timezone).to_local(appointment.date)
        event = CalendarEvent(
            patient_name=appointment.patient.name,
            doctor_name=doctor.name,
            day=day,
            time=format_minutes(minutes),
            service=appointment.service,
            duration=appointment.duration,
            notes=appointment.notes,
        )
        try:
            appointment.google_event_id = self._calendar.create_event(
                doctor.google_refresh_token, doctor.google_calendar_id, event, settings.timezone,
            )
        except Exception:
            logger.exception("Calendar sync failed for appointment %s", appointment.id)

    def _delete_calendar_event(self, appointment: Appointment, event_id: str) -> None:
        doctor = appointment.doctor
        if self._calendar is None or doctor is None or not doctor.google_refresh_token:
            return
        try:
            self._calendar.delete_event(doctor.google_refresh_token, doctor.google_calendar_id, event_id)
        except Exception:
            logger.exception("Calendar delete failed for event %s", event_id)

    def _email(
        self,
        appointment: Appointment,
        settings: ClinicSettings,
        method: str,
        previous_date: datetime | None = None,
    ) -> None:
        patient = appointment.patient
        if self._notifier is None or not patient.email:
            return
        clock = ClinicClock(settings.timezone)
        previous_when = format_when(*clock.to_local(previous_date)) if previous_date else None
        email = AppointmentEmail(
            patient_email=patient.email,
            patient_name=patient.name,
            doctor_name=appointment.doctor.name if appointment.doctor else "our team",
            when=format_when(*clock.to_local(appointment.date)),
            service=appointment.service,
            reference_code=appointment.reference_code,
            clinic_name=settings.clinic_name,
            duration=appointment.duration,
            previous_when=previous_when,
        )
        try:
            getattr(self._notifier, method)(email)
        except Exception:
            logger.exception("Email %s failed for appointment %s", method, appointment.id)
