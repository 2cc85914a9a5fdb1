"""Appointment reminders: one row per (offset, channel), sent by a poller.

Offsets and channels come from clinic settings (default: email 24 h and
1 h before).  A reminder is due once ``appointment.date - offset <= now``.
Only the ``email`` channel is delivered; any other channel is marked failed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session, sessionmaker

from dental_agent.config import REMINDER_INTERVAL_SECONDS
from dental_agent.db import session_scope
from dental_agent.errors import EmailDeliveryError
from dental_agent.models import Appointment, AppointmentReminder, ReminderStatus
from dental_agent.services.clock import ClinicClock, format_when
from dental_agent.services.notifications import AppointmentEmail, EmailNotifier
from dental_agent.storage import Storage

logger = logging.getLogger(__name__)


# ── Row management ───────────────────────────────────────────────────


def schedule_reminders(storage: Storage, appointment: Appointment) -> list[AppointmentReminder]:
    """Create reminder rows unless reminders are off or rows already exist."""
    settings = storage.get_settings()
    if not settings.reminder_enabled:
        return []
    if storage.reminders_for(appointment.id):
        return []
    created = [
        storage.add_reminder(appointment.id, offset, channel)
        for offset in settings.reminder_offsets or [1440, 60]
        for channel in settings.reminder_channels or ["email"]
    ]
    storage.session.flush()
    logger.debug("Scheduled %d reminders for appointment %s", len(created), appointment.id)
    return created


def reschedule_reminders(storage: Storage, appointment: Appointment) -> list[AppointmentReminder]:
    storage.delete_reminders_for(appointment.id)
    return schedule_reminders(storage, appointment)


def cancel_reminders(storage: Storage, appointment: Appointment) -> int:
    return storage.delete_reminders_for(appointment.id)


# ── Delivery ─────────────────────────────────────────────────────────


def _mark(reminder: AppointmentReminder, status: ReminderStatus, now: datetime, error: str | None = None):
    reminder.status = status.value
    reminder.error = error
    if status is ReminderStatus.SENT:
        reminder.sent_at = now


def _deliver(reminder: AppointmentReminder, notifier: EmailNotifier, clock: ClinicClock,
             clinic_name: str, now: datetime) -> None:
    appointment = reminder.appointment
    if reminder.channel != "email":
        _mark(reminder, ReminderStatus.FAILED, now, f"unsupported channel: {reminder.channel}")
        return
    patient = appointment.patient
    if not patient.email:
        _mark(reminder, ReminderStatus.FAILED, now, "patient has no email")
        return
    day, minutes = clock.to_local(appointment.date)
    email = AppointmentEmail(
        patient_email=patient.email,
        patient_name=patient.name,
        doctor_name=appointment.doctor.name if appointment.doctor else "our team",
        when=format_when(day, minutes),
        service=appointment.service,
        reference_code=appointment.reference_code,
        clinic_name=clinic_name,
        duration=appointment.duration,
    )
    try:
        sent = notifier.send_reminder(email)
    except EmailDeliveryError as exc:
        logger.warning("Reminder %s failed: %s", reminder.id, exc)
        _mark(reminder, ReminderStatus.FAILED, now, str(exc))
        return
    if sent:
        _mark(reminder, ReminderStatus.SENT, now)
        logger.info("Sent %s reminder %s for appointment %s", reminder.channel, reminder.id, appointment.id)
    else:
        _mark(reminder, ReminderStatus.FAILED, now, "email service not configured")


def process_due_reminders(
    session_factory: sessionmaker[Session],
    notifier: EmailNotifier,
    now: datetime | None = None,
) -> dict[str, int]:
    """Send every due reminder once.  Returns ``{"sent": n, "failed": m}``.

    *now* is naive UTC.
    """
    now = now or datetime.now(UTC).replace(tzinfo=None)
    counts = {"sent": 0, "failed": 0}
    with session_scope(session_factory) as session:
        storage = Storage(session)
        settings = storage.get_settings()
        if not settings.reminder_enabled:
            return counts
        clock = ClinicClock(settings.timezone)
        for reminder in storage.pending_reminders_for_upcoming(now):
            due_at = reminder.appointment.date - timedelta(minutes=reminder.offset_minutes)
            if due_at > now:
                continue
            _deliver(reminder, notifier, clock, settings.clinic_name, now)
            counts["sent" if reminder.status == ReminderStatus.SENT.value else "failed"] += 1
    if counts["sent"] or counts["failed"]:
        logger.info("Reminder cycle: %(sent)d sent, %(failed)d failed", counts)
    return counts


# ── Background poller ────────────────────────────────────────────────


class ReminderScheduler:
    """Daemon thread that runs ``process_due_reminders`` every interval."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier: EmailNotifier,
        interval_seconds: int = REMINDER_INTERVAL_SECONDS,
        now_fn: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._interval = interval_seconds
        self._now_fn = now_fn
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict[str, int]:
        now = self._now_fn().astimezone(UTC).replace(tzinfo=None) if self._now_fn else None
        return process_due_reminders(self._session_factory, self._notifier, now=now)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()

        def _loop():
            while not self._stop.is_set():
                try:
                    self.run_once()
                except Exception:
                    logger.exception("Reminder cycle failed")
                self._stop.wait(self._interval)

        self._thread = threading.Thread(target=_loop, daemon=True, name="reminders")
        self._thread.start()
        logger.info("Reminder scheduler started (interval=%ds)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("Reminder scheduler stopped")
