"""Query layer over the ORM models.

``Storage`` wraps one SQLAlchemy ``Session`` and exposes exactly the query
shapes the scheduling core needs (by doctor, by day, by reference code, by
phone, by email).  It never commits; callers own the transaction through
``dental_agent.db.session_scope``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dental_agent.config import DEFAULT_TIMEZONE
from dental_agent.errors import ReferenceCodeExhaustedError
from dental_agent.models import (
    Appointment,
    AppointmentReminder,
    AppointmentStatus,
    BlockedPeriod,
    ChatMessage,
    ChatSession,
    ClinicSettings,
    Doctor,
    Patient,
    ReminderStatus,
)

logger = logging.getLogger(__name__)

MAX_REFERENCE_ATTEMPTS = 10


class Storage:
    """Repository bound to a single session."""

    def __init__(self, session: Session):
        self.session = session

    # ── Clinic settings ──────────────────────────────────────────────

    def get_settings(self) -> ClinicSettings:
        """Return the singleton settings row, creating defaults on first use."""
        settings = self.session.scalars(select(ClinicSettings).order_by(ClinicSettings.id)).first()
        if settings is None:
            settings = ClinicSettings(timezone=DEFAULT_TIMEZONE)
            self.session.add(settings)
            self.session.flush()
            logger.info("Created default clinic settings (timezone=%s)", settings.timezone)
        return settings

    # ── Doctors ──────────────────────────────────────────────────────

    def list_active_doctors(self) -> list[Doctor]:
        stmt = select(Doctor).where(Doctor.is_active.is_(True)).order_by(Doctor.id)
        return list(self.session.scalars(stmt))

    def get_doctor(self, doctor_id: int, *, for_update: bool = False) -> Doctor | None:
        """Fetch a doctor; ``for_update`` takes a row lock where supported."""
        stmt = select(Doctor).where(Doctor.id == doctor_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).first()

    def blocked_periods_for(self, doctor_id: int, day: date) -> list[BlockedPeriod]:
        stmt = (
            select(BlockedPeriod)
            .where(
                BlockedPeriod.doctor_id == doctor_id,
                BlockedPeriod.date == day.isoformat(),
                BlockedPeriod.is_available.is_(False),
            )
            .order_by(BlockedPeriod.start_time)
        )
        return list(self.session.scalars(stmt))

    # ── Appointments ─────────────────────────────────────────────────

    def active_appointments_between(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[Appointment]:
        """Non-cancelled appointments for *doctor_id* starting in ``[start, end)``."""
        stmt = select(Appointment).where(
            Appointment.doctor_id == doctor_id,
            Appointment.status != AppointmentStatus.CANCELLED.value,
            Appointment.date >= start,
            Appointment.date < end,
        )
        if exclude_id is not None:
            stmt = stmt.where(Appointment.id != exclude_id)
        return list(self.session.scalars(stmt.order_by(Appointment.date)))

    def get_appointment_by_reference(self, reference_code: str) -> Appointment | None:
        code = reference_code.strip().upper()
        stmt = select(Appointment).where(func.upper(Appointment.reference_code) == code)
        return self.session.scalars(stmt).first()

    def create_appointment(
        self,
        code_factory: Callable[[], str],
        **fields: Any,
    ) -> Appointment:
        """Insert an appointment under a fresh reference code.

        Each attempt runs in a SAVEPOINT so a unique-index violation on
        ``reference_code`` only discards that attempt.
        """
        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            code = code_factory()
            try:
                with self.session.begin_nested():
                    appointment = Appointment(reference_code=code, **fields)
                    self.session.add(appointment)
                    self.session.flush()
                return appointment
            except IntegrityError:
                logger.warning("Reference code collision on %s (attempt %d)", code, attempt)
        raise ReferenceCodeExhaustedError(
            "We could not generate a booking reference right now. Please try again."
        )

    # ── Patients ─────────────────────────────────────────────────────

    def get_patient_by_phone(self, phone: str) -> Patient | None:
        return self.session.scalars(select(Patient).where(Patient.phone == phone)).first()

    def get_patient_by_email(self, email: str) -> Patient | None:
        stmt = (
            select(Patient)
            .where(func.lower(Patient.email) == email.strip().lower())
            .order_by(Patient.id)
        )
        return self.session.scalars(stmt).first()

    def create_patient(self, name: str, phone: str, email: str | None = None) -> Patient:
        patient = Patient(name=name, phone=phone, email=email)
        self.session.add(patient)
        self.session.flush()
        return patient

    # ── Chat history ─────────────────────────────────────────────────

    def get_chat_session(self, session_id: str) -> ChatSession | None:
        stmt = select(ChatSession).where(ChatSession.session_id == session_id)
        return self.session.scalars(stmt).first()

    def ensure_chat_session(self, session_id: str, language: str, source: str) -> ChatSession:
        chat = self.get_chat_session(session_id)
        if chat is None:
            chat = ChatSession(session_id=session_id, language=language, source=source)
            self.session.add(chat)
            self.session.flush()
        elif chat.language != language:
            chat.language = language
        return chat

    def add_chat_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        message = ChatMessage(session_id=session_id, role=role, content=content)
        self.session.add(message)
        self.session.flush()
        return message

    def recent_chat_messages(self, session_id: str, limit: int) -> list[ChatMessage]:
        """Last *limit* messages, oldest first."""
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.id.desc())
            .limit(limit)
        )
        return list(reversed(list(self.session.scalars(stmt))))

    # ── Reminders ────────────────────────────────────────────────────

    def add_reminder(self, appointment_id: int, offset_minutes: int, channel: str) -> AppointmentReminder:
        reminder = AppointmentReminder(
            appointment_id=appointment_id, offset_minutes=offset_minutes, channel=channel,
        )
        self.session.add(reminder)
        return reminder

    def reminders_for(self, appointment_id: int) -> list[AppointmentReminder]:
        stmt = select(AppointmentReminder).where(AppointmentReminder.appointment_id == appointment_id)
        return list(self.session.scalars(stmt.order_by(AppointmentReminder.id)))

    def delete_reminders_for(self, appointment_id: int) -> int:
        reminders = self.reminders_for(appointment_id)
        for reminder in reminders:
            self.session.delete(reminder)
        self.session.flush()
        return len(reminders)

    def pending_reminders_for_upcoming(self, now: datetime) -> list[AppointmentReminder]:
        """Pending reminders attached to scheduled appointments after *now*."""
        stmt = (
            select(AppointmentReminder)
            .join(Appointment, AppointmentReminder.appointment_id == Appointment.id)
            .where(
                AppointmentReminder.status == ReminderStatus.PENDING.value,
                Appointment.status == AppointmentStatus.SCHEDULED.value,
                Appointment.date > now,
            )
            .order_by(Appointment.date, AppointmentReminder.offset_minutes.desc())
        )
        return list(self.session.scalars(stmt))
