"""ORM models for doctors, patients, appointments and chat history.

Conventions:
  * ``Appointment.date`` is an absolute instant stored as naive UTC.
  * ``BlockedPeriod.date`` is a clinic-local calendar day (``YYYY-MM-DD``)
    and its start/end are clinic-local ``HH:MM`` strings.
  * Working days use Python weekday numbers (0 = Monday).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class AppointmentStatus(StrEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentType(StrEnum):
    SCHEDULED = "scheduled"
    WALK_IN = "walk-in"


class TimePeriod(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class ReminderStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


DEFAULT_SERVICES = [
    "General Checkup",
    "Teeth Cleaning",
    "Fillings",
    "Root Canal",
    "Teeth Whitening",
    "Orthodontics",
]


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str | None] = mapped_column(String(320))
    phone: Mapped[str | None] = mapped_column(String(50))
    specialty: Mapped[str] = mapped_column(String(200), default="General Dentistry")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Overrides of the clinic hours; None means "inherit"
    open_time: Mapped[str | None] = mapped_column(String(5))
    close_time: Mapped[str | None] = mapped_column(String(5))
    google_calendar_id: Mapped[str | None] = mapped_column(String(320))
    google_refresh_token: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now)

    appointments: Mapped[list[Appointment]] = relationship(back_populates="doctor")
    blocked_periods: Mapped[list[BlockedPeriod]] = relationship(back_populates="doctor")


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    phone: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), index=True)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now)

    appointments: Mapped[list[Appointment]] = relationship(
        back_populates="patient", cascade="all, delete-orphan",
    )


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_doctor_date", "doctor_id", "date"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    doctor_id: Mapped[int | None] = mapped_column(ForeignKey("doctors.id"))
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"))
    date: Mapped[datetime] = mapped_column(DateTime)
    duration: Mapped[int] = mapped_column(Integer, default=30)
    status: Mapped[str] = mapped_column(String(20), default=AppointmentStatus.SCHEDULED.value)
    service: Mapped[str] = mapped_column(String(200))
    notes: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(30), default="chat")
    reference_code: Mapped[str] = mapped_column(String(8), unique=True, index=True)
    google_event_id: Mapped[str | None] = mapped_column(String(200))
    appointment_type: Mapped[str] = mapped_column(String(20), default=AppointmentType.SCHEDULED.value)
    time_period: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now)

    doctor: Mapped[Doctor | None] = relationship(back_populates="appointments")
    patient: Mapped[Patient] = relationship(back_populates="appointments")
    reminders: Mapped[list[AppointmentReminder]] = relationship(
        back_populates="appointment", cascade="all, delete-orphan",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED


class BlockedPeriod(Base):
    __tablename__ = "doctor_availability"
    __table_args__ = (Index("ix_doctor_availability_doctor_date", "doctor_id", "date"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"))
    date: Mapped[str] = mapped_column(String(10))
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    is_available: Mapped[bool] = mapped_column(Boolean, default=False)
    reason: Mapped[str | None] = mapped_column(Text)

    doctor: Mapped[Doctor] = relationship(back_populates="blocked_periods")


class ClinicSettings(Base):
    __tablename__ = "clinic_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    clinic_name: Mapped[str] = mapped_column(String(200), default="Dental Clinic")
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(50))
    email: Mapped[str | None] = mapped_column(String(320))
    appointment_duration: Mapped[int] = mapped_column(Integer, default=30)
    working_days: Mapped[list[int]] = mapped_column(JSON, default=lambda: [0, 1, 2, 3, 4])
    open_time: Mapped[str] = mapped_column(String(5), default="09:00")
    close_time: Mapped[str] = mapped_column(String(5), default="17:00")
    timezone: Mapped[str] = mapped_column(String(64), default="Europe/Amsterdam")
    services: Mapped[list[str]] = mapped_column(JSON, default=lambda: list(DEFAULT_SERVICES))
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    reminder_offsets: Mapped[list[int]] = mapped_column(JSON, default=lambda: [1440, 60])
    reminder_channels: Mapped[list[str]] = mapped_column(JSON, default=lambda: ["email"])


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("patients.id"))
    language: Mapped[str] = mapped_column(String(8), default="en")
    source: Mapped[str] = mapped_column(String(30), default="chat")
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_naive_now, onupdate=_utc_naive_now,
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(100), index=True)
    role: Mapped[str] = mapped_column(String(20))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now)


class AppointmentReminder(Base):
    __tablename__ = "appointment_reminders"

    id: Mapped[int] = mapped_column(primary_key=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), index=True)
    offset_minutes: Mapped[int] = mapped_column(Integer)
    channel: Mapped[str] = mapped_column(String(20), default="email")
    status: Mapped[str] = mapped_column(String(20), default=ReminderStatus.PENDING.value)
    error: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now)

    appointment: Mapped[Appointment] = relationship(back_populates="reminders")
