"""Booking, walk-in, lookup, cancel and reschedule operations.

Every write re-validates its preconditions against fresh data, whatever
the conversation "remembers".  ``book_appointment`` checks, in order:

  1. identity plausibility (name, phone, optional email) and doctor exists
  2. the slot is not in the past (no buffer)
  3. the slot fits the opening hours on a working day
  4. no blocked period of the doctor touches the slot
  5. no other live appointment of the doctor overlaps; on conflict the
     error carries up to three alternative slots

Step 5 runs a second time inside the commit transaction after the doctor
row is locked, so the earlier ``check_availability`` call is only ever
advisory.  Calendar, email and reminder follow-ups are dispatched after
commit and cannot fail the booking.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from dental_agent.db import session_scope
from dental_agent.errors import (
    AlreadyCancelledError,
    MissingInfoError,
    SchedulingError,
    SlotUnavailableError,
    VerificationError,
)
from dental_agent.models import Appointment, AppointmentStatus, AppointmentType, Doctor, Patient, TimePeriod
from dental_agent.services.availability import AvailabilityCalculator
from dental_agent.services.clock import format_minutes, parse_day, parse_hhmm
from dental_agent.services.conflicts import Interval, first_overlap, outside_envelope
from dental_agent.services.reference_codes import generate_reference_code, is_well_formed, normalize_reference_code
from dental_agent.services.side_effects import BookingSideEffects, InlineDispatcher
from dental_agent.services.validation import (
    PHONE_SUFFIX_LENGTH,
    phone_suffix,
    validate_email,
    validate_identity,
)
from dental_agent.storage import Storage

logger = logging.getLogger(__name__)

# Representative start time and latest arrival per walk-in period
WALK_IN_PERIODS: dict[str, tuple[str, str]] = {
    TimePeriod.MORNING.value: ("10:00", "12:00"),
    TimePeriod.AFTERNOON.value: ("14:00", "17:00"),
    TimePeriod.EVENING.value: ("18:00", "21:00"),
}


@dataclass
class BookingResult:
    """Returned to the model after a successful book / walk-in / reschedule."""

    success: bool
    appointment_id: int
    reference_code: str
    patient_name: str
    doctor_name: str | None
    date: str
    time: str
    service: str
    appointment_type: str = AppointmentType.SCHEDULED.value
    time_period: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_slot(day: str | date, time: str | None = None) -> tuple[date, int | None]:
    try:
        parsed_day = day if isinstance(day, date) else parse_day(day)
    except (TypeError, ValueError):
        raise MissingInfoError(f"{day!r} is not a valid date. Use the format YYYY-MM-DD.") from None
    if time is None:
        return parsed_day, None
    try:
        return parsed_day, parse_hhmm(time)
    except (AttributeError, ValueError):
        raise MissingInfoError(f"{time!r} is not a valid time. Use the format HH:MM.") from None


def _period_for(minutes: int) -> str:
    if minutes < 12 * 60:
        return TimePeriod.MORNING.value
    if minutes < 17 * 60:
        return TimePeriod.AFTERNOON.value
    return TimePeriod.EVENING.value


class BookingService:
    """Scheduling writes, each in its own short transaction."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        dispatcher=None,
        side_effects: BookingSideEffects | None = None,
        now_fn: Callable[[], datetime] | None = None,
        code_factory: Callable[[], str] = generate_reference_code,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher or InlineDispatcher()
        self._side_effects = side_effects
        self._now_fn = now_fn
        self._code_factory = code_factory

    def _dispatch(self, hook: str, *args: Any) -> None:
        if self._side_effects is None:
            return
        self._dispatcher.submit(getattr(self._side_effects, hook), *args)

    # ── Slot checks ──────────────────────────────────────────────────

    def _check_not_past(self, calc: AvailabilityCalculator, day: date, minutes: int) -> None:
        today = calc.clock.today()
        if day < today:
            raise SlotUnavailableError(f"{day.isoformat()} is in the past. Please choose a future date.")
        if calc.clock.is_past(day, minutes):
            raise SlotUnavailableError(
                f"{format_minutes(minutes)} today has already passed. Please choose a later time or another day."
            )

    def _check_envelope(self, calc: AvailabilityCalculator, doctor: Doctor | None, day: date, minutes: int) -> None:
        open_minutes, close_minutes = calc.hours_for(doctor)
        if outside_envelope(Interval.of(minutes, calc.duration), open_minutes, close_minutes):
            raise SlotUnavailableError(
                f"{format_minutes(minutes)} is outside opening hours "
                f"({format_minutes(open_minutes)}-{format_minutes(close_minutes)})."
            )
        if not calc.is_working_day(day):
            raise SlotUnavailableError(f"The clinic is closed on {day:%A}s. Please choose a working day.")

    def _check_blocks(self, calc: AvailabilityCalculator, doctor: Doctor, day: date, minutes: int) -> None:
        block = first_overlap(Interval.of(minutes, calc.duration), calc.blocked_intervals(doctor.id, day))
        if block is not None:
            raise SlotUnavailableError(
                f"{doctor.name} is not available between {format_minutes(block.start)} "
                f"and {format_minutes(block.end)} on {day.isoformat()}."
            )

    def _check_peer_conflict(
        self,
        calc: AvailabilityCalculator,
        doctor: Doctor,
        day: date,
        minutes: int,
        exclude_id: int | None = None,
    ) -> None:
        booked = calc.booked_intervals(doctor.id, day, exclude_id=exclude_id)
        if first_overlap(Interval.of(minutes, calc.duration), booked) is None:
            return
        alternatives = calc.find_next_slots(doctor.id, day, max_candidates=3, exclude_id=exclude_id)
        logger.info(
            "Slot conflict doctor=%s %s %s; offering %d alternatives",
            doctor.id, day, format_minutes(minutes), len(alternatives),
        )
        raise SlotUnavailableError(
            f"{format_minutes(minutes)} on {day.isoformat()} is already booked with {doctor.name}.",
            alternatives=[a.to_dict() for a in alternatives],
        )

    def _validate_slot(
        self,
        calc: AvailabilityCalculator,
        doctor: Doctor,
        day: date,
        minutes: int,
        exclude_id: int | None = None,
    ) -> None:
        self._check_not_past(calc, day, minutes)
        self._check_envelope(calc, doctor, day, minutes)
        self._check_blocks(calc, doctor, day, minutes)
        self._check_peer_conflict(calc, doctor, day, minutes, exclude_id=exclude_id)

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _bookable_doctor(storage: Storage, doctor_id: int | None, *, for_update: bool = False) -> Doctor:
        doctor = storage.get_doctor(doctor_id, for_update=for_update) if doctor_id is not None else None
        if doctor is None or not doctor.is_active:
            raise SlotUnavailableError(
                f"Doctor {doctor_id} is not available for booking. Please choose one of our listed doctors."
            )
        return doctor

    @staticmethod
    def _find_or_create_patient(storage: Storage, name: str, phone: str, email: str | None) -> Patient:
        patient = storage.get_patient_by_phone(phone)
        if patient is None:
            return storage.create_patient(name=name, phone=phone, email=email)
        if email and not patient.email:
            patient.email = email
        return patient

    @staticmethod
    def _verify(storage: Storage, reference_code: str, phone: str) -> Appointment:
        """Two-factor check; the same vague error covers every failure."""
        code = normalize_reference_code(reference_code)
        appointment = storage.get_appointment_by_reference(code) if is_well_formed(code) else None
        suffix = phone_suffix(phone)
        if (
            appointment is None
            or len(suffix) < PHONE_SUFFIX_LENGTH
            or suffix != phone_suffix(appointment.patient.phone)
        ):
            logger.info("Verification failed for reference %r", reference_code)
            raise VerificationError()
        return appointment

    def _result(self, calc: AvailabilityCalculator, appointment: Appointment) -> BookingResult:
        day, minutes = calc.clock.to_local(appointment.date)
        return BookingResult(
            success=True,
            appointment_id=appointment.id,
            reference_code=appointment.reference_code,
            patient_name=appointment.patient.name,
            doctor_name=appointment.doctor.name if appointment.doctor else None,
            date=day.isoformat(),
            time=format_minutes(minutes),
            service=appointment.service,
            appointment_type=appointment.appointment_type,
            time_period=appointment.time_period,
        )

    def snapshot(self, calc: AvailabilityCalculator, appointment: Appointment) -> dict[str, Any]:
        day, minutes = calc.clock.to_local(appointment.date)
        return {
            "reference_code": appointment.reference_code,
            "status": appointment.status,
            "patient_name": appointment.patient.name,
            "doctor_name": appointment.doctor.name if appointment.doctor else None,
            "date": day.isoformat(),
            "time": format_minutes(minutes),
            "service": appointment.service,
            "duration": appointment.duration,
            "appointment_type": appointment.appointment_type,
            "time_period": appointment.time_period,
        }

    # ── Operations ───────────────────────────────────────────────────

    def book_appointment(
        self,
        patient_name: str,
        patient_phone: str,
        service: str,
        doctor_id: int,
        day: str | date,
        time: str,
        patient_email: str | None = None,
        notes: str | None = None,
        source: str = "chat",
    ) -> BookingResult:
        validate_identity(patient_name, patient_phone, patient_email)
        if not (service or "").strip():
            raise MissingInfoError("The service is missing. Please ask which treatment the patient needs.")
        parsed_day, minutes = parse_slot(day, time)

        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            calc = AvailabilityCalculator.from_storage(storage, self._now_fn)
            doctor = self._bookable_doctor(storage, doctor_id)
            self._validate_slot(calc, doctor, parsed_day, minutes)

            # Commit phase: serialise on the doctor row, then re-check peers
            doctor = self._bookable_doctor(storage, doctor.id, for_update=True)
            self._check_peer_conflict(calc, doctor, parsed_day, minutes)
            patient = self._find_or_create_patient(
                storage, patient_name.strip(), patient_phone.strip(), (patient_email or "").strip() or None,
            )
            appointment = storage.create_appointment(
                self._code_factory,
                doctor_id=doctor.id,
                patient_id=patient.id,
                date=calc.clock.to_utc(parsed_day, minutes),
                duration=calc.duration,
                status=AppointmentStatus.SCHEDULED.value,
                service=service.strip(),
                notes=notes,
                source=source,
                appointment_type=AppointmentType.SCHEDULED.value,
            )
            result = self._result(calc, appointment)

        logger.info(
            "Booked %s: doctor=%s %s %s", result.reference_code, doctor.id, result.date, result.time,
        )
        self._dispatch("on_booked", result.appointment_id)
        return result

    def book_walk_in(
        self,
        patient_name: str,
        patient_phone: str,
        service: str,
        day: str | date,
        period: str,
        patient_email: str | None = None,
        notes: str | None = None,
        source: str = "chat",
    ) -> BookingResult:
        """Unassigned visit in a coarse period.

        The period's representative time must fit the clinic's opening hours
        on a working day; blocked-period and conflict checks do not apply.
        """
        validate_identity(patient_name, patient_phone, patient_email)
        period = (period or "").strip().lower()
        if period not in WALK_IN_PERIODS:
            raise MissingInfoError("Please choose a period: morning, afternoon or evening.")
        parsed_day, _ = parse_slot(day)
        start, latest = (parse_hhmm(t) for t in WALK_IN_PERIODS[period])

        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            calc = AvailabilityCalculator.from_storage(storage, self._now_fn)
            today = calc.clock.today()
            if parsed_day < today:
                raise SlotUnavailableError(f"{parsed_day.isoformat()} is in the past. Please choose a future date.")
            if parsed_day == today and calc.clock.minutes_now() >= latest:
                raise SlotUnavailableError(f"The {period} walk-in period has already ended today.")
            self._check_envelope(calc, None, parsed_day, start)

            patient = self._find_or_create_patient(
                storage, patient_name.strip(), patient_phone.strip(), (patient_email or "").strip() or None,
            )
            appointment = storage.create_appointment(
                self._code_factory,
                doctor_id=None,
                patient_id=patient.id,
                date=calc.clock.to_utc(parsed_day, start),
                duration=calc.duration,
                status=AppointmentStatus.SCHEDULED.value,
                service=(service or "").strip() or "General Checkup",
                notes=notes,
                source=source,
                appointment_type=AppointmentType.WALK_IN.value,
                time_period=period,
            )
            result = self._result(calc, appointment)

        logger.info("Booked walk-in %s: %s %s", result.reference_code, result.date, period)
        self._dispatch("on_booked", result.appointment_id)
        return result

    def lookup_appointment(self, reference_code: str, phone: str) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            calc = AvailabilityCalculator.from_storage(storage, self._now_fn)
            appointment = self._verify(storage, reference_code, phone)
            return {"success": True, "appointment": self.snapshot(calc, appointment)}

    def cancel_appointment(self, reference_code: str, phone: str) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            calc = AvailabilityCalculator.from_storage(storage, self._now_fn)
            appointment = self._verify(storage, reference_code, phone)
            if appointment.is_cancelled:
                raise AlreadyCancelledError("This appointment was already cancelled. Nothing was changed.")
            if appointment.status == AppointmentStatus.COMPLETED:
                raise SchedulingError("This appointment has already taken place and cannot be cancelled.")
            appointment.status = AppointmentStatus.CANCELLED.value
            snapshot = self.snapshot(calc, appointment)
            appointment_id = appointment.id

        logger.info("Cancelled %s", snapshot["reference_code"])
        self._dispatch("on_cancelled", appointment_id)
        return {"success": True, "appointment": snapshot}

    def reschedule_appointment(
        self,
        reference_code: str,
        phone: str,
        new_day: str | date,
        new_time: str,
    ) -> BookingResult:
        """Move a verified appointment; identity is not re-checked.

        Doctor appointments re-run the past, envelope, blocked-period and
        peer checks against the new slot, ignoring the appointment itself.
        Walk-ins only re-run the past and envelope checks.
        """
        parsed_day, minutes = parse_slot(new_day, new_time)

        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            calc = AvailabilityCalculator.from_storage(storage, self._now_fn)
            appointment = self._verify(storage, reference_code, phone)
            if appointment.is_cancelled:
                raise AlreadyCancelledError(
                    "This appointment was cancelled and cannot be rescheduled. Please book a new one."
                )
            if appointment.status == AppointmentStatus.COMPLETED:
                raise SchedulingError("This appointment has already taken place and cannot be rescheduled.")

            if appointment.doctor_id is None:
                self._check_not_past(calc, parsed_day, minutes)
                self._check_envelope(calc, None, parsed_day, minutes)
                appointment.time_period = _period_for(minutes)
            else:
                doctor = self._bookable_doctor(storage, appointment.doctor_id)
                self._validate_slot(calc, doctor, parsed_day, minutes, exclude_id=appointment.id)
                self._bookable_doctor(storage, doctor.id, for_update=True)
                self._check_peer_conflict(calc, doctor, parsed_day, minutes, exclude_id=appointment.id)

            previous_date = appointment.date
            old_event_id = appointment.google_event_id
            appointment.date = calc.clock.to_utc(parsed_day, minutes)
            result = self._result(calc, appointment)

        logger.info("Rescheduled %s to %s %s", result.reference_code, result.date, result.time)
        self._dispatch("on_rescheduled", result.appointment_id, previous_date, old_event_id)
        return result

    def lookup_patient_by_email(self, email: str) -> dict[str, Any]:
        error = validate_email(email)
        if error:
            raise MissingInfoError(error)
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            patient = storage.get_patient_by_email(email)
            if patient is None:
                return {
                    "found": False,
                    "message": "No patient found with this email. Collect their details as a new patient.",
                }
            return {
                "found": True,
                "patient_id": patient.id,
                "name": patient.name,
                "phone": patient.phone,
                "email": patient.email,
            }
