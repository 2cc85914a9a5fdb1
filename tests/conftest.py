"""Shared test fixtures for the dental booking assistant test suite."""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import UTC, date, datetime

import pytest

# Friday 7 March 2025, 09:00 in Europe/Amsterdam (UTC+1)
FROZEN_NOW = datetime(2025, 3, 7, 8, 0, tzinfo=UTC)
MONDAY = date(2025, 3, 10)


def frozen_now() -> datetime:
    return FROZEN_NOW


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ["METRICS_ENABLED"] = "false"


class NullSideEffects:
    """Follow-up hooks that do nothing; the dispatcher records their names."""

    def on_booked(self, appointment_id):
        pass

    def on_rescheduled(self, appointment_id, previous_date, old_event_id):
        pass

    def on_cancelled(self, appointment_id):
        pass


class RecordingDispatcher:
    """Collects side-effect jobs instead of running them."""

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []

    def submit(self, fn, *args, **kwargs):
        self.calls.append((fn.__name__, args))

    def shutdown(self, wait: bool = True) -> None:
        pass


@pytest.fixture
def db_engine(tmp_path):
    from dental_agent.db import build_engine, init_db

    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from dental_agent.db import build_session_factory

    return build_session_factory(db_engine)


@pytest.fixture
def clinic(session_factory):
    """Clinic open Mon-Fri 09:00-17:00 with two doctors (ids 1 and 2)."""
    from dental_agent.db import session_scope
    from dental_agent.models import ClinicSettings, Doctor

    with session_scope(session_factory) as session:
        session.add(ClinicSettings(
            clinic_name="Smile Dental",
            timezone="Europe/Amsterdam",
            open_time="09:00",
            close_time="17:00",
            working_days=[0, 1, 2, 3, 4],
            appointment_duration=30,
        ))
        session.add_all([
            Doctor(name="Sarah de Vries", specialty="General Dentistry"),
            Doctor(name="Mark Jansen", specialty="Orthodontics"),
        ])
    return {"doctor_ids": [1, 2]}


@pytest.fixture
def add_blocked_period(session_factory):
    """Factory fixture: block a doctor's time on a day."""
    from dental_agent.db import session_scope
    from dental_agent.models import BlockedPeriod

    def _add(doctor_id: int, day: date, start: str, end: str, reason: str | None = None):
        with session_scope(session_factory) as session:
            session.add(BlockedPeriod(
                doctor_id=doctor_id, date=day.isoformat(),
                start_time=start, end_time=end, reason=reason,
            ))

    return _add


@pytest.fixture
def add_appointment(session_factory):
    """Factory fixture: insert an appointment directly at a clinic-local slot."""
    from sqlalchemy import select

    from dental_agent.db import session_scope
    from dental_agent.models import Appointment, Patient
    from dental_agent.services.clock import ClinicClock, parse_hhmm
    from dental_agent.services.reference_codes import REFERENCE_ALPHABET

    counter = {"n": 0}

    def _add(
        doctor_id: int | None,
        day: date,
        time: str,
        status: str = "scheduled",
        phone: str = "+31 6 1122 3344",
        email: str | None = None,
        reference_code: str | None = None,
    ) -> str:
        counter["n"] += 1
        code = reference_code or "APT-TT" + "".join(
            REFERENCE_ALPHABET[digit] for digit in divmod(counter["n"], len(REFERENCE_ALPHABET))
        )
        clock = ClinicClock("Europe/Amsterdam")
        with session_scope(session_factory) as session:
            patient = session.scalars(select(Patient).where(Patient.phone == phone)).first()
            if patient is None:
                patient = Patient(name="Existing Patient", phone=phone, email=email)
                session.add(patient)
                session.flush()
            session.add(Appointment(
                doctor_id=doctor_id,
                patient_id=patient.id,
                date=clock.to_utc(day, parse_hhmm(time)),
                duration=30,
                status=status,
                service="General Checkup",
                reference_code=code,
            ))
        return code

    return _add


@pytest.fixture
def calculator(session_factory):
    """Context-manager factory yielding an ``AvailabilityCalculator``."""
    from dental_agent.db import session_scope
    from dental_agent.services.availability import AvailabilityCalculator
    from dental_agent.storage import Storage

    @contextmanager
    def _open(now: datetime = FROZEN_NOW):
        with session_scope(session_factory) as session:
            yield AvailabilityCalculator.from_storage(Storage(session), lambda: now)

    return _open


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def booking_service(session_factory, clinic, recording_dispatcher):
    from dental_agent.services.booking import BookingService

    return BookingService(
        session_factory,
        dispatcher=recording_dispatcher,
        side_effects=NullSideEffects(),
        now_fn=frozen_now,
    )
