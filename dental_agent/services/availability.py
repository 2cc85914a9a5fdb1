"""Free-slot computation for doctors.

Every entry point re-reads blocked periods and appointments through
``Storage``; nothing is cached between calls, so a slot booked by another
request is visible immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from dental_agent.config import EMERGENCY_BUFFER_MINUTES, SLOT_GRANULARITY_MINUTES
from dental_agent.models import BlockedPeriod, ClinicSettings, Doctor
from dental_agent.services.clock import ClinicClock, format_minutes, parse_hhmm
from dental_agent.services.conflicts import Interval, first_overlap, is_working_day
from dental_agent.storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class DayAvailability:
    doctor_id: int
    day: date
    working_day: bool
    slots: list[str] = field(default_factory=list)
    blocked_periods: list[str] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return bool(self.slots)


@dataclass(frozen=True)
class SlotCandidate:
    day: date
    time: str

    def to_dict(self) -> dict[str, str]:
        return {"date": self.day.isoformat(), "time": self.time}


@dataclass
class EmergencySlot:
    """Outcome of the emergency search; ``reason`` is set only on failure."""

    found: bool
    doctor_id: int | None = None
    doctor_name: str | None = None
    day: date | None = None
    time: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.found:
            return {"found": False, "reason": self.reason}
        return {
            "found": True,
            "doctor_id": self.doctor_id,
            "doctor_name": self.doctor_name,
            "date": self.day.isoformat(),
            "time": self.time,
        }


def describe_block(block: BlockedPeriod) -> str:
    text = f"{block.start_time} - {block.end_time}"
    return f"{text} ({block.reason})" if block.reason else text


def block_interval(block: BlockedPeriod) -> Interval | None:
    try:
        return Interval(parse_hhmm(block.start_time), parse_hhmm(block.end_time))
    except ValueError:
        logger.warning("Ignoring malformed blocked period id=%s (%s-%s)",
                       block.id, block.start_time, block.end_time)
        return None


class AvailabilityCalculator:
    """Slot search over one database session and one clinic clock."""

    def __init__(self, storage: Storage, clock: ClinicClock, settings: ClinicSettings):
        self.storage = storage
        self.clock = clock
        self.settings = settings

    @classmethod
    def from_storage(
        cls,
        storage: Storage,
        now_fn: Callable[[], datetime] | None = None,
    ) -> AvailabilityCalculator:
        settings = storage.get_settings()
        return cls(storage, ClinicClock(settings.timezone, now_fn), settings)

    # ── Clinic envelope ──────────────────────────────────────────────

    @property
    def duration(self) -> int:
        return self.settings.appointment_duration or 30

    def hours_for(self, doctor: Doctor | None) -> tuple[int, int]:
        """(open, close) minutes; doctor overrides win over clinic hours."""
        open_time = (doctor.open_time if doctor else None) or self.settings.open_time
        close_time = (doctor.close_time if doctor else None) or self.settings.close_time
        return parse_hhmm(open_time), parse_hhmm(close_time)

    def is_working_day(self, day: date) -> bool:
        return is_working_day(day, self.settings.working_days or [])

    # ── Busy intervals ───────────────────────────────────────────────

    def blocked_intervals(self, doctor_id: int, day: date) -> list[Interval]:
        intervals = (block_interval(b) for b in self.storage.blocked_periods_for(doctor_id, day))
        return [i for i in intervals if i is not None]

    def booked_intervals(self, doctor_id: int, day: date, exclude_id: int | None = None) -> list[Interval]:
        start, end = self.clock.day_bounds_utc(day)
        intervals = []
        for appointment in self.storage.active_appointments_between(
            doctor_id, start, end, exclude_id=exclude_id,
        ):
            _, minutes = self.clock.to_local(appointment.date)
            intervals.append(Interval.of(minutes, appointment.duration))
        return intervals

    # ── Slot search ──────────────────────────────────────────────────

    def compute_free_slots(
        self,
        doctor_id: int,
        day: date,
        open_minutes: int,
        close_minutes: int,
        slot_duration: int,
        exclude_id: int | None = None,
    ) -> list[int]:
        """Start minutes of every free slot on *day*, ascending.

        Candidates step by ``SLOT_GRANULARITY_MINUTES`` from opening while
        the slot still ends by closing time.
        """
        busy = self.blocked_intervals(doctor_id, day) + self.booked_intervals(
            doctor_id, day, exclude_id=exclude_id,
        )
        free = []
        start = open_minutes
        while start + slot_duration <= close_minutes:
            if first_overlap(Interval.of(start, slot_duration), busy) is None:
                free.append(start)
            start += SLOT_GRANULARITY_MINUTES
        return free

    def free_slots_for(self, doctor: Doctor | int, day: date, exclude_id: int | None = None) -> list[int]:
        """Free slots on a working day using the doctor's hours, minus past starts."""
        if not self.is_working_day(day):
            return []
        if isinstance(doctor, int):
            doctor = self.storage.get_doctor(doctor)
            if doctor is None:
                return []
        open_minutes, close_minutes = self.hours_for(doctor)
        slots = self.compute_free_slots(
            doctor.id, day, open_minutes, close_minutes, self.duration, exclude_id=exclude_id,
        )
        if day == self.clock.today():
            now = self.clock.minutes_now()
            slots = [s for s in slots if s > now]
        return slots

    def check_availability(self, doctor_id: int, day: date) -> DayAvailability:
        working = self.is_working_day(day)
        result = DayAvailability(doctor_id=doctor_id, day=day, working_day=working)
        if not working:
            return result
        result.blocked_periods = [
            describe_block(b) for b in self.storage.blocked_periods_for(doctor_id, day)
        ]
        if day < self.clock.today():
            return result
        result.slots = [format_minutes(m) for m in self.free_slots_for(doctor_id, day)]
        return result

    def find_next_slots(
        self,
        doctor_id: int,
        start_day: date,
        max_candidates: int = 3,
        search_horizon_days: int = 7,
        exclude_id: int | None = None,
    ) -> list[SlotCandidate]:
        """Earliest free slots from *start_day* onward, across days."""
        doctor = self.storage.get_doctor(doctor_id)
        if doctor is None:
            return []
        today = self.clock.today()
        candidates: list[SlotCandidate] = []
        for offset in range(search_horizon_days + 1):
            day = start_day + timedelta(days=offset)
            if day < today:
                continue
            for minutes in self.free_slots_for(doctor, day, exclude_id=exclude_id):
                candidates.append(SlotCandidate(day, format_minutes(minutes)))
                if len(candidates) >= max_candidates:
                    return candidates
        return candidates

    def find_emergency_slot(self) -> EmergencySlot:
        """Earliest free slot today across all active doctors.

        The search starts ``EMERGENCY_BUFFER_MINUTES`` from now, rounded up
        to the slot grid.  Doctors are visited in id order and only a
        strictly earlier slot replaces the current best, so the first doctor
        wins ties.
        """
        today = self.clock.today()
        if not self.is_working_day(today):
            return EmergencySlot(found=False, reason="not_working_day")

        doctors = self.storage.list_active_doctors()
        if not doctors:
            return EmergencySlot(found=False, reason="no_doctors")

        earliest = self.clock.minutes_now() + EMERGENCY_BUFFER_MINUTES
        earliest = -(-earliest // SLOT_GRANULARITY_MINUTES) * SLOT_GRANULARITY_MINUTES

        best: tuple[int, Doctor] | None = None
        any_open = False
        for doctor in doctors:
            open_minutes, close_minutes = self.hours_for(doctor)
            if max(earliest, open_minutes) + self.duration > close_minutes:
                continue
            any_open = True
            slots = self.compute_free_slots(
                doctor.id, today, open_minutes, close_minutes, self.duration,
            )
            slot = next((s for s in slots if s >= earliest), None)
            if slot is not None and (best is None or slot < best[0]):
                best = (slot, doctor)

        if best is None:
            return EmergencySlot(found=False, reason="fully_booked" if any_open else "clinic_closed")

        minutes, doctor = best
        logger.info("Emergency slot found: doctor=%s %s", doctor.id, format_minutes(minutes))
        return EmergencySlot(
            found=True,
            doctor_id=doctor.id,
            doctor_name=doctor.name,
            day=today,
            time=format_minutes(minutes),
        )
