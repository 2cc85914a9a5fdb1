"""Conversions between clinic wall-clock time and absolute instants.

All availability math works in clinic-local minutes since midnight.
Instants are persisted as naive UTC, so this module is the only place that
knows about time zones.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def parse_hhmm(value: str) -> int:
    """``"09:30"`` (or ``"09:30:00"``) → 570.  Raises ``ValueError`` if malformed."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """570 → ``"09:30"``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_when(day: date, minutes: int) -> str:
    """``"Monday 10 March 2025 at 10:00"``."""
    return f"{day:%A} {day.day} {day:%B %Y} at {format_minutes(minutes)}"


def parse_day(value: str) -> date:
    """``"2025-03-10"`` → ``date(2025, 3, 10)``.  Raises ``ValueError`` if malformed."""
    return date.fromisoformat(value.strip())


class ClinicClock:
    """Clinic-timezone view of "now" plus instant/wall-clock conversions.

    ``now_fn`` returns an aware datetime and exists so tests can freeze time.
    """

    def __init__(self, timezone: str, now_fn: Callable[[], datetime] | None = None):
        self.timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._now_fn = now_fn or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._now_fn().astimezone(self._tz)

    def today(self) -> date:
        return self.now().date()

    def minutes_now(self) -> int:
        now = self.now()
        return now.hour * 60 + now.minute

    def utc_now(self) -> datetime:
        """Current instant as naive UTC, comparable with stored values."""
        return self._now_fn().astimezone(UTC).replace(tzinfo=None)

    def to_utc(self, day: date, minutes: int) -> datetime:
        """Clinic-local ``day`` + ``minutes`` → naive UTC instant."""
        # Wall-clock addition; the offset is resolved for the resulting local time
        local = datetime.combine(day, time(0, 0), tzinfo=self._tz) + timedelta(minutes=minutes)
        return local.astimezone(UTC).replace(tzinfo=None)

    def to_local(self, instant: datetime) -> tuple[date, int]:
        """Naive UTC instant → (clinic-local day, minutes since midnight)."""
        aware = instant.replace(tzinfo=UTC) if instant.tzinfo is None else instant
        local = aware.astimezone(self._tz)
        return local.date(), local.hour * 60 + local.minute

    def day_bounds_utc(self, day: date) -> tuple[datetime, datetime]:
        """Half-open naive-UTC range covering the clinic-local calendar day."""
        return self.to_utc(day, 0), self.to_utc(day + timedelta(days=1), 0)

    def is_past(self, day: date, minutes: int) -> bool:
        """True if the clinic-local moment has already started."""
        return self.to_utc(day, minutes) <= self.utc_now()
