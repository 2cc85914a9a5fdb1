"""Interval-overlap checks shared by slot search and booking commit.

Intervals are half-open ``[start, end)`` in clinic-local minutes on one
calendar day, so touching endpoints never conflict.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import NamedTuple


class Interval(NamedTuple):
    start: int
    end: int

    @classmethod
    def of(cls, start: int, duration: int) -> Interval:
        return cls(start, start + duration)


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and a.end > b.start


def first_overlap(candidate: Interval, intervals: Iterable[Interval]) -> Interval | None:
    """Return the first interval touching *candidate*, or ``None``."""
    for interval in intervals:
        if overlaps(candidate, interval):
            return interval
    return None


def outside_envelope(candidate: Interval, open_minutes: int, close_minutes: int) -> bool:
    """True if the slot starts before opening or ends after closing.

    Ending exactly at closing time is allowed.
    """
    return candidate.start < open_minutes or candidate.end > close_minutes


def is_working_day(day: date, working_days: Iterable[int]) -> bool:
    return day.weekday() in set(working_days)
