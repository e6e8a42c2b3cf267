"""Interval math for slot generation and conflict detection.

Pure functions, no I/O. All intervals are half-open ``[start, end)`` over
naive UTC datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Union

from bookwell.core.errors import InvalidWindow

WallClock = Union[str, time]


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    """True iff the two intervals share a non-zero stretch of time.

    Covers the three booking cases: ``a`` starts inside ``b``, ``a`` ends
    inside ``b``, or ``a`` contains ``b``. Touching endpoints do not overlap.
    """
    return a.start < b.end and b.start < a.end


def contains(outer: Interval, inner: Interval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def parse_wall_clock(value: WallClock) -> time:
    """Parse ``HH:MM`` into a ``time``."""
    if isinstance(value, time):
        return value
    try:
        hours, minutes = (int(part) for part in value.split(":"))
        return time(hour=hours, minute=minutes)
    except (ValueError, AttributeError):
        raise InvalidWindow(f"Invalid wall-clock time: {value!r}")


def wall_clock_to_utc(day: date, value: WallClock, tz_offset_minutes: int = 0) -> datetime:
    """Wall-clock time on ``day`` at a fixed UTC offset, as naive UTC."""
    local = datetime.combine(day, parse_wall_clock(value))
    return local - timedelta(minutes=tz_offset_minutes)


def window_for_day(
    day: date,
    start_time: WallClock,
    end_time: WallClock,
    tz_offset_minutes: int = 0,
) -> Interval:
    start = wall_clock_to_utc(day, start_time, tz_offset_minutes)
    end = wall_clock_to_utc(day, end_time, tz_offset_minutes)
    if end <= start:
        raise InvalidWindow(f"Window {start_time}-{end_time} must end after it starts")
    return Interval(start, end)


def generate_slots(
    day: date,
    start_time: WallClock,
    end_time: WallClock,
    step_minutes: int = 30,
    slot_minutes: Optional[int] = None,
    tz_offset_minutes: int = 0,
) -> List[Interval]:
    """Tile ``[start_time, end_time)`` on ``day`` with fixed-length candidates.

    A new candidate starts every ``step_minutes``; each is ``slot_minutes``
    long (defaults to the step). Candidates that would run past the window
    are dropped.
    """
    if step_minutes <= 0 or (slot_minutes is not None and slot_minutes <= 0):
        raise InvalidWindow("Slot step and length must be positive")

    window = window_for_day(day, start_time, end_time, tz_offset_minutes)
    step = timedelta(minutes=step_minutes)
    length = timedelta(minutes=slot_minutes or step_minutes)

    slots: List[Interval] = []
    cursor = window.start
    while cursor + length <= window.end:
        slots.append(Interval(cursor, cursor + length))
        cursor += step
    return slots
