"""Availability resolution: weekly availability + date -> open slots.

Days are indexed by ISO weekday (Monday=1 ... Sunday=7) everywhere. Window
times are wall-clock times in the provider's own UTC offset; comparisons with
"now" happen on UTC instants, so the server's local time never matters.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.core.config import settings
from bookwell.schemas.participant import Provider
from bookwell.services.conflicts import load_active_bookings
from bookwell.services.identity import get_provider
from bookwell.services.intervals import Interval, generate_slots, overlaps, wall_clock_to_utc, window_for_day
from bookwell.utils.clock import utcnow

logger = logging.getLogger(__name__)


def working_windows(provider: Provider, day: date) -> list[Interval]:
    """The provider's configured windows on ``day`` as UTC intervals."""
    day_availability = provider.weekly_availability.for_weekday(day.isoweekday())
    return [
        window_for_day(day, window.start_time, window.end_time, provider.timezone_offset_minutes)
        for window in day_availability.effective_windows()
    ]


def local_day_bounds(provider: Provider, day: date) -> Interval:
    start = wall_clock_to_utc(day, time(0, 0), provider.timezone_offset_minutes)
    return Interval(start, start + timedelta(days=1))


def resolve_day(
    provider: Provider,
    day: date,
    busy: Iterable[Interval],
    now: datetime,
    step_minutes: Optional[int] = None,
    slot_minutes: Optional[int] = None,
) -> list[Interval]:
    """Open slots for ``day``.

    Slots starting at or before ``now`` and slots overlapping ``busy`` are
    dropped. An empty list means the day is unavailable or fully booked.
    """
    step = step_minutes or settings.SLOT_STEP_MINUTES
    day_availability = provider.weekly_availability.for_weekday(day.isoweekday())
    if not day_availability.is_available:
        return []

    candidates: set[Interval] = set()
    for window in day_availability.effective_windows():
        candidates.update(
            generate_slots(
                day,
                window.start_time,
                window.end_time,
                step_minutes=step,
                slot_minutes=slot_minutes,
                tz_offset_minutes=provider.timezone_offset_minutes,
            )
        )

    busy = list(busy)
    return sorted(
        slot for slot in candidates
        if slot.start > now and not any(overlaps(slot, taken) for taken in busy)
    )


async def get_open_slots(
    db: AsyncSession,
    provider_id: UUID,
    day: date,
    now: Optional[datetime] = None,
    step_minutes: Optional[int] = None,
    slot_minutes: Optional[int] = None,
) -> list[Interval]:
    provider = await get_provider(db, provider_id)
    bookings = await load_active_bookings(db, provider_id, window=local_day_bounds(provider, day))
    slots = resolve_day(
        provider,
        day,
        [booking.interval for booking in bookings],
        now or utcnow(),
        step_minutes=step_minutes,
        slot_minutes=slot_minutes,
    )
    logger.debug("Provider %s has %d open slots on %s", provider_id, len(slots), day)
    return slots
