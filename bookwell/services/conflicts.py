"""Conflict detection against a provider's active bookings."""

import logging
from typing import Iterable, Optional
from uuid import UUID
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.models.appointment import Appointment, ACTIVE_STATUSES
from bookwell.services.intervals import Interval, overlaps

logger = logging.getLogger(__name__)


async def load_active_bookings(
    db: AsyncSession,
    provider_id: UUID,
    window: Optional[Interval] = None,
    exclude_appointment_id: Optional[UUID] = None,
) -> list[Appointment]:
    """Active bookings of a provider, optionally only those touching ``window``."""
    query = select(Appointment).where(
        and_(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(list(ACTIVE_STATUSES)),
        )
    )
    if window is not None:
        query = query.where(and_(Appointment.start < window.end, Appointment.end > window.start))
    if exclude_appointment_id is not None:
        query = query.where(Appointment.id != exclude_appointment_id)

    result = await db.execute(query.order_by(Appointment.start))
    return list(result.scalars().all())


def find_conflict(candidate: Interval, bookings: Iterable[Appointment]) -> Optional[Appointment]:
    for booking in bookings:
        if overlaps(candidate, booking.interval):
            return booking
    return None


async def check_conflict(
    db: AsyncSession,
    provider_id: UUID,
    candidate: Interval,
    exclude_appointment_id: Optional[UUID] = None,
) -> bool:
    """True if ``candidate`` overlaps any active booking of the provider.

    Must be called inside the provider's write lock when the answer guards a
    write, otherwise two racing bookings can both see a free slot.
    """
    bookings = await load_active_bookings(
        db, provider_id, window=candidate, exclude_appointment_id=exclude_appointment_id,
    )
    clash = find_conflict(candidate, bookings)
    if clash is not None:
        logger.info(
            "Conflict for provider %s: %s-%s overlaps appointment %s",
            provider_id, candidate.start, candidate.end, clash.id,
        )
        return True
    return False
