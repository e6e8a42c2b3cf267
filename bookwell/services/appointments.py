"""Read-side queries: calendar listings and pending confirmations."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import and_, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.models.appointment import Appointment, AppointmentStatus
from bookwell.schemas.appointment import AppointmentOut, PendingConfirmationOut

logger = logging.getLogger(__name__)


async def list_appointments(
    db: AsyncSession,
    provider_id: Optional[UUID] = None,
    consumer_id: Optional[UUID] = None,
    status: Optional[AppointmentStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    follow_ups_only: bool = False,
    limit: int = 50,
    skip: int = 0,
) -> tuple[list[Appointment], int]:
    """Appointments matching the filters, earliest first, plus the total count.

    ``start``/``end`` select appointments overlapping that range.
    ``follow_ups_only`` keeps only sessions created as a follow-up of another.
    """
    filters = []
    if provider_id is not None:
        filters.append(Appointment.provider_id == provider_id)
    if consumer_id is not None:
        filters.append(Appointment.consumer_id == consumer_id)
    if status is not None:
        filters.append(Appointment.status == status)
    if start is not None:
        filters.append(Appointment.end > start)
    if end is not None:
        filters.append(Appointment.start < end)
    if follow_ups_only:
        filters.append(Appointment.follow_up_of_id.is_not(None))

    where = and_(true(), *filters)
    total = await db.scalar(select(func.count()).select_from(Appointment).where(where))

    result = await db.execute(
        select(Appointment)
        .where(where)
        .order_by(Appointment.start, Appointment.created_at)
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


def minutes_remaining(deadline: Optional[datetime], now: datetime) -> int:
    if deadline is None:
        return 0
    return max(0, int((deadline - now).total_seconds() // 60))


async def pending_confirmations(
    db: AsyncSession, provider_id: UUID, now: datetime,
) -> list[PendingConfirmationOut]:
    """Bookings still waiting for the provider, most urgent first."""
    result = await db.execute(
        select(Appointment)
        .where(
            and_(
                Appointment.provider_id == provider_id,
                Appointment.status == AppointmentStatus.PENDING_PROVIDER_CONFIRMATION,
            )
        )
        .order_by(Appointment.confirmation_deadline, Appointment.start)
    )
    return [
        PendingConfirmationOut(
            **AppointmentOut.from_model(appointment).model_dump(),
            minutes_remaining=minutes_remaining(appointment.confirmation_deadline, now),
        )
        for appointment in result.scalars().all()
    ]
