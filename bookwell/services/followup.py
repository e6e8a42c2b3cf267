"""Follow-up sessions recommended by a provider after a completed session."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.core.errors import IllegalState, InvalidWindow, NotAuthorized
from bookwell.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from bookwell.schemas.appointment import AppointmentOut
from bookwell.services.collaborators import Collaborators
from bookwell.services.identity import get_provider
from bookwell.services.lifecycle import get_appointment, party_context, validate_duration
from bookwell.services.notifications import NotificationEvent
from bookwell.utils.clock import to_naive_utc

logger = logging.getLogger(__name__)


async def spawn_follow_up(
    db: AsyncSession,
    collab: Collaborators,
    original_id: UUID,
    new_start: datetime,
    duration_minutes: int,
    actor_id: UUID,
    note: Optional[str] = None,
) -> Appointment:
    """Create a pending-payment follow-up linked to a completed appointment.

    The follow-up does not claim the provider's calendar until it is paid, so
    no conflict check happens here; ``record_payment`` does it.
    """
    original = await get_appointment(db, original_id)
    if original.status != AppointmentStatus.COMPLETED:
        raise IllegalState("Follow-ups can only be created for completed appointments")
    if actor_id != original.provider_id:
        raise NotAuthorized("Only the provider can recommend a follow-up")
    validate_duration(duration_minutes)

    new_start = to_naive_utc(new_start)
    if new_start <= original.start:
        raise InvalidWindow("Follow-up must start after the original appointment")
    if original.follow_up_appointment_id is not None:
        raise IllegalState("A follow-up has already been created for this appointment")

    provider = await get_provider(db, original.provider_id)
    now = collab.now()

    follow_up = Appointment(
        provider_id=original.provider_id,
        consumer_id=original.consumer_id,
        session_kind=original.session_kind,
        reason=note or original.reason,
        status=AppointmentStatus.PENDING_PAYMENT,
        payment_amount=provider.session_rate,
        payment_status=PaymentStatus.PENDING,
        follow_up_of_id=original.id,
        created_at=now,
        updated_at=now,
    )
    follow_up.set_window(new_start, duration_minutes)
    db.add(follow_up)
    await db.flush()

    # Only the first writer gets to set the forward pointer.
    result = await db.execute(
        update(Appointment)
        .where(Appointment.id == original.id, Appointment.follow_up_appointment_id.is_(None))
        .values({
            Appointment.follow_up_appointment_id: follow_up.id,
            Appointment.follow_up_note: note,
            Appointment.updated_at: now,
        })
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise IllegalState("A follow-up has already been created for this appointment")

    await db.commit()
    await db.refresh(follow_up)
    await db.refresh(original)
    logger.info("Created follow-up %s for appointment %s", follow_up.id, original.id)

    collab.notice(
        NotificationEvent.FOLLOWUP_CREATED,
        AppointmentOut.from_model(follow_up),
        await party_context(db, follow_up, original_id=original.id),
    )
    return follow_up
