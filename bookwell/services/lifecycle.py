"""Appointment lifecycle state machine.

Owns the legal-transition table and every write to ``Appointment.status``.
Transitions are applied as a compare-and-swap on the current status, so when
two writers race (a provider confirming while the sweeper expires the same
appointment) exactly one update lands and the other gets
``IllegalTransition``. Writes that put an appointment on the provider's
calendar additionally run under the provider's write lock with a fresh
conflict check.

Side effects (refunds, notifications) are fired only after the transition is
committed and never inside the lock.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, NamedTuple, Optional
from uuid import UUID
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.core.config import settings
from bookwell.core.errors import (
    DeadlinePassed,
    IllegalTransition,
    InvalidDuration,
    NotAuthorized,
    NotFound,
    OutsideAvailability,
    SlotUnavailable,
)
from bookwell.models.appointment import Appointment, AppointmentStatus, PaymentStatus, SessionKind
from bookwell.schemas.appointment import AppointmentOut
from bookwell.schemas.participant import Provider
from bookwell.services.availability import working_windows
from bookwell.services.collaborators import Collaborators
from bookwell.services.conflicts import check_conflict
from bookwell.services.identity import get_consumer, get_participant, get_parties, get_provider
from bookwell.services.intervals import Interval, contains
from bookwell.services.notifications import NotificationEvent
from bookwell.utils.clock import to_naive_utc

logger = logging.getLogger(__name__)

S = AppointmentStatus

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.PENDING_PROVIDER_CONFIRMATION: frozenset({S.SCHEDULED, S.CANCELED}),
    S.PENDING_PAYMENT: frozenset({S.SCHEDULED, S.CANCELED}),
    S.SCHEDULED: frozenset({S.COMPLETED, S.CANCELED, S.NO_SHOW}),
    S.COMPLETED: frozenset(),
    S.CANCELED: frozenset(),
    S.NO_SHOW: frozenset(),
}

UNCONFIRMED_REASON = "provider did not confirm in time"
PAYMENT_EXPIRED_REASON = "payment time limit exceeded"
AUTO_COMPLETION_NOTE = (
    "This session was automatically marked as completed when its scheduled time ended."
)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 120
DURATION_STEP_MINUTES = 15


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if not can_transition(current, target):
        raise IllegalTransition(current.value, target.value)


def validate_duration(duration_minutes: Any) -> int:
    if (
        isinstance(duration_minutes, bool)
        or not isinstance(duration_minutes, int)
        or duration_minutes % DURATION_STEP_MINUTES != 0
        or not MIN_DURATION_MINUTES <= duration_minutes <= MAX_DURATION_MINUTES
    ):
        raise InvalidDuration()
    return duration_minutes


def provider_local_date(provider: Provider, instant: datetime):
    return (instant + timedelta(minutes=provider.timezone_offset_minutes)).date()


def confirmation_deadline(provider: Provider, start: datetime, now: datetime) -> datetime:
    """When the provider must have confirmed a booking starting at ``start``.

    Near-term bookings get ``now + grace``. Otherwise the deadline is ``grace``
    after the provider's first working window on the appointment's day. A
    session booked into that first hour can therefore start before its
    deadline passes.
    """
    grace = timedelta(hours=settings.CONFIRMATION_GRACE_HOURS)
    if start - now < timedelta(hours=settings.NEAR_TERM_HOURS):
        return now + grace

    windows = working_windows(provider, provider_local_date(provider, start))
    if not windows:
        return now + grace
    return min(window.start for window in windows) + grace


class PaymentRelease(NamedTuple):
    refund_ref: Optional[str] = None
    void_ref: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return {"payment_status": PaymentStatus.REFUNDED} if self.refund_ref else {}


def payment_release(appointment: Appointment) -> PaymentRelease:
    """What happens to the payment when this appointment is canceled.

    A settled payment is refunded. One the gateway has not settled yet is
    voided and keeps its status.
    """
    ref = appointment.payment_external_ref
    if not ref:
        return PaymentRelease()
    if appointment.payment_status == PaymentStatus.COMPLETED:
        return PaymentRelease(refund_ref=ref)
    if appointment.payment_status == PaymentStatus.PENDING:
        return PaymentRelease(void_ref=ref)
    return PaymentRelease()


async def get_appointment(db: AsyncSession, appointment_id: UUID) -> Appointment:
    appointment = await db.get(Appointment, appointment_id, populate_existing=True)
    if appointment is None:
        raise NotFound("Appointment not found")
    return appointment


async def party_context(db: AsyncSession, appointment: Appointment, **extra: Any) -> dict[str, Any]:
    provider, consumer = await get_parties(db, appointment.provider_id, appointment.consumer_id)
    return {"provider": provider, "consumer": consumer, **extra}


async def apply_transition(
    db: AsyncSession,
    appointment: Appointment,
    target: AppointmentStatus,
    now: datetime,
    **changes: Any,
) -> Appointment:
    """Move ``appointment`` to ``target`` atomically and commit.

    The update only matches while the row still holds the status we read; if
    another writer got there first nothing is written and the caller gets
    ``IllegalTransition`` reporting the status that won.
    """
    current = AppointmentStatus(appointment.status)
    ensure_transition(current, target)

    values = {getattr(Appointment, name): value for name, value in changes.items()}
    values[Appointment.status] = target
    values[Appointment.updated_at] = now
    if current == S.PENDING_PROVIDER_CONFIRMATION:
        values[Appointment.confirmation_deadline] = None

    result = await db.execute(
        update(Appointment)
        .where(Appointment.id == appointment.id, Appointment.status == current)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        fresh = await get_appointment(db, appointment.id)
        logger.info(
            "Lost transition race on appointment %s: wanted %s -> %s, found %s",
            appointment.id, current.value, target.value, fresh.status.value,
        )
        raise IllegalTransition(fresh.status.value, target.value)

    await db.commit()
    await db.refresh(appointment)
    logger.info("Appointment %s: %s -> %s", appointment.id, current.value, target.value)
    return appointment


@asynccontextmanager
async def provider_write_lock(db: AsyncSession, collab: Collaborators, provider_id: UUID):
    """Serialize calendar writes for one provider.

    Holds the in-process lock and the provider row lock for the body, which is
    expected to commit. Anything raised inside rolls the session back.
    """
    async with collab.locks.for_provider(provider_id):
        try:
            await get_provider(db, provider_id, for_update=True)
            yield
        except BaseException:
            await db.rollback()
            raise


async def create_appointment(
    db: AsyncSession,
    collab: Collaborators,
    *,
    provider_id: UUID,
    consumer_id: UUID,
    start: datetime,
    duration_minutes: int,
    session_kind: SessionKind = SessionKind.VIDEO,
    reason: Optional[str] = None,
    prepaid: bool = False,
) -> Appointment:
    """Book a session.

    Direct bookings wait for the provider (``pending-provider-confirmation``
    with a deadline); pre-paid bookings wait for the payment collaborator
    (``pending-payment``, no deadline).
    """
    validate_duration(duration_minutes)
    if provider_id == consumer_id:
        raise NotAuthorized("A participant cannot book a session with themselves")

    start = to_naive_utc(start)
    now = collab.now()
    consumer = await get_consumer(db, consumer_id)
    provider = await get_participant(db, provider_id)
    if not isinstance(provider, Provider):
        raise NotAuthorized("Sessions can only be booked with a provider")
    candidate = Interval(start, start + timedelta(minutes=duration_minutes))
    if candidate.start <= now:
        raise OutsideAvailability("Appointments must start in the future")

    conflict = False
    async with provider_write_lock(db, collab, provider_id):
        if await check_conflict(db, provider_id, candidate):
            conflict = True
            await db.rollback()
        else:
            windows = working_windows(provider, provider_local_date(provider, candidate.start))
            if not windows:
                raise OutsideAvailability("Provider is not available on this day")
            if not any(contains(window, candidate) for window in windows):
                raise OutsideAvailability()

            appointment = Appointment(
                provider_id=provider_id,
                consumer_id=consumer_id,
                session_kind=session_kind,
                reason=reason,
                status=S.PENDING_PAYMENT if prepaid else S.PENDING_PROVIDER_CONFIRMATION,
                payment_amount=provider.session_rate,
                payment_status=PaymentStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            appointment.set_window(start, duration_minutes)
            if not prepaid:
                appointment.confirmation_deadline = confirmation_deadline(provider, start, now)
            db.add(appointment)
            await db.commit()
            await db.refresh(appointment)

    context = {"provider": provider, "consumer": consumer}
    if conflict:
        collab.notice(
            NotificationEvent.BOOKING_FAILED,
            None,
            {**context, "start": start, "error": SlotUnavailable.default_detail},
        )
        raise SlotUnavailable()

    logger.info(
        "Booked appointment %s for provider %s at %s (%s)",
        appointment.id, provider_id, start, appointment.status.value,
    )
    collab.notice(NotificationEvent.BOOKING_CREATED, AppointmentOut.from_model(appointment), context)
    return appointment


async def expire_unconfirmed(
    db: AsyncSession, appointment: Appointment, now: datetime,
) -> PaymentRelease:
    """Cancel a booking whose confirmation deadline passed.

    Returns what to do with the payment. A refunded payment is marked so in
    the same write, so the refund can only ever be requested once.
    """
    release = payment_release(appointment)
    await apply_transition(
        db, appointment, S.CANCELED, now, cancellation_reason=UNCONFIRMED_REASON, **release.changes(),
    )
    return release


async def confirm_appointment(
    db: AsyncSession, collab: Collaborators, appointment_id: UUID, actor_id: UUID,
) -> Appointment:
    appointment = await get_appointment(db, appointment_id)
    if actor_id != appointment.provider_id:
        raise NotAuthorized("You are not authorized to confirm this appointment")
    if appointment.status != S.PENDING_PROVIDER_CONFIRMATION:
        raise IllegalTransition(
            appointment.status.value,
            S.SCHEDULED.value,
            detail=f'Cannot confirm appointment with status "{appointment.status.value}"',
        )

    now = collab.now()
    if appointment.confirmation_deadline is not None and now > appointment.confirmation_deadline:
        collab.release_payment(await expire_unconfirmed(db, appointment, now))
        collab.notice(
            NotificationEvent.BOOKING_CANCELED,
            AppointmentOut.from_model(appointment),
            await party_context(db, appointment, canceled_by="system"),
        )
        raise DeadlinePassed(appointment)

    async with provider_write_lock(db, collab, appointment.provider_id):
        if await check_conflict(
            db, appointment.provider_id, appointment.interval, exclude_appointment_id=appointment.id,
        ):
            raise SlotUnavailable()
        await apply_transition(db, appointment, S.SCHEDULED, now)

    collab.notice(
        NotificationEvent.BOOKING_CONFIRMED,
        AppointmentOut.from_model(appointment),
        await party_context(db, appointment),
    )
    return appointment


async def record_payment(
    db: AsyncSession, collab: Collaborators, appointment_id: UUID, external_ref: str,
) -> Appointment:
    """Payment collaborator reports a settled charge for a pending-payment booking."""
    appointment = await get_appointment(db, appointment_id)
    if appointment.status != S.PENDING_PAYMENT:
        raise IllegalTransition(appointment.status.value, S.SCHEDULED.value)

    now = collab.now()
    conflict = False
    async with provider_write_lock(db, collab, appointment.provider_id):
        if await check_conflict(
            db, appointment.provider_id, appointment.interval, exclude_appointment_id=appointment.id,
        ):
            conflict = True
            # Keep the settled payment on record so the eventual cancellation refunds it.
            await db.execute(
                update(Appointment)
                .where(Appointment.id == appointment.id, Appointment.status == S.PENDING_PAYMENT)
                .values({
                    Appointment.payment_status: PaymentStatus.COMPLETED,
                    Appointment.payment_external_ref: external_ref,
                    Appointment.updated_at: now,
                })
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        else:
            await apply_transition(
                db, appointment, S.SCHEDULED, now,
                payment_status=PaymentStatus.COMPLETED,
                payment_external_ref=external_ref,
            )

    if conflict:
        await db.refresh(appointment)
        collab.notice(
            NotificationEvent.BOOKING_FAILED,
            AppointmentOut.from_model(appointment),
            await party_context(db, appointment, error=SlotUnavailable.default_detail),
        )
        raise SlotUnavailable()

    collab.notice(
        NotificationEvent.BOOKING_CONFIRMED,
        AppointmentOut.from_model(appointment),
        await party_context(db, appointment),
    )
    return appointment


async def cancel_appointment(
    db: AsyncSession,
    collab: Collaborators,
    appointment_id: UUID,
    actor_id: UUID,
    reason: Optional[str] = None,
    is_admin: bool = False,
) -> Appointment:
    appointment = await get_appointment(db, appointment_id)
    if not (is_admin or appointment.is_party(actor_id)):
        raise NotAuthorized("You are not authorized to cancel this appointment")

    if is_admin and not appointment.is_party(actor_id):
        canceled_by = "admin"
    elif actor_id == appointment.provider_id:
        canceled_by = "provider"
    else:
        canceled_by = "consumer"

    release = payment_release(appointment)
    await apply_transition(
        db, appointment, S.CANCELED, collab.now(),
        cancellation_reason=reason or f"Canceled by {canceled_by}", **release.changes(),
    )
    collab.release_payment(release)
    collab.notice(
        NotificationEvent.BOOKING_CANCELED,
        AppointmentOut.from_model(appointment),
        await party_context(db, appointment, canceled_by=canceled_by),
    )
    return appointment


async def complete_appointment(
    db: AsyncSession,
    collab: Collaborators,
    appointment_id: UUID,
    actor_id: UUID,
    note: Optional[str] = None,
) -> Appointment:
    appointment = await get_appointment(db, appointment_id)
    if actor_id != appointment.provider_id:
        raise NotAuthorized("Only the provider can complete this appointment")

    changes = {"completion_note": note} if note else {}
    await apply_transition(db, appointment, S.COMPLETED, collab.now(), **changes)
    collab.notice(
        NotificationEvent.SESSION_COMPLETED,
        AppointmentOut.from_model(appointment),
        await party_context(db, appointment, completed_by="provider"),
    )
    return appointment


async def mark_no_show(
    db: AsyncSession, collab: Collaborators, appointment_id: UUID, actor_id: UUID,
) -> Appointment:
    appointment = await get_appointment(db, appointment_id)
    if actor_id != appointment.provider_id:
        raise NotAuthorized("Only the provider can mark a no-show")
    return await apply_transition(db, appointment, S.NO_SHOW, collab.now())
