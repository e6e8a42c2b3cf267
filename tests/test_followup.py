"""Tests for follow-up creation after a completed session."""

from datetime import timedelta
import pytest

from bookwell.core.errors import IllegalState, InvalidDuration, InvalidWindow, NotAuthorized, SlotUnavailable
from bookwell.models.appointment import AppointmentStatus, PaymentStatus
from bookwell.services import lifecycle
from bookwell.services.followup import spawn_follow_up
from bookwell.services.notifications import NotificationEvent
from conftest import MONDAY

NEXT_MONDAY = MONDAY + timedelta(days=7)


async def completed_session(db, collab, provider, consumer, hour=10):
    appointment = await lifecycle.create_appointment(
        db,
        collab,
        provider_id=provider.id,
        consumer_id=consumer.id,
        start=MONDAY.replace(hour=hour),
        duration_minutes=30,
    )
    await lifecycle.confirm_appointment(db, collab, appointment.id, provider.id)
    return await lifecycle.complete_appointment(db, collab, appointment.id, provider.id)


@pytest.mark.asyncio
async def test_follow_up_is_linked_and_waits_for_payment(db, collab, notifier, provider, consumer):
    original = await completed_session(db, collab, provider, consumer)
    follow_up = await spawn_follow_up(
        db, collab, original.id, NEXT_MONDAY.replace(hour=10), 45, provider.id, note="check progress",
    )

    assert follow_up.status == AppointmentStatus.PENDING_PAYMENT
    assert follow_up.follow_up_of_id == original.id
    assert follow_up.consumer_id == consumer.id
    assert follow_up.duration_minutes == 45
    assert follow_up.payment_amount == 5000
    assert follow_up.payment_status == PaymentStatus.PENDING
    assert follow_up.confirmation_deadline is None

    original = await lifecycle.get_appointment(db, original.id)
    assert original.follow_up_appointment_id == follow_up.id
    assert original.follow_up_note == "check progress"
    assert original.status == AppointmentStatus.COMPLETED

    await collab.effects.drain()
    assert notifier.events()[-1] == NotificationEvent.FOLLOWUP_CREATED


@pytest.mark.asyncio
async def test_only_one_follow_up(db, collab, provider, consumer):
    original = await completed_session(db, collab, provider, consumer)
    await spawn_follow_up(db, collab, original.id, NEXT_MONDAY.replace(hour=10), 30, provider.id)
    with pytest.raises(IllegalState):
        await spawn_follow_up(db, collab, original.id, NEXT_MONDAY.replace(hour=11), 30, provider.id)


@pytest.mark.asyncio
async def test_original_must_be_completed(db, collab, provider, consumer):
    appointment = await lifecycle.create_appointment(
        db, collab, provider_id=provider.id, consumer_id=consumer.id,
        start=MONDAY.replace(hour=10), duration_minutes=30,
    )
    with pytest.raises(IllegalState):
        await spawn_follow_up(db, collab, appointment.id, NEXT_MONDAY.replace(hour=10), 30, provider.id)


@pytest.mark.asyncio
async def test_only_the_provider_can_recommend(db, collab, provider, consumer):
    original = await completed_session(db, collab, provider, consumer)
    with pytest.raises(NotAuthorized):
        await spawn_follow_up(db, collab, original.id, NEXT_MONDAY.replace(hour=10), 30, consumer.id)


@pytest.mark.asyncio
async def test_follow_up_duration_is_validated(db, collab, provider, consumer):
    original = await completed_session(db, collab, provider, consumer)
    with pytest.raises(InvalidDuration):
        await spawn_follow_up(db, collab, original.id, NEXT_MONDAY.replace(hour=10), 20, provider.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("offset", [timedelta(0), timedelta(hours=-1)])
async def test_follow_up_must_start_after_original(db, collab, provider, consumer, offset):
    original = await completed_session(db, collab, provider, consumer)
    with pytest.raises(InvalidWindow):
        await spawn_follow_up(db, collab, original.id, original.start + offset, 30, provider.id)
    assert (await lifecycle.get_appointment(db, original.id)).follow_up_appointment_id is None


@pytest.mark.asyncio
async def test_follow_up_slot_is_checked_at_payment(db, collab, provider, consumer):
    original = await completed_session(db, collab, provider, consumer)
    follow_up = await spawn_follow_up(db, collab, original.id, NEXT_MONDAY.replace(hour=10), 30, provider.id)
    await lifecycle.create_appointment(
        db, collab, provider_id=provider.id, consumer_id=consumer.id,
        start=NEXT_MONDAY.replace(hour=10), duration_minutes=30,
    )
    with pytest.raises(SlotUnavailable):
        await lifecycle.record_payment(db, collab, follow_up.id, "pi_follow")


@pytest.mark.asyncio
async def test_paid_follow_up_is_scheduled(db, collab, provider, consumer):
    original = await completed_session(db, collab, provider, consumer)
    follow_up = await spawn_follow_up(db, collab, original.id, NEXT_MONDAY.replace(hour=10), 30, provider.id)
    paid = await lifecycle.record_payment(db, collab, follow_up.id, "pi_follow")
    assert paid.status == AppointmentStatus.SCHEDULED
