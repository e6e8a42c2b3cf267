"""Tests for the deadline sweeper scans."""

from datetime import timedelta
import pytest
from sqlalchemy import update

from bookwell.core.config import settings
from bookwell.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from bookwell.services import lifecycle
from bookwell.services.notifications import NotificationEvent
from bookwell.services.sweeper import DeadlineSweeper
from conftest import MONDAY


@pytest.fixture
def sweeper(session_factory, collab):
    return DeadlineSweeper(session_factory, collab, settings)


async def book(db, collab, provider, consumer, hour=10, duration=30, prepaid=False):
    return await lifecycle.create_appointment(
        db,
        collab,
        provider_id=provider.id,
        consumer_id=consumer.id,
        start=MONDAY.replace(hour=hour),
        duration_minutes=duration,
        prepaid=prepaid,
    )


async def reload(db, appointment):
    return await lifecycle.get_appointment(db, appointment.id)


async def set_payment(db, appointment, status, ref):
    await db.execute(
        update(Appointment)
        .where(Appointment.id == appointment.id)
        .values({Appointment.payment_status: status, Appointment.payment_external_ref: ref})
    )
    await db.commit()


# ── expire_unconfirmed ──

@pytest.mark.asyncio
async def test_expires_only_past_deadlines(db, collab, clock, notifier, sweeper, provider, consumer):
    soon = await book(db, collab, provider, consumer, hour=10)  # deadline 09:00
    later = await lifecycle.create_appointment(
        db, collab, provider_id=provider.id, consumer_id=consumer.id,
        start=MONDAY.replace(hour=10) + timedelta(days=2), duration_minutes=30,
    )  # deadline Wednesday 10:00
    await collab.effects.drain()
    notifier.sent.clear()

    clock.set(MONDAY.replace(hour=9, minute=1))
    report = await sweeper.expire_unconfirmed()

    assert (report.scanned, report.transitioned, report.failed) == (1, 1, 0)
    soon = await reload(db, soon)
    assert soon.status == AppointmentStatus.CANCELED
    assert soon.cancellation_reason == "provider did not confirm in time"
    assert soon.confirmation_deadline is None
    assert (await reload(db, later)).status == AppointmentStatus.PENDING_PROVIDER_CONFIRMATION
    assert notifier.events() == [NotificationEvent.BOOKING_CANCELED]


@pytest.mark.asyncio
async def test_deadline_itself_is_not_expired(db, collab, clock, sweeper, provider, consumer):
    appointment = await book(db, collab, provider, consumer)
    clock.set(appointment.confirmation_deadline)
    report = await sweeper.expire_unconfirmed()
    assert report.scanned == 0


@pytest.mark.asyncio
async def test_expire_is_idempotent(db, collab, clock, notifier, payments, sweeper, provider, consumer):
    appointment = await book(db, collab, provider, consumer)
    await set_payment(db, appointment, PaymentStatus.COMPLETED, "pi_1")
    clock.set(MONDAY.replace(hour=9, minute=30))

    first = await sweeper.expire_unconfirmed()
    snapshot = await reload(db, appointment)
    sent = len(notifier.sent)
    second = await sweeper.expire_unconfirmed()

    assert first.transitioned == 1
    assert (second.scanned, second.transitioned) == (0, 0)
    again = await reload(db, appointment)
    assert again.updated_at == snapshot.updated_at
    assert again.payment_status == PaymentStatus.REFUNDED
    assert payments.refunds == ["pi_1"]
    assert len(notifier.sent) == sent


@pytest.mark.asyncio
async def test_side_effect_failure_keeps_transition(db, collab, clock, notifier, payments, sweeper, provider, consumer):
    appointment = await book(db, collab, provider, consumer)
    await set_payment(db, appointment, PaymentStatus.COMPLETED, "pi_1")
    await collab.effects.drain()
    notifier.fail = True
    payments.fail = True
    clock.set(MONDAY.replace(hour=9, minute=30))

    report = await sweeper.expire_unconfirmed()

    assert (report.transitioned, report.failed) == (1, 0)
    assert collab.effects.failed == 2
    assert (await reload(db, appointment)).status == AppointmentStatus.CANCELED


# ── expire_unpaid ──

@pytest.mark.asyncio
async def test_unpaid_booking_expires_after_payment_window(db, collab, clock, payments, sweeper, provider, consumer):
    appointment = await book(db, collab, provider, consumer, prepaid=True)
    await set_payment(db, appointment, PaymentStatus.PENDING, "pi_pending")

    clock.advance(hours=23, minutes=59)
    assert (await sweeper.expire_unpaid()).scanned == 0

    clock.advance(minutes=2)
    report = await sweeper.expire_unpaid()

    assert report.transitioned == 1
    appointment = await reload(db, appointment)
    assert appointment.status == AppointmentStatus.CANCELED
    assert appointment.cancellation_reason == "payment time limit exceeded"
    assert payments.cancellations == ["pi_pending"]
    assert payments.refunds == []


@pytest.mark.asyncio
async def test_unpaid_expiry_refunds_settled_payment(db, collab, clock, payments, sweeper, provider, consumer):
    # Paid, but the slot was taken before the payment arrived.
    appointment = await book(db, collab, provider, consumer, prepaid=True)
    await set_payment(db, appointment, PaymentStatus.COMPLETED, "pi_settled")
    clock.advance(hours=25)

    await sweeper.expire_unpaid()

    assert payments.refunds == ["pi_settled"]
    assert (await reload(db, appointment)).payment_status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_unpaid_expiry_without_ref_touches_no_gateway(db, collab, clock, payments, sweeper, provider, consumer):
    await book(db, collab, provider, consumer, prepaid=True)
    clock.advance(hours=25)
    report = await sweeper.expire_unpaid()
    assert report.transitioned == 1
    assert payments.refunds == [] and payments.cancellations == []


# ── complete_ended ──

@pytest.mark.asyncio
async def test_completes_ended_sessions(db, collab, clock, notifier, sweeper, provider, consumer):
    scheduled = await book(db, collab, provider, consumer, hour=10)
    await lifecycle.confirm_appointment(db, collab, scheduled.id, provider.id)
    unconfirmed = await book(db, collab, provider, consumer, hour=11)
    await collab.effects.drain()
    notifier.sent.clear()

    clock.set(MONDAY.replace(hour=10, minute=30))
    assert (await sweeper.complete_ended()).scanned == 0

    clock.advance(seconds=1)
    report = await sweeper.complete_ended()

    assert report.transitioned == 1
    scheduled = await reload(db, scheduled)
    assert scheduled.status == AppointmentStatus.COMPLETED
    assert scheduled.completion_note == lifecycle.AUTO_COMPLETION_NOTE
    assert (await reload(db, unconfirmed)).status == AppointmentStatus.PENDING_PROVIDER_CONFIRMATION
    assert notifier.events() == [NotificationEvent.SESSION_COMPLETED]


@pytest.mark.asyncio
async def test_failing_item_does_not_stop_the_scan(db, collab, clock, sweeper, provider, consumer, monkeypatch):
    first = await book(db, collab, provider, consumer, hour=10)
    second = await book(db, collab, provider, consumer, hour=11)
    for appointment in (first, second):
        await lifecycle.confirm_appointment(db, collab, appointment.id, provider.id)
    clock.set(MONDAY.replace(hour=12))

    original = sweeper._complete_one

    async def flaky(session, appointment_id, now):
        if appointment_id == first.id:
            raise RuntimeError("boom")
        return await original(session, appointment_id, now)

    monkeypatch.setattr(sweeper, "_complete_one", flaky)
    report = await sweeper.complete_ended()

    assert (report.scanned, report.transitioned, report.failed) == (2, 1, 1)
    assert (await reload(db, first)).status == AppointmentStatus.SCHEDULED
    assert (await reload(db, second)).status == AppointmentStatus.COMPLETED


# ── send_reminders ──

@pytest.mark.asyncio
async def test_reminder_is_sent_once(db, collab, clock, notifier, sweeper, provider, consumer):
    appointment = await book(db, collab, provider, consumer, hour=10)
    await lifecycle.confirm_appointment(db, collab, appointment.id, provider.id)
    await book(db, collab, provider, consumer, hour=12)  # not confirmed, no reminder
    await collab.effects.drain()
    notifier.sent.clear()

    first = await sweeper.send_reminders()
    second = await sweeper.send_reminders()

    assert first.transitioned == 1
    assert second.scanned == 0
    assert notifier.events() == [NotificationEvent.SESSION_REMINDER]
    assert (await reload(db, appointment)).reminder_sent_at == clock()


@pytest.mark.asyncio
async def test_sweep_all_runs_every_scan(sweeper):
    reports = await sweeper.sweep_all()
    assert [r.scan for r in reports] == ["expire_unconfirmed", "expire_unpaid", "complete_ended", "send_reminders"]
    assert all(r.scanned == 0 for r in reports)
