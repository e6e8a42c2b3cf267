"""Deadline sweeper: expires, completes and reminds on a schedule.

Each scan first collects candidate ids, then handles every appointment in its
own session and transaction. A transition is committed before any refund or
notification for it is attempted, and a failing item is logged and skipped
so the rest of the scan still runs. Transitions go through the same
compare-and-swap as request handlers, which makes scans idempotent and safe
to race with a provider confirming at the same moment.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookwell.core.config import Settings
from bookwell.core.errors import IllegalTransition
from bookwell.models.appointment import Appointment, AppointmentStatus
from bookwell.schemas.appointment import AppointmentOut
from bookwell.services.collaborators import Collaborators
from bookwell.services.lifecycle import (
    AUTO_COMPLETION_NOTE,
    PAYMENT_EXPIRED_REASON,
    PaymentRelease,
    apply_transition,
    expire_unconfirmed,
    get_appointment,
    party_context,
    payment_release,
)
from bookwell.services.notifications import NotificationEvent

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scan: str
    scanned: int = 0
    transitioned: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan": self.scan,
            "scanned": self.scanned,
            "transitioned": self.transitioned,
            "failed": self.failed,
        }


class DeadlineSweeper:
    """
    Runs the periodic scans over appointments.

    Usage:
        sweeper = DeadlineSweeper(async_session, collaborators, settings)
        report = await sweeper.expire_unconfirmed()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._collab = collaborators
        self._settings = settings

    async def _candidate_ids(self, *criteria) -> list[UUID]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Appointment.id).where(and_(*criteria)).order_by(Appointment.start)
            )
            return list(result.scalars().all())

    async def _scan(
        self,
        name: str,
        ids: list[UUID],
        handle: Callable[[AsyncSession, UUID, datetime], Awaitable[bool]],
        now: datetime,
    ) -> SweepReport:
        report = SweepReport(scan=name, scanned=len(ids))
        for appointment_id in ids:
            try:
                async with self._session_factory() as db:
                    if await handle(db, appointment_id, now):
                        report.transitioned += 1
            except IllegalTransition as exc:
                # Someone else moved it between the scan and the write.
                logger.info("Sweep %s skipped appointment %s: %s", name, appointment_id, exc.detail)
            except Exception as exc:
                report.failed += 1
                logger.error("Sweep %s failed on appointment %s: %s", name, appointment_id, exc, exc_info=True)

        if report.scanned:
            logger.info(
                "Sweep %s: scanned=%d transitioned=%d failed=%d",
                name, report.scanned, report.transitioned, report.failed,
            )
        return report

    async def _notify(self, db: AsyncSession, event: NotificationEvent, appointment: Appointment, **extra) -> None:
        out = AppointmentOut.from_model(appointment)
        context = await party_context(db, appointment, **extra)
        await self._collab.effects.run(
            f"notify:{event.value}:{appointment.id}",
            lambda: self._collab.notifier.notify(event, out, context),
        )

    async def _release(self, release: PaymentRelease) -> None:
        payments = self._collab.payments
        if release.refund_ref:
            await self._collab.effects.run(
                f"refund:{release.refund_ref}", lambda: payments.request_refund(release.refund_ref),
            )
        elif release.void_ref:
            await self._collab.effects.run(
                f"cancel-payment:{release.void_ref}", lambda: payments.cancel_payment(release.void_ref),
            )

    # ── Scans ──

    async def expire_unconfirmed(self) -> SweepReport:
        """Cancel bookings the provider did not confirm before the deadline."""
        now = self._collab.now()
        ids = await self._candidate_ids(
            Appointment.status == AppointmentStatus.PENDING_PROVIDER_CONFIRMATION,
            Appointment.confirmation_deadline < now,
        )
        return await self._scan("expire_unconfirmed", ids, self._expire_unconfirmed_one, now)

    async def _expire_unconfirmed_one(self, db: AsyncSession, appointment_id: UUID, now: datetime) -> bool:
        appointment = await get_appointment(db, appointment_id)
        if (
            appointment.status != AppointmentStatus.PENDING_PROVIDER_CONFIRMATION
            or appointment.confirmation_deadline is None
            or appointment.confirmation_deadline >= now
        ):
            return False

        await self._release(await expire_unconfirmed(db, appointment, now))
        await self._notify(db, NotificationEvent.BOOKING_CANCELED, appointment, canceled_by="system")
        return True

    async def expire_unpaid(self) -> SweepReport:
        """Cancel pending-payment bookings older than the payment window."""
        now = self._collab.now()
        cutoff = now - timedelta(hours=self._settings.PAYMENT_WINDOW_HOURS)
        ids = await self._candidate_ids(
            Appointment.status == AppointmentStatus.PENDING_PAYMENT,
            Appointment.created_at < cutoff,
        )
        return await self._scan("expire_unpaid", ids, self._expire_unpaid_one, now)

    async def _expire_unpaid_one(self, db: AsyncSession, appointment_id: UUID, now: datetime) -> bool:
        appointment = await get_appointment(db, appointment_id)
        cutoff = now - timedelta(hours=self._settings.PAYMENT_WINDOW_HOURS)
        if appointment.status != AppointmentStatus.PENDING_PAYMENT or appointment.created_at >= cutoff:
            return False

        release = payment_release(appointment)
        await apply_transition(
            db, appointment, AppointmentStatus.CANCELED, now,
            cancellation_reason=PAYMENT_EXPIRED_REASON, **release.changes(),
        )
        await self._release(release)
        await self._notify(db, NotificationEvent.BOOKING_CANCELED, appointment, canceled_by="system")
        return True

    async def complete_ended(self) -> SweepReport:
        """Mark scheduled sessions whose end has passed as completed."""
        now = self._collab.now()
        ids = await self._candidate_ids(
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.end < now,
        )
        return await self._scan("complete_ended", ids, self._complete_one, now)

    async def _complete_one(self, db: AsyncSession, appointment_id: UUID, now: datetime) -> bool:
        appointment = await get_appointment(db, appointment_id)
        if appointment.status != AppointmentStatus.SCHEDULED or appointment.end >= now:
            return False

        changes = {} if appointment.completion_note else {"completion_note": AUTO_COMPLETION_NOTE}
        await apply_transition(db, appointment, AppointmentStatus.COMPLETED, now, **changes)
        await self._notify(db, NotificationEvent.SESSION_COMPLETED, appointment, completed_by="system")
        return True

    async def send_reminders(self) -> SweepReport:
        """Remind both parties of scheduled sessions starting within the lead time."""
        now = self._collab.now()
        horizon = now + timedelta(hours=self._settings.REMINDER_LEAD_HOURS)
        ids = await self._candidate_ids(
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.start > now,
            Appointment.start <= horizon,
            Appointment.reminder_sent_at.is_(None),
        )
        return await self._scan("send_reminders", ids, self._remind_one, now)

    async def _remind_one(self, db: AsyncSession, appointment_id: UUID, now: datetime) -> bool:
        # Stamp first so a reminder goes out at most once even if two sweepers race.
        result = await db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.status == AppointmentStatus.SCHEDULED,
                Appointment.reminder_sent_at.is_(None),
            )
            .values({Appointment.reminder_sent_at: now, Appointment.updated_at: now})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            return False
        await db.commit()

        appointment = await get_appointment(db, appointment_id)
        await self._notify(db, NotificationEvent.SESSION_REMINDER, appointment)
        return True

    async def sweep_all(self) -> list[SweepReport]:
        return [
            await self.expire_unconfirmed(),
            await self.expire_unpaid(),
            await self.complete_ended(),
            await self.send_reminders(),
        ]
