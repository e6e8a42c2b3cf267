"""Everything the engine reaches outside itself, bundled for injection.

Request handlers and the sweeper receive one ``Collaborators`` instance
(built at startup, replaced with fakes in tests) instead of importing
module-level clients.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import UUID

from bookwell.core.config import Settings
from bookwell.schemas.appointment import AppointmentOut
from bookwell.services.notifications import LoggingNotifier, NotificationEvent, Notifier, TwilioSmsNotifier
from bookwell.services.payments import LoggingPaymentGateway, PaymentGateway, StripePaymentGateway
from bookwell.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class SideEffectRunner:
    """Runs refunds and notifications with a hard time limit.

    Failures and timeouts are logged and swallowed: by the time a side effect
    runs, the state transition that caused it is already committed.
    """

    def __init__(self, timeout_seconds: float):
        self._timeout = timeout_seconds
        self._pending: set[asyncio.Task] = set()
        self.failed = 0

    async def run(self, label: str, factory: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await asyncio.wait_for(factory(), timeout=self._timeout)
            return True
        except asyncio.TimeoutError:
            self.failed += 1
            logger.error("Side effect %s timed out after %.1fs", label, self._timeout)
        except Exception as exc:
            self.failed += 1
            logger.error("Side effect %s failed: %s", label, exc, exc_info=True)
        return False

    def fire(self, label: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """Start a side effect in the background without waiting for it."""
        task = asyncio.create_task(self.run(label, factory))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every fired side effect (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))


class ProviderLocks:
    """One asyncio lock per provider, serializing calendar writes in-process.

    A provider's lock exists only while someone holds or waits for it.
    """

    def __init__(self):
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._holders: dict[UUID, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def for_provider(self, provider_id: UUID):
        lock = self._locks.setdefault(provider_id, asyncio.Lock())
        self._holders[provider_id] = self._holders.get(provider_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[provider_id] -= 1
            if not self._holders[provider_id]:
                del self._holders[provider_id]
                del self._locks[provider_id]


@dataclass
class Collaborators:
    notifier: Notifier
    payments: PaymentGateway
    effects: SideEffectRunner
    locks: ProviderLocks = field(default_factory=ProviderLocks)
    clock: Clock = utcnow

    def now(self):
        return self.clock()

    def notice(self, event: NotificationEvent, appointment: AppointmentOut | None, context: dict[str, Any]):
        """Fire-and-forget notification."""
        label = f"notify:{event.value}:{appointment.id if appointment else '-'}"
        return self.effects.fire(label, lambda: self.notifier.notify(event, appointment, context))

    def refund(self, transaction_id: str):
        return self.effects.fire(f"refund:{transaction_id}", lambda: self.payments.request_refund(transaction_id))

    def cancel_payment(self, transaction_id: str):
        return self.effects.fire(
            f"cancel-payment:{transaction_id}", lambda: self.payments.cancel_payment(transaction_id),
        )

    def release_payment(self, release) -> None:
        """Refund or void whatever a canceled appointment was holding."""
        if release.refund_ref:
            self.refund(release.refund_ref)
        elif release.void_ref:
            self.cancel_payment(release.void_ref)


def build_collaborators(settings: Settings) -> Collaborators:
    if all([settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, settings.TWILIO_PHONE_NUMBER]):
        notifier: Notifier = TwilioSmsNotifier(
            settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, settings.TWILIO_PHONE_NUMBER,
        )
    else:
        logger.warning("Twilio credentials not configured, notifications will only be logged")
        notifier = LoggingNotifier()

    if settings.STRIPE_API_KEY:
        payments: PaymentGateway = StripePaymentGateway(settings.STRIPE_API_KEY)
    else:
        logger.warning("Stripe not configured, refunds will only be logged")
        payments = LoggingPaymentGateway()

    return Collaborators(
        notifier=notifier,
        payments=payments,
        effects=SideEffectRunner(settings.SIDE_EFFECT_TIMEOUT_SECONDS),
    )
