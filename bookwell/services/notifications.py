"""Notification collaborator interface and its default adapters.

The engine only says *what* happened (``NotificationEvent``) and to which
appointment; delivery is up to the adapter. ``TwilioSmsNotifier`` texts both
parties, ``LoggingNotifier`` just logs (used when Twilio is not configured).
"""

import asyncio
import enum
import logging
from typing import Any, Protocol, runtime_checkable
from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from bookwell.schemas.appointment import AppointmentOut

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    BOOKING_FAILED = "booking-failed"
    BOOKING_CREATED = "booking-created"
    BOOKING_CONFIRMED = "booking-confirmed"
    BOOKING_CANCELED = "booking-canceled"
    SESSION_COMPLETED = "session-completed"
    SESSION_REMINDER = "session-reminder"
    FOLLOWUP_CREATED = "followup-created"


@runtime_checkable
class Notifier(Protocol):
    async def notify(
        self,
        event: NotificationEvent,
        appointment: AppointmentOut | None,
        context: dict[str, Any],
    ) -> None:
        ...


class LoggingNotifier:
    """Logs notifications instead of delivering them."""

    async def notify(self, event, appointment, context) -> None:
        logger.info(
            "Notification %s for appointment %s (context keys: %s)",
            event.value,
            appointment.id if appointment else None,
            ", ".join(sorted(context)),
        )


_TEMPLATES = {
    NotificationEvent.BOOKING_FAILED: "Your booking with {provider} at {start} could not be made: {error}",
    NotificationEvent.BOOKING_CREATED: "Session with {provider} requested for {start}. Awaiting confirmation.",
    NotificationEvent.BOOKING_CONFIRMED: "Your session with {provider} on {start} is confirmed.",
    NotificationEvent.BOOKING_CANCELED: "Your session with {provider} on {start} was canceled: {reason}",
    NotificationEvent.SESSION_COMPLETED: "Your session with {provider} on {start} is complete.",
    NotificationEvent.SESSION_REMINDER: "Reminder: session with {provider} on {start}.",
    NotificationEvent.FOLLOWUP_CREATED: "{provider} recommended a follow-up on {start}. Complete payment to book it.",
}


class TwilioSmsNotifier:
    """Sends one SMS per party through Twilio."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self._client = Client(account_sid, auth_token)
        self._from_number = from_number

    def render(self, event: NotificationEvent, appointment: AppointmentOut | None, context: dict[str, Any]) -> str:
        provider = context.get("provider")
        start = appointment.start if appointment else context.get("start")
        return _TEMPLATES[event].format(
            provider=getattr(provider, "display_name", "your provider"),
            start=f"{start:%Y-%m-%d %H:%M} UTC" if start else "the requested time",
            reason=(appointment.cancellation_reason if appointment else None) or "no reason given",
            error=context.get("error", "slot unavailable"),
        )

    async def notify(self, event, appointment, context) -> None:
        body = self.render(event, appointment, context)
        # A failed booking never reached the provider's calendar.
        roles = ("consumer",) if event == NotificationEvent.BOOKING_FAILED else ("consumer", "provider")
        phones = [getattr(context.get(role), "phone", None) for role in roles]
        for phone in filter(None, phones):
            await self._send_sms(phone, body)

    async def _send_sms(self, to: str, body: str) -> None:
        try:
            message = await asyncio.to_thread(
                self._client.messages.create,
                body=body,
                from_=self._from_number,
                to=to,
            )
            logger.info("SMS sent to %s — SID: %s", to, message.sid)
        except TwilioRestException as e:
            logger.error("Twilio error sending SMS to %s: %s", to, e)
            raise
