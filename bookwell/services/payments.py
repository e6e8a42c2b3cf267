"""Payment collaborator interface.

The engine never charges anyone. It only asks the payment side to refund a
settled transaction or to cancel one that never settled.
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable
import stripe

logger = logging.getLogger(__name__)


@runtime_checkable
class PaymentGateway(Protocol):
    async def request_refund(self, transaction_id: str) -> None:
        ...

    async def cancel_payment(self, transaction_id: str) -> None:
        ...


class LoggingPaymentGateway:
    """Used when Stripe is not configured."""

    async def request_refund(self, transaction_id: str) -> None:
        logger.warning("Stripe not configured, refund for %s only logged", transaction_id)

    async def cancel_payment(self, transaction_id: str) -> None:
        logger.warning("Stripe not configured, cancellation of %s only logged", transaction_id)


class StripePaymentGateway:
    """Refunds and cancels Stripe PaymentIntents."""

    def __init__(self, api_key: str):
        self._api_key = api_key

    async def request_refund(self, transaction_id: str) -> None:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=transaction_id,
                api_key=self._api_key,
            )
            logger.info("Requested refund %s for payment %s", refund.id, transaction_id)
        except stripe.error.StripeError as e:
            logger.error("Stripe error refunding %s: %s", transaction_id, e)
            raise

    async def cancel_payment(self, transaction_id: str) -> None:
        try:
            await asyncio.to_thread(
                stripe.PaymentIntent.cancel,
                transaction_id,
                api_key=self._api_key,
            )
            logger.info("Canceled pending payment %s", transaction_id)
        except stripe.error.StripeError as e:
            logger.error("Stripe error canceling %s: %s", transaction_id, e)
            raise
