"""Stripe payment provider.

Card, Apple Pay and Google Pay payments all go through Stripe
PaymentIntents with automatic payment methods. The Stripe SDK is
synchronous, so each call runs in a worker thread under the provider
timeout.
"""

import asyncio
import logging
from typing import Any

import stripe

from restaurant_ordering_service.adapters.base_adapter import (
    PaymentProvider,
    ProviderEvent,
    ProviderIntent,
    ProviderRefund,
    ProviderStatus,
)
from restaurant_ordering_service.services.exceptions import PaymentProviderError, ValidationError

logger = logging.getLogger(__name__)

_INTENT_STATUSES = {
    "succeeded": ProviderStatus.SUCCEEDED,
    "processing": ProviderStatus.PROCESSING,
    "canceled": ProviderStatus.CANCELED,
}

_REFUND_STATUSES = {
    "succeeded": ProviderStatus.SUCCEEDED,
    "pending": ProviderStatus.PROCESSING,
    "requires_action": ProviderStatus.REQUIRES_ACTION,
    "failed": ProviderStatus.FAILED,
    "canceled": ProviderStatus.CANCELED,
}

_EVENT_STATUSES = {
    "payment_intent.succeeded": ProviderStatus.SUCCEEDED,
    "payment_intent.processing": ProviderStatus.PROCESSING,
    "payment_intent.payment_failed": ProviderStatus.FAILED,
    "payment_intent.canceled": ProviderStatus.CANCELED,
}

# Errors where retrying the same request may succeed
_RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


def _intent_status(status: str) -> ProviderStatus:
    # requires_payment_method, requires_confirmation, requires_action, requires_capture
    return _INTENT_STATUSES.get(status, ProviderStatus.REQUIRES_ACTION)


class StripeProvider(PaymentProvider):
    """Stripe PaymentIntents integration."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        """Initialize Stripe provider.

        Args:
            secret_key: Stripe secret API key
            webhook_secret: Signing secret for webhook verification
            timeout_seconds: Upper bound on each Stripe call
        """
        super().__init__("stripe", timeout_seconds)
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    async def _call(self, operation: str, func: Any, **params: Any) -> Any:
        try:
            return await self._bounded(
                operation, asyncio.to_thread(func, api_key=self.secret_key, **params)
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise PaymentProviderError(
                f"Payment provider error: {e.user_message or 'request failed'}",
                retryable=isinstance(e, _RETRYABLE_ERRORS),
            ) from e

    async def create_intent(
        self,
        amount: int,
        currency: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> ProviderIntent:
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        if customer_email:
            params["receipt_email"] = customer_email
        if "customer_name" in metadata:
            params["description"] = f"Order payment for {metadata['customer_name']}"

        intent = await self._call("create_intent", stripe.PaymentIntent.create, **params)
        logger.info(f"Stripe PaymentIntent created: {intent.id}")

        return ProviderIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            status=_intent_status(intent.status),
        )

    async def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        intent = await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, id=intent_id)
        return ProviderIntent(
            id=intent.id,
            client_secret=intent.client_secret or "",
            status=_intent_status(intent.status),
        )

    async def create_refund(
        self, transaction_id: str, amount: int, metadata: dict[str, str]
    ) -> ProviderRefund:
        refund = await self._call(
            "create_refund",
            stripe.Refund.create,
            payment_intent=transaction_id,
            amount=amount,
            metadata=metadata,
        )
        logger.info(f"Stripe refund {refund.id} created for {transaction_id}: {refund.status}")

        return ProviderRefund(
            id=refund.id,
            status=_REFUND_STATUSES.get(refund.status, ProviderStatus.PROCESSING),
        )

    def construct_event(self, payload: bytes, signature: str | None) -> ProviderEvent:
        """Verify a webhook payload and normalize it.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header

        Returns:
            ProviderEvent: Normalized event

        Raises:
            ValidationError: If the payload or signature is invalid
        """
        if not self.webhook_secret:
            raise ValidationError("Stripe webhook secret is not configured")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.error(f"Stripe webhook: Invalid payload - {e}")
            raise ValidationError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook: Invalid signature - {e}")
            raise ValidationError("Invalid webhook signature") from e

        intent = event["data"]["object"]
        metadata = intent.get("metadata") or {}
        last_error = intent.get("last_payment_error") or {}

        return ProviderEvent(
            type=event["type"],
            intent_id=intent["id"],
            status=_EVENT_STATUSES.get(event["type"]),
            reference=metadata.get("reference"),
            failure_reason=last_error.get("message"),
        )
