"""Base adapter for payment provider integrations.

This module defines the abstract base class that every payment provider
must implement, plus the provider-neutral records the payment service works
with. Unlike lookups in the data store, provider failures are never
reported as None/False: adapters raise PaymentProviderError (or
PaymentProviderTimeout) so callers can tell a retryable network fault from
a business rejection.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from restaurant_ordering_service.observability.metrics import record_provider_call
from restaurant_ordering_service.services.exceptions import PaymentProviderTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderStatus(str, Enum):
    """Provider-neutral status of an intent or refund."""

    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class ProviderIntent:
    """Provider-side payment intent.

    Attributes:
        id: Provider-assigned identifier, stored as the payment's transaction id
        client_secret: Value the client needs to complete payment (approval URL
            for redirect providers)
        status: Normalized status
    """

    id: str
    client_secret: str
    status: ProviderStatus


@dataclass(frozen=True)
class ProviderRefund:
    """Provider-side refund."""

    id: str
    status: ProviderStatus


@dataclass(frozen=True)
class ProviderEvent:
    """Verified, normalized provider webhook event.

    Attributes:
        type: Provider event type (e.g. "payment_intent.succeeded")
        intent_id: Provider intent the event is about
        status: Status the event reports, None for events we do not act on
        reference: Payment reference from intent metadata, if present
        failure_reason: Provider failure message, if any
    """

    type: str
    intent_id: str
    status: ProviderStatus | None
    reference: str | None = None
    failure_reason: str | None = None


class PaymentProvider(ABC):
    """Abstract base class for payment providers.

    Amounts are integers in minor currency units. Every call is bounded by
    ``timeout_seconds``.
    """

    def __init__(self, provider_name: str, timeout_seconds: float = 10.0) -> None:
        """Initialize the payment provider.

        Args:
            provider_name: Name of the provider (e.g., 'stripe', 'paypal')
            timeout_seconds: Upper bound on each provider call
        """
        self.provider_name = provider_name
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        """Await a provider call with the configured timeout and record its latency.

        Raises:
            PaymentProviderTimeout: If the call does not finish in time
        """
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except TimeoutError as e:
            logger.warning(f"{self.provider_name} {operation} timed out after {self.timeout_seconds}s")
            raise PaymentProviderTimeout(
                f"Payment provider did not respond in time ({operation})"
            ) from e
        finally:
            record_provider_call(self.provider_name, operation, time.perf_counter() - started)

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> ProviderIntent:
        """Create a payment intent for the given amount.

        Args:
            amount: Amount in minor currency units
            currency: ISO 4217 currency code
            customer_email: Receipt email, if known
            metadata: Values echoed back in webhooks (order id, reference, customer name)

        Returns:
            ProviderIntent: The created intent

        Raises:
            PaymentProviderError: If the provider rejects or fails the call
        """

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        """Fetch the current state of an intent.

        Raises:
            PaymentProviderError: If the provider rejects or fails the call
        """

    @abstractmethod
    async def create_refund(
        self, transaction_id: str, amount: int, metadata: dict[str, str]
    ) -> ProviderRefund:
        """Refund a settled intent.

        Args:
            transaction_id: Provider intent id of the original payment
            amount: Amount to refund in minor currency units
            metadata: Values attached to the refund for reconciliation

        Returns:
            ProviderRefund: The created refund

        Raises:
            PaymentProviderError: If the provider rejects or fails the call
        """
