"""Payment coordinator.

Creates payment intents against an order, verifies and settles them with
the provider, applies provider webhooks and issues refunds. Business-rule
checks always run before any provider call; provider failures propagate as
PaymentProviderError so callers can tell them apart from rejections.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from restaurant_ordering_service.adapters.base_adapter import (
    PaymentProvider,
    ProviderEvent,
    ProviderStatus,
)
from restaurant_ordering_service.models.business_config import BusinessConfig
from restaurant_ordering_service.models.order_models import Order, OrderStatus
from restaurant_ordering_service.models.payment_models import (
    Payment,
    PaymentIntentResult,
    PaymentMethod,
    PaymentMethodOption,
    PaymentStats,
    PaymentStatus,
)
from restaurant_ordering_service.observability import traced
from restaurant_ordering_service.observability.metrics import (
    record_order_transition,
    record_payment_event,
)
from restaurant_ordering_service.repositories.base_store import DataStore
from restaurant_ordering_service.services.exceptions import (
    BusinessLogicError,
    ConflictError,
    NotFoundError,
    PaymentProviderError,
)
from restaurant_ordering_service.services.order_service import OrderService
from restaurant_ordering_service.services.pricing import generate_payment_reference
from restaurant_ordering_service.services.status_machine import can_transition_payment

logger = logging.getLogger(__name__)

# Provider that handles each online payment method
METHOD_PROVIDERS: dict[PaymentMethod, str] = {
    PaymentMethod.CARD: "stripe",
    PaymentMethod.APPLE_PAY: "stripe",
    PaymentMethod.GOOGLE_PAY: "stripe",
    PaymentMethod.PAYPAL: "paypal",
}

METHOD_NAMES: dict[PaymentMethod, str] = {
    PaymentMethod.CARD: "Credit/Debit Card",
    PaymentMethod.APPLE_PAY: "Apple Pay",
    PaymentMethod.GOOGLE_PAY: "Google Pay",
    PaymentMethod.PAYPAL: "PayPal",
    PaymentMethod.CASH: "Cash on pickup",
}

# Payment status each provider status settles to; requires_action leaves the payment alone
_SETTLED_STATUSES: dict[ProviderStatus, PaymentStatus] = {
    ProviderStatus.SUCCEEDED: PaymentStatus.COMPLETED,
    ProviderStatus.PROCESSING: PaymentStatus.PROCESSING,
    ProviderStatus.FAILED: PaymentStatus.FAILED,
    ProviderStatus.CANCELED: PaymentStatus.FAILED,
}


@dataclass
class Settlement:
    """Outcome of verifying or applying a provider update to a payment.

    Attributes:
        payment: The payment after the update
        order: The order, when settlement changed it
        order_confirmed: Whether the order moved from PENDING to CONFIRMED
    """

    payment: Payment
    order: Order | None = None
    order_confirmed: bool = False


class PaymentService:
    """Service coordinating payments between orders and payment providers."""

    def __init__(
        self,
        store: DataStore,
        order_service: OrderService,
        providers: dict[str, PaymentProvider],
        config: BusinessConfig,
    ) -> None:
        """Initialize the PaymentService.

        Args:
            store: Transactional data store
            order_service: Order aggregate, used to confirm orders on settlement
            providers: Configured payment providers keyed by provider name
            config: Business settings (currency)
        """
        self.store = store
        self.order_service = order_service
        self.providers = providers
        self.config = config

    def _provider_for_method(self, method: PaymentMethod) -> PaymentProvider:
        if method == PaymentMethod.CASH:
            raise BusinessLogicError("Cash payments are settled at pickup and need no payment intent")

        provider = self.providers.get(METHOD_PROVIDERS[method])
        if provider is None:
            raise BusinessLogicError(f"Payment method {method.value} is not available")
        return provider

    def _provider_for_payment(self, payment: Payment) -> PaymentProvider:
        name = payment.metadata.get("provider") or METHOD_PROVIDERS[payment.method]
        provider = self.providers.get(name)
        if provider is None:
            raise PaymentProviderError(f"Payment provider {name} is not configured", retryable=False)
        return provider

    @traced("create_payment_intent")
    async def create_payment_intent(
        self,
        order_id: str,
        amount: int,
        currency: str,
        method: PaymentMethod,
        customer_email: str | None = None,
    ) -> PaymentIntentResult:
        """Start a payment for an order.

        The PENDING payment is committed before the provider is called. If
        the provider call fails, the payment stays PENDING with no
        transaction id and the typed provider error propagates.

        Args:
            order_id: Order being paid
            amount: Amount in minor units; must equal the order total exactly
            currency: ISO currency code
            method: Payment method
            customer_email: Receipt email

        Returns:
            PaymentIntentResult: Client secret, provider intent id and payment reference

        Raises:
            NotFoundError: If the order does not exist
            BusinessLogicError: If the order is not PENDING, the amount or
                currency does not match, another payment is already
                processing or completed, or the method has no provider
            PaymentProviderError: If the provider call fails
        """
        async with self.store.transaction() as tx:
            order = await tx.get_order(order_id)
            if order is None:
                raise NotFoundError("Order not found")

            if order.status != OrderStatus.PENDING:
                raise BusinessLogicError("Order is not in a payable state")

            if amount != order.total:
                logger.warning(
                    f"Payment amount {amount} does not match total {order.total} "
                    f"for order {order.order_number}"
                )
                raise BusinessLogicError("Payment amount does not match order total")

            if currency.upper() != self.config.currency:
                raise BusinessLogicError("Payment currency does not match order currency")

            for existing in await tx.list_payments_for_order(order.id):
                if existing.status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED):
                    raise BusinessLogicError("Order already has a payment in progress")

            provider = self._provider_for_method(method)

            payment = Payment(
                id=str(uuid.uuid4()),
                order_id=order.id,
                amount=amount,
                currency=currency,
                method=method,
                reference=generate_payment_reference(),
                metadata={"provider": provider.provider_name},
            )
            await tx.create_payment(payment)

        try:
            intent = await provider.create_intent(
                amount=amount,
                currency=payment.currency,
                customer_email=customer_email or order.customer_email,
                metadata={
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "reference": payment.reference,
                    "customer_name": order.customer_name,
                },
            )
        except PaymentProviderError as e:
            record_payment_event(method.value, "intent_failed")
            logger.warning(
                f"Provider failed creating intent for {payment.reference}, payment left PENDING: {e.message}"
            )
            raise

        metadata = {**payment.metadata, "intent_status": intent.status.value}
        if method == PaymentMethod.PAYPAL:
            metadata["approval_url"] = intent.client_secret

        async with self.store.transaction() as tx:
            await tx.update_payment(
                payment.model_copy(
                    update={
                        "transaction_id": intent.id,
                        "metadata": metadata,
                        "updated_at": datetime.now(UTC),
                    }
                ),
                expected_status=PaymentStatus.PENDING,
            )

        record_payment_event(method.value, "intent_created")
        logger.info(f"Created payment {payment.reference} ({intent.id}) for order {order.order_number}")

        return PaymentIntentResult(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            reference=payment.reference,
        )

    async def _apply_provider_status(
        self,
        payment: Payment,
        provider_status: ProviderStatus,
        failure_reason: str | None = None,
    ) -> Settlement:
        """Move a payment to the status the provider reports.

        A COMPLETED payment confirms its PENDING order in the same
        transaction. A second payment completing for one order is flagged
        for refund in its metadata and leaves the order alone. A transition
        already applied by a concurrent caller is reported as that caller's
        result.
        """
        target = _SETTLED_STATUSES.get(provider_status)
        if target is None:
            return Settlement(payment=payment)

        try:
            async with self.store.transaction() as tx:
                current = await tx.get_payment(payment.id)
                if current is None:
                    raise NotFoundError("Payment not found")

                if current.status == target or not can_transition_payment(current.status, target):
                    return Settlement(payment=current)

                metadata = dict(current.metadata)
                if failure_reason:
                    metadata["failure_reason"] = failure_reason

                order = None
                order_confirmed = False
                settled: list[Payment] = []
                if target == PaymentStatus.COMPLETED:
                    order = await tx.get_order(current.order_id)
                    settled = [
                        other
                        for other in await tx.list_payments_for_order(current.order_id)
                        if other.id != current.id and other.status == PaymentStatus.COMPLETED
                    ]
                    if settled:
                        metadata["refund_required"] = "duplicate_payment"
                        metadata["duplicate_of"] = settled[0].reference
                        logger.warning(
                            f"Payment {current.reference} duplicates completed payment "
                            f"{settled[0].reference}; refund required"
                        )
                    elif order is not None and order.status == OrderStatus.CANCELLED:
                        metadata["refund_required"] = "order_cancelled"
                        logger.warning(
                            f"Payment {current.reference} completed for cancelled order "
                            f"{order.order_number}; refund required"
                        )

                updated = current.model_copy(
                    update={"status": target, "metadata": metadata, "updated_at": datetime.now(UTC)}
                )
                await tx.update_payment(updated, expected_status=current.status)

                if order is not None and order.status == OrderStatus.PENDING and not settled:
                    order = await self.order_service.transition(tx, order, OrderStatus.CONFIRMED)
                    order_confirmed = True
        except ConflictError:
            async with self.store.transaction() as tx:
                latest = await tx.get_payment(payment.id)
            if latest is not None and latest.status == target:
                logger.info(f"Payment {payment.reference} was settled concurrently")
                return Settlement(payment=latest)
            raise

        record_payment_event(updated.method.value, target.value.lower())
        if order_confirmed:
            record_order_transition(OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value)
        logger.info(f"Payment {updated.reference}: {current.status.value} -> {target.value}")

        return Settlement(payment=updated, order=order, order_confirmed=order_confirmed)

    @traced("verify_payment")
    async def verify_and_settle(self, reference: str) -> Settlement:
        """Check a payment with its provider and settle it.

        Already COMPLETED payments return immediately without a provider
        call, so repeated verification has no further effect. FAILED payments
        are checked again because the customer may retry the same intent.

        Raises:
            NotFoundError: If no payment has this reference
            PaymentProviderError: If the provider lookup fails
        """
        async with self.store.transaction() as tx:
            payment = await tx.get_payment_by_reference(reference)
        if payment is None:
            raise NotFoundError("Payment not found")

        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            return Settlement(payment=payment)

        if payment.transaction_id is None:
            # Intent creation never reached the provider
            return Settlement(payment=payment)

        provider = self._provider_for_payment(payment)
        intent = await provider.retrieve_intent(payment.transaction_id)
        logger.info(f"Provider reports {intent.status.value} for payment {reference}")

        return await self._apply_provider_status(payment, intent.status)

    async def verify_payment(self, reference: str) -> Payment:
        """Verify a payment by reference and return its current state."""
        settlement = await self.verify_and_settle(reference)
        return settlement.payment

    @traced("apply_provider_event")
    async def apply_provider_event(self, event: ProviderEvent) -> Settlement | None:
        """Apply a verified provider webhook event.

        Returns:
            Settlement, or None when the event is not actionable or matches no payment
        """
        if event.status is None:
            logger.debug(f"Ignoring provider event {event.type}")
            return None

        async with self.store.transaction() as tx:
            payment = None
            if event.reference:
                payment = await tx.get_payment_by_reference(event.reference)
            if payment is None:
                payment = await tx.get_payment_by_transaction_id(event.intent_id)

        if payment is None:
            logger.warning(f"No payment found for provider event {event.type} on {event.intent_id}")
            return None

        return await self._apply_provider_status(payment, event.status, event.failure_reason)

    @traced("refund_payment")
    async def refund_payment(self, payment_id: str) -> Payment:
        """Refund a completed payment in full.

        Raises:
            NotFoundError: If the payment does not exist
            BusinessLogicError: If the payment is not COMPLETED
            PaymentProviderError: If the provider fails or declines the refund
        """
        async with self.store.transaction() as tx:
            payment = await tx.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")

        if payment.status != PaymentStatus.COMPLETED:
            raise BusinessLogicError("Can only refund completed payments")

        if payment.transaction_id is None:
            raise BusinessLogicError("Payment has no provider transaction to refund")

        provider = self._provider_for_payment(payment)
        refund = await provider.create_refund(
            payment.transaction_id,
            payment.amount,
            {"payment_id": payment.id, "reference": payment.reference},
        )

        if refund.status in (ProviderStatus.FAILED, ProviderStatus.CANCELED):
            record_payment_event(payment.method.value, "refund_failed")
            raise PaymentProviderError("Refund was declined by the payment provider", retryable=False)

        updated = payment.model_copy(
            update={
                "status": PaymentStatus.REFUNDED,
                "metadata": {
                    **payment.metadata,
                    "refund_id": refund.id,
                    "refund_status": refund.status.value,
                },
                "updated_at": datetime.now(UTC),
            }
        )
        async with self.store.transaction() as tx:
            await tx.update_payment(updated, expected_status=PaymentStatus.COMPLETED)

        record_payment_event(payment.method.value, "refunded")
        logger.info(f"Refunded payment {payment.reference} ({refund.id})")
        return updated

    async def get_payments_for_order(self, order_id: str) -> list[Payment]:
        """Payment attempts for an order, newest first.

        Raises:
            NotFoundError: If the order does not exist
        """
        async with self.store.transaction() as tx:
            if await tx.get_order(order_id) is None:
                raise NotFoundError("Order not found")
            return await tx.list_payments_for_order(order_id)

    def get_payment_methods(self) -> list[PaymentMethodOption]:
        """Payment methods offered at checkout, with whether each is usable."""
        options = []
        for method in PaymentMethod:
            provider_name = METHOD_PROVIDERS.get(method)
            options.append(
                PaymentMethodOption(
                    method=method,
                    display_name=METHOD_NAMES[method],
                    enabled=provider_name is None or provider_name in self.providers,
                    online=provider_name is not None,
                )
            )
        return options

    async def get_payment_stats(self) -> PaymentStats:
        """Aggregate payment figures."""
        async with self.store.transaction() as tx:
            return PaymentStats(
                total_payments=await tx.count_payments(),
                total_revenue=await tx.sum_payment_amounts(PaymentStatus.COMPLETED),
                successful_payments=await tx.count_payments(PaymentStatus.COMPLETED),
                failed_payments=await tx.count_payments(PaymentStatus.FAILED),
                refunded_amount=await tx.sum_payment_amounts(PaymentStatus.REFUNDED),
                payment_method_distribution=await tx.count_payments_by_method(),
            )
