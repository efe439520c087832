"""Order service: creation, status transitions and queries.

Order creation reads menu items, queue length and writes the order inside
one transaction, so an order is either stored complete with all of its
lines or not at all. Every status change goes through the order status
table in ``status_machine``.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from restaurant_ordering_service.models.business_config import BusinessConfig
from restaurant_ordering_service.models.order_models import (
    CustomerInfo,
    DeliveryAddress,
    Order,
    OrderFilters,
    OrderItem,
    OrderItemRequest,
    OrderPage,
    OrderStatus,
    OrderTracking,
    OrderType,
)
from restaurant_ordering_service.models.payment_models import PaymentStatus
from restaurant_ordering_service.observability import traced
from restaurant_ordering_service.observability.metrics import (
    record_order_created,
    record_order_transition,
)
from restaurant_ordering_service.repositories.base_store import DataStore, Transaction
from restaurant_ordering_service.services.exceptions import (
    BusinessLogicError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from restaurant_ordering_service.services.pricing import (
    calculate_delivery_fee,
    compute_totals,
    estimate_ready_time,
    format_amount,
    generate_order_number,
    validate_minimum_order,
)
from restaurant_ordering_service.services.status_machine import (
    ACTIVE_ORDER_STATUSES,
    validate_order_transition,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
EXPIRED_ORDER_REASON = "Payment not completed in time"


class OrderService:
    """Service owning the order aggregate and its status machine."""

    def __init__(self, store: DataStore, config: BusinessConfig) -> None:
        """Initialize the OrderService.

        Args:
            store: Transactional data store
            config: Tax, fee, minimum order and timeout settings
        """
        self.store = store
        self.config = config

    @traced("create_order")
    async def create_order(
        self,
        customer: CustomerInfo,
        order_type: OrderType,
        items: list[OrderItemRequest],
        special_instructions: str | None = None,
        delivery_address: DeliveryAddress | None = None,
    ) -> Order:
        """Price and persist a new order.

        Menu items are re-read inside the transaction and their current
        price is snapshotted onto each line. The queue length used for the
        ready-time estimate is read in the same transaction.

        Args:
            customer: Customer contact details
            order_type: PICKUP or DELIVERY
            items: Requested cart lines
            special_instructions: Free-text kitchen notes
            delivery_address: Required for DELIVERY orders

        Returns:
            Order: The stored order in PENDING status

        Raises:
            ValidationError: Empty cart or missing delivery address
            BusinessLogicError: Unknown or unavailable item, or below the minimum order
        """
        if not items:
            raise ValidationError("Order must contain at least one item")

        if order_type == OrderType.DELIVERY and delivery_address is None:
            raise ValidationError("Delivery address is required for delivery orders")

        async with self.store.transaction() as tx:
            lines: list[OrderItem] = []
            for request in items:
                menu_item = await tx.get_menu_item(request.menu_item_id, for_order=True)
                if menu_item is None:
                    raise BusinessLogicError(f"Menu item {request.menu_item_id} not found")
                if not menu_item.is_available:
                    raise BusinessLogicError(f"{menu_item.name} is currently unavailable")

                lines.append(
                    OrderItem(
                        id=str(uuid.uuid4()),
                        menu_item_id=menu_item.id,
                        menu_item_name=menu_item.name,
                        quantity=request.quantity,
                        unit_price=menu_item.price,
                        subtotal=menu_item.price * request.quantity,
                        preparation_time=menu_item.preparation_time,
                        customizations=request.customizations,
                    )
                )

            subtotal = sum(line.subtotal for line in lines)
            if not validate_minimum_order(subtotal, self.config.minimum_order_amount):
                raise BusinessLogicError(
                    "Minimum order amount is "
                    f"{format_amount(self.config.minimum_order_amount, self.config.currency)}"
                )

            delivery_fee = calculate_delivery_fee(order_type, self.config.delivery_fee)
            totals = compute_totals(subtotal, self.config.tax_rate, delivery_fee)

            queue_length = await tx.count_orders(ACTIVE_ORDER_STATUSES)
            now = datetime.now(UTC)

            order = Order(
                id=str(uuid.uuid4()),
                order_number=generate_order_number(),
                customer_name=customer.name,
                customer_phone=customer.phone,
                customer_email=customer.email,
                order_type=order_type,
                delivery_address=delivery_address if order_type == OrderType.DELIVERY else None,
                items=lines,
                subtotal=subtotal,
                tax=totals.tax,
                delivery_fee=delivery_fee,
                total=totals.total,
                estimated_ready_time=estimate_ready_time(
                    [line.preparation_time for line in lines], queue_length, now
                ),
                special_instructions=special_instructions,
                created_at=now,
                updated_at=now,
            )
            await tx.create_order(order)

        record_order_created(order_type.value)
        logger.info(
            f"Created order {order.order_number} ({order_type.value}, {len(lines)} lines, "
            f"total {order.total})"
        )
        return order

    async def transition(
        self,
        tx: Transaction,
        order: Order,
        new_status: OrderStatus,
        cancellation_reason: str | None = None,
    ) -> Order:
        """Apply a validated status transition within an open transaction.

        Args:
            tx: Transaction the caller already holds
            order: Order as read in that transaction
            new_status: Requested status
            cancellation_reason: Stored when cancelling

        Returns:
            Order: The updated order, written to ``tx``

        Raises:
            BusinessLogicError: If the transition is not allowed
        """
        validate_order_transition(order.status, new_status)

        now = datetime.now(UTC)
        changes: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == OrderStatus.READY:
            changes["actual_ready_time"] = now
        if new_status == OrderStatus.CANCELLED and cancellation_reason:
            changes["cancellation_reason"] = cancellation_reason

        updated = order.model_copy(update=changes)
        await tx.update_order(updated, expected_status=order.status)
        return updated

    async def _load_order(self, tx: Transaction, order_id: str) -> Order:
        order = await tx.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    @traced("update_order_status")
    async def update_order_status(self, order_id: str, new_status: OrderStatus) -> Order:
        """Move an order to a new status.

        Raises:
            NotFoundError: If the order does not exist
            BusinessLogicError: If the transition is not allowed
        """
        async with self.store.transaction() as tx:
            order = await self._load_order(tx, order_id)
            previous = order.status
            updated = await self.transition(tx, order, new_status)

        record_order_transition(previous.value, new_status.value)
        logger.info(f"Order {updated.order_number}: {previous.value} -> {new_status.value}")
        return updated

    @traced("cancel_order")
    async def cancel_order(self, order_id: str, reason: str | None = None) -> Order:
        """Cancel an order that has not reached READY.

        Args:
            order_id: Order to cancel
            reason: Human-readable reason kept for audit

        Raises:
            NotFoundError: If the order does not exist
            BusinessLogicError: If the order is READY or already terminal
        """
        async with self.store.transaction() as tx:
            order = await self._load_order(tx, order_id)
            previous = order.status
            updated = await self.transition(tx, order, OrderStatus.CANCELLED, reason)

        record_order_transition(previous.value, OrderStatus.CANCELLED.value)
        logger.info(f"Order {updated.order_number} cancelled from {previous.value}: {reason}")
        return updated

    async def update_estimated_ready_time(self, order_id: str, estimated_ready_time: datetime) -> Order:
        """Override the ready-time estimate of an order in the kitchen.

        Raises:
            NotFoundError: If the order does not exist
            BusinessLogicError: If the order is not CONFIRMED or PREPARING
        """
        async with self.store.transaction() as tx:
            order = await self._load_order(tx, order_id)
            if order.status not in ACTIVE_ORDER_STATUSES:
                raise BusinessLogicError(
                    "Can only update estimated time for confirmed or preparing orders"
                )

            updated = order.model_copy(
                update={"estimated_ready_time": estimated_ready_time, "updated_at": datetime.now(UTC)}
            )
            await tx.update_order(updated, expected_status=order.status)

        return updated

    async def get_order_by_id(self, order_id: str) -> Order:
        """Get an order by id.

        Raises:
            NotFoundError: If the order does not exist
        """
        async with self.store.transaction() as tx:
            return await self._load_order(tx, order_id)

    async def get_order_by_number(self, order_number: str) -> Order:
        """Get an order by its order number.

        Raises:
            NotFoundError: If the order does not exist
        """
        async with self.store.transaction() as tx:
            order = await tx.get_order_by_number(order_number)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    async def get_orders(
        self, filters: OrderFilters | None = None, page: int = 1, limit: int = 20
    ) -> OrderPage:
        """List orders newest first, one page at a time.

        Raises:
            ValidationError: If page or limit is out of range
        """
        if page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        async with self.store.transaction() as tx:
            orders, total = await tx.list_orders(filters or OrderFilters(), (page - 1) * limit, limit)

        return OrderPage(orders=orders, total=total, page=page, limit=limit)

    async def get_order_queue(self) -> list[Order]:
        """Orders confirmed or in preparation, oldest first."""
        async with self.store.transaction() as tx:
            return await tx.list_orders_by_status(ACTIVE_ORDER_STATUSES)

    async def get_orders_by_status(self, status: OrderStatus) -> list[Order]:
        """Orders in one status, oldest first."""
        async with self.store.transaction() as tx:
            return await tx.list_orders_by_status((status,))

    async def track_order(self, order_number: str) -> OrderTracking:
        """Public tracking view with the order's place in the kitchen queue.

        Raises:
            NotFoundError: If the order does not exist
        """
        async with self.store.transaction() as tx:
            order = await tx.get_order_by_number(order_number)
            if order is None:
                raise NotFoundError("Order not found")

            queue_position = None
            if order.status in ACTIVE_ORDER_STATUSES:
                queue = await tx.list_orders_by_status(ACTIVE_ORDER_STATUSES)
                ids = [queued.id for queued in queue]
                queue_position = ids.index(order.id) + 1 if order.id in ids else None

        return OrderTracking(
            order_number=order.order_number,
            status=order.status,
            order_type=order.order_type,
            total=order.total,
            estimated_ready_time=order.estimated_ready_time,
            actual_ready_time=order.actual_ready_time,
            queue_position=queue_position,
            created_at=order.created_at,
        )

    @traced("expire_unpaid_orders")
    async def expire_unpaid_orders(self, now: datetime | None = None) -> list[Order]:
        """Cancel PENDING orders whose payment window has passed.

        Orders with a payment still settling at the provider are left alone.
        Each order is cancelled in its own transaction; one that changed
        status concurrently is skipped.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            list[Order]: Orders that were cancelled
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(minutes=self.config.payment_timeout_minutes)

        async with self.store.transaction() as tx:
            candidates = await tx.list_pending_orders_created_before(cutoff)

        expired: list[Order] = []
        for candidate in candidates:
            try:
                async with self.store.transaction() as tx:
                    order = await self._load_order(tx, candidate.id)
                    if order.status != OrderStatus.PENDING:
                        continue

                    payments = await tx.list_payments_for_order(order.id)
                    if any(
                        payment.status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED)
                        for payment in payments
                    ):
                        logger.info(f"Order {order.order_number} has a settling payment, not expiring")
                        continue

                    cancelled = await self.transition(
                        tx, order, OrderStatus.CANCELLED, EXPIRED_ORDER_REASON
                    )
            except (ConflictError, BusinessLogicError) as e:
                logger.warning(f"Skipping expiry of order {candidate.order_number}: {e.message}")
                continue

            record_order_transition(OrderStatus.PENDING.value, OrderStatus.CANCELLED.value)
            expired.append(cancelled)

        if expired:
            logger.info(f"Expired {len(expired)} unpaid orders created before {cutoff.isoformat()}")
        return expired
