"""In-process data store for single-instance deployments and tests.

Transactions run one at a time under an asyncio lock, which gives
serializable isolation. Each transaction works on shallow copies of the
collections and swaps them in on commit; stored models are never mutated
in place.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from restaurant_ordering_service.models.menu_models import MenuFilters, MenuItem
from restaurant_ordering_service.models.order_models import Order, OrderFilters, OrderStatus
from restaurant_ordering_service.models.payment_models import (
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from restaurant_ordering_service.repositories.base_store import DataStore, Transaction
from restaurant_ordering_service.services.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class InMemoryTransaction(Transaction):
    """Transaction over copy-on-write snapshots of the store's collections."""

    def __init__(
        self,
        menu_items: dict[str, MenuItem],
        orders: dict[str, Order],
        payments: dict[str, Payment],
    ) -> None:
        self.menu_items = dict(menu_items)
        self.orders = dict(orders)
        self.payments = dict(payments)

    async def get_menu_item(self, item_id: str, for_order: bool = False) -> MenuItem | None:
        # Transactions are serialized, so for_order needs no extra guard here
        item = self.menu_items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def get_menu_item_by_name(self, name: str) -> MenuItem | None:
        for item in self.menu_items.values():
            if item.name.lower() == name.lower():
                return item.model_copy(deep=True)
        return None

    async def list_menu_items(self, filters: MenuFilters) -> list[MenuItem]:
        items = [item.model_copy(deep=True) for item in self.menu_items.values() if filters.matches(item)]
        return sorted(items, key=lambda item: (item.category.value, item.name))

    async def create_menu_item(self, item: MenuItem) -> None:
        if item.id in self.menu_items:
            raise ConflictError(f"Menu item {item.id} already exists")
        if await self.get_menu_item_by_name(item.name) is not None:
            raise ConflictError("Menu item with this name already exists")
        self.menu_items[item.id] = item.model_copy(deep=True)

    async def update_menu_item(self, item: MenuItem) -> None:
        if item.id not in self.menu_items:
            raise NotFoundError("Menu item not found")
        self.menu_items[item.id] = item.model_copy(deep=True)

    async def delete_menu_item(self, item_id: str) -> None:
        if item_id not in self.menu_items:
            raise NotFoundError("Menu item not found")
        if await self.count_order_lines_for_menu_item(item_id) > 0:
            raise ConflictError("Cannot delete menu item that has been ordered")
        del self.menu_items[item_id]

    async def count_order_lines_for_menu_item(self, item_id: str) -> int:
        return sum(
            1 for order in self.orders.values() for line in order.items if line.menu_item_id == item_id
        )

    async def get_order(self, order_id: str) -> Order | None:
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def get_order_by_number(self, order_number: str) -> Order | None:
        for order in self.orders.values():
            if order.order_number == order_number:
                return order.model_copy(deep=True)
        return None

    async def list_orders(
        self, filters: OrderFilters, offset: int, limit: int
    ) -> tuple[list[Order], int]:
        matching = [order for order in self.orders.values() if filters.matches(order)]
        matching.sort(key=lambda order: order.created_at, reverse=True)
        page = [order.model_copy(deep=True) for order in matching[offset : offset + limit]]
        return page, len(matching)

    async def count_orders(self, statuses: tuple[OrderStatus, ...]) -> int:
        return sum(1 for order in self.orders.values() if order.status in statuses)

    async def list_orders_by_status(self, statuses: tuple[OrderStatus, ...]) -> list[Order]:
        matching = [order.model_copy(deep=True) for order in self.orders.values() if order.status in statuses]
        return sorted(matching, key=lambda order: order.created_at)

    async def list_pending_orders_created_before(self, cutoff: datetime) -> list[Order]:
        return [
            order.model_copy(deep=True)
            for order in self.orders.values()
            if order.status == OrderStatus.PENDING and order.created_at < cutoff
        ]

    async def create_order(self, order: Order) -> None:
        if order.id in self.orders:
            raise ConflictError(f"Order {order.id} already exists")
        if await self.get_order_by_number(order.order_number) is not None:
            raise ConflictError(f"Order number {order.order_number} already exists")
        for line in order.items:
            if line.menu_item_id not in self.menu_items:
                raise ConflictError(f"Menu item {line.menu_item_id} no longer exists")
        self.orders[order.id] = order.model_copy(deep=True)

    async def update_order(self, order: Order, expected_status: OrderStatus) -> None:
        current = self.orders.get(order.id)
        if current is None:
            raise NotFoundError("Order not found")
        if current.status != expected_status:
            raise ConflictError(f"Order {order.order_number} was modified concurrently")
        self.orders[order.id] = order.model_copy(deep=True)

    async def get_payment(self, payment_id: str) -> Payment | None:
        payment = self.payments.get(payment_id)
        return payment.model_copy(deep=True) if payment else None

    async def get_payment_by_reference(self, reference: str) -> Payment | None:
        for payment in self.payments.values():
            if payment.reference == reference:
                return payment.model_copy(deep=True)
        return None

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        for payment in self.payments.values():
            if payment.transaction_id == transaction_id:
                return payment.model_copy(deep=True)
        return None

    async def list_payments_for_order(self, order_id: str) -> list[Payment]:
        matching = [p.model_copy(deep=True) for p in self.payments.values() if p.order_id == order_id]
        return sorted(matching, key=lambda payment: payment.created_at, reverse=True)

    async def create_payment(self, payment: Payment) -> None:
        if payment.id in self.payments:
            raise ConflictError(f"Payment {payment.id} already exists")
        if await self.get_payment_by_reference(payment.reference) is not None:
            raise ConflictError(f"Payment reference {payment.reference} already exists")
        self.payments[payment.id] = payment.model_copy(deep=True)

    async def update_payment(self, payment: Payment, expected_status: PaymentStatus) -> None:
        current = self.payments.get(payment.id)
        if current is None:
            raise NotFoundError("Payment not found")
        if current.status != expected_status:
            raise ConflictError(f"Payment {payment.reference} was modified concurrently")
        self.payments[payment.id] = payment.model_copy(deep=True)

    async def count_payments(self, status: PaymentStatus | None = None) -> int:
        return sum(1 for p in self.payments.values() if status is None or p.status == status)

    async def sum_payment_amounts(self, status: PaymentStatus) -> int:
        return sum(p.amount for p in self.payments.values() if p.status == status)

    async def count_payments_by_method(self) -> dict[PaymentMethod, int]:
        return dict(Counter(p.method for p in self.payments.values()))


class InMemoryDataStore(DataStore):
    """Data store held in process memory."""

    def __init__(self) -> None:
        self._menu_items: dict[str, MenuItem] = {}
        self._orders: dict[str, Order] = {}
        self._payments: dict[str, Payment] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        """Open a serialized transaction.

        Yields:
            InMemoryTransaction whose changes are published only on normal exit
        """
        async with self._lock:
            tx = InMemoryTransaction(self._menu_items, self._orders, self._payments)
            try:
                yield tx
            except BaseException:
                logger.debug("Rolling back in-memory transaction")
                raise
            self._menu_items = tx.menu_items
            self._orders = tx.orders
            self._payments = tx.payments
