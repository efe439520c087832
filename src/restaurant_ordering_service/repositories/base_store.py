"""Transactional data store interface.

Services open a transaction with ``async with store.transaction() as tx``.
The transaction commits when the block exits normally and is discarded when
the block raises, so a failed operation never leaves partial rows behind.

Lookups return None for missing rows; the services decide whether that is
an error. Implementations raise ConflictError when a guarded write loses a
race and PersistenceError for infrastructure failures.

Reads inside a transaction are not guaranteed to observe writes made
earlier in the same transaction, so every operation reads first and writes
last.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from restaurant_ordering_service.models.menu_models import MenuFilters, MenuItem
from restaurant_ordering_service.models.order_models import Order, OrderFilters, OrderStatus
from restaurant_ordering_service.models.payment_models import (
    Payment,
    PaymentMethod,
    PaymentStatus,
)


class Transaction(ABC):
    """Read/write access to menu items, orders and payments within one transaction."""

    # Menu items

    @abstractmethod
    async def get_menu_item(self, item_id: str, for_order: bool = False) -> MenuItem | None:
        """Read a menu item.

        Args:
            item_id: Menu item identifier
            for_order: When True, the commit fails with ConflictError if the
                item's availability or price changes before this transaction
                commits

        Returns:
            MenuItem if found, None otherwise
        """

    @abstractmethod
    async def get_menu_item_by_name(self, name: str) -> MenuItem | None:
        """Read a menu item by its unique name."""

    @abstractmethod
    async def list_menu_items(self, filters: MenuFilters) -> list[MenuItem]:
        """List menu items matching filters, ordered by category then name."""

    @abstractmethod
    async def create_menu_item(self, item: MenuItem) -> None:
        """Insert a new menu item."""

    @abstractmethod
    async def update_menu_item(self, item: MenuItem) -> None:
        """Replace the editable fields of an existing menu item."""

    @abstractmethod
    async def delete_menu_item(self, item_id: str) -> None:
        """Delete a menu item that no order line references.

        Raises:
            ConflictError: If an order line references the item at commit time
        """

    @abstractmethod
    async def count_order_lines_for_menu_item(self, item_id: str) -> int:
        """Count order lines that reference a menu item."""

    # Orders

    @abstractmethod
    async def get_order(self, order_id: str) -> Order | None:
        """Read an order with its items."""

    @abstractmethod
    async def get_order_by_number(self, order_number: str) -> Order | None:
        """Read an order by its human-readable number."""

    @abstractmethod
    async def list_orders(
        self, filters: OrderFilters, offset: int, limit: int
    ) -> tuple[list[Order], int]:
        """List orders newest first.

        Args:
            filters: Filters to apply
            offset: Number of matching orders to skip
            limit: Maximum number of orders to return

        Returns:
            Tuple of (orders on this page, total number of matching orders)
        """

    @abstractmethod
    async def count_orders(self, statuses: tuple[OrderStatus, ...]) -> int:
        """Count orders currently in any of the given statuses."""

    @abstractmethod
    async def list_orders_by_status(self, statuses: tuple[OrderStatus, ...]) -> list[Order]:
        """List orders in any of the given statuses, oldest first."""

    @abstractmethod
    async def list_pending_orders_created_before(self, cutoff: datetime) -> list[Order]:
        """List PENDING orders created strictly before ``cutoff``."""

    @abstractmethod
    async def create_order(self, order: Order) -> None:
        """Insert an order together with all of its items."""

    @abstractmethod
    async def update_order(self, order: Order, expected_status: OrderStatus) -> None:
        """Replace an order, guarded on its stored status.

        Raises:
            ConflictError: If the stored status is no longer ``expected_status``
        """

    # Payments

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Payment | None:
        """Read a payment by internal id."""

    @abstractmethod
    async def get_payment_by_reference(self, reference: str) -> Payment | None:
        """Read a payment by its public reference."""

    @abstractmethod
    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        """Read a payment by the provider-assigned transaction id."""

    @abstractmethod
    async def list_payments_for_order(self, order_id: str) -> list[Payment]:
        """List payment attempts for an order, newest first."""

    @abstractmethod
    async def create_payment(self, payment: Payment) -> None:
        """Insert a new payment."""

    @abstractmethod
    async def update_payment(self, payment: Payment, expected_status: PaymentStatus) -> None:
        """Replace a payment, guarded on its stored status.

        Raises:
            ConflictError: If the stored status is no longer ``expected_status``
        """

    @abstractmethod
    async def count_payments(self, status: PaymentStatus | None = None) -> int:
        """Count payments, optionally only those in one status."""

    @abstractmethod
    async def sum_payment_amounts(self, status: PaymentStatus) -> int:
        """Sum the amounts of payments in one status."""

    @abstractmethod
    async def count_payments_by_method(self) -> dict[PaymentMethod, int]:
        """Count payments grouped by method."""


class DataStore(ABC):
    """Factory for transactions against one backing store."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction scope.

        Returns:
            Async context manager yielding a Transaction; commits on normal
            exit and rolls back on any exception
        """
