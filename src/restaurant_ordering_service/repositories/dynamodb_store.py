"""DynamoDB-backed data store.

Reads go straight to the tables with strongly consistent reads where the
key allows it. Writes are buffered and committed with one
``transact_write_items`` call, so either every row of an operation is
written or none is.

Tables:
    menu items: partition key ``id``, GSI ``name-index`` on ``name``
    orders: partition key ``id``, GSI ``order_number-index`` on
        ``order_number`` and ``status-index`` on (``status``, ``created_at``)
    payments: partition key ``id``, GSIs ``reference-index``,
        ``transaction_id-index`` and ``order_id-index``

Order lines are embedded in the order item. Each menu item carries an
``order_line_count`` attribute incremented in the same commit as the order,
which backs the delete-protection rule without scanning orders.
"""

import logging
from collections import Counter
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any

from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from restaurant_ordering_service.models.menu_models import NUTRITION_FIELDS, MenuFilters, MenuItem
from restaurant_ordering_service.models.order_models import Order, OrderFilters, OrderStatus
from restaurant_ordering_service.models.payment_models import (
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from restaurant_ordering_service.repositories.base_store import DataStore, Transaction
from restaurant_ordering_service.services.exceptions import ConflictError, PersistenceError

logger = logging.getLogger(__name__)

# DynamoDB rejects transactions with more items than this
MAX_TRANSACTION_ITEMS = 100

_OPTIONAL_MENU_FIELDS = ("image_url", *NUTRITION_FIELDS)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate botocore failures into PersistenceError."""
    try:
        yield
    except ClientError as e:
        logger.error(f"Failed to {operation}: {e}")
        raise PersistenceError(f"Failed to {operation}") from e


class DynamoDBTransaction(Transaction):
    """Buffered write transaction against the three ordering tables."""

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        menu_table: Table,
        orders_table: Table,
        payments_table: Table,
    ) -> None:
        """Initialize transaction.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            menu_table: Menu items table
            orders_table: Orders table
            payments_table: Payments table
        """
        self.client = dynamodb_resource.meta.client
        self.menu_table = menu_table
        self.orders_table = orders_table
        self.payments_table = payments_table
        self.serializer = TypeSerializer()
        self.writes: list[dict[str, Any]] = []
        self.conflict_messages: list[str] = []
        # Menu items read for an order, guarded on commit
        self.guards: dict[str, MenuItem] = {}

    # Helpers

    def _serialize(self, values: dict[str, Any]) -> dict[str, Any]:
        return {key: self.serializer.serialize(value) for key, value in values.items()}

    def _add_write(self, write: dict[str, Any], conflict_message: str) -> None:
        self.writes.append(write)
        self.conflict_messages.append(conflict_message)

    def _scan(self, table: Table, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            response = table.scan(**kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                return items
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    def _query(self, table: Table, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            response = table.query(**kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                return items
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    def _query_count(self, table: Table, **kwargs: Any) -> int:
        count = 0
        while True:
            response = table.query(Select="COUNT", **kwargs)
            count += response.get("Count", 0)
            if "LastEvaluatedKey" not in response:
                return count
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    def _query_one(self, table: Table, index_name: str, key: str, value: str) -> dict[str, Any] | None:
        response = table.query(
            IndexName=index_name,
            KeyConditionExpression=Key(key).eq(value),
            Limit=1,
        )
        items = response.get("Items", [])
        return items[0] if items else None

    # Menu items

    async def get_menu_item(self, item_id: str, for_order: bool = False) -> MenuItem | None:
        with _store_errors("get menu item"):
            response = self.menu_table.get_item(Key={"id": item_id}, ConsistentRead=True)

        if "Item" not in response:
            return None

        item = MenuItem.from_dynamodb_item(response["Item"])
        if for_order:
            self.guards[item.id] = item
        return item

    async def get_menu_item_by_name(self, name: str) -> MenuItem | None:
        with _store_errors("get menu item by name"):
            item = self._query_one(self.menu_table, "name-index", "name", name)
        return MenuItem.from_dynamodb_item(item) if item else None

    async def list_menu_items(self, filters: MenuFilters) -> list[MenuItem]:
        with _store_errors("list menu items"):
            raw_items = self._scan(self.menu_table)

        items = [MenuItem.from_dynamodb_item(raw) for raw in raw_items]
        matching = [item for item in items if filters.matches(item)]
        return sorted(matching, key=lambda item: (item.category.value, item.name))

    async def create_menu_item(self, item: MenuItem) -> None:
        values = item.to_dynamodb_item()
        values["order_line_count"] = 0
        self._add_write(
            {
                "Put": {
                    "TableName": self.menu_table.name,
                    "Item": self._serialize(values),
                    "ConditionExpression": "attribute_not_exists(id)",
                }
            },
            f"Menu item {item.id} already exists",
        )

    async def update_menu_item(self, item: MenuItem) -> None:
        values = item.to_dynamodb_item()
        values.pop("id")

        names: dict[str, str] = {}
        serialized: dict[str, Any] = {}
        assignments: list[str] = []
        for index, (field_name, value) in enumerate(values.items()):
            names[f"#f{index}"] = field_name
            serialized[f":v{index}"] = self.serializer.serialize(value)
            assignments.append(f"#f{index} = :v{index}")

        expression = "SET " + ", ".join(assignments)

        removed = [name for name in _OPTIONAL_MENU_FIELDS if name not in values]
        if removed:
            for index, field_name in enumerate(removed):
                names[f"#r{index}"] = field_name
            expression += " REMOVE " + ", ".join(f"#r{index}" for index in range(len(removed)))

        self._add_write(
            {
                "Update": {
                    "TableName": self.menu_table.name,
                    "Key": self._serialize({"id": item.id}),
                    "UpdateExpression": expression,
                    "ConditionExpression": "attribute_exists(id)",
                    "ExpressionAttributeNames": names,
                    "ExpressionAttributeValues": serialized,
                }
            },
            f"Menu item {item.id} was deleted concurrently",
        )

    async def delete_menu_item(self, item_id: str) -> None:
        self._add_write(
            {
                "Delete": {
                    "TableName": self.menu_table.name,
                    "Key": self._serialize({"id": item_id}),
                    "ConditionExpression": (
                        "attribute_exists(id) AND "
                        "(attribute_not_exists(order_line_count) OR order_line_count = :zero)"
                    ),
                    "ExpressionAttributeValues": self._serialize({":zero": 0}),
                }
            },
            "Cannot delete menu item that has been ordered",
        )

    async def count_order_lines_for_menu_item(self, item_id: str) -> int:
        with _store_errors("count order lines"):
            response = self.menu_table.get_item(
                Key={"id": item_id},
                ProjectionExpression="order_line_count",
                ConsistentRead=True,
            )
        return int(response.get("Item", {}).get("order_line_count", 0))

    # Orders

    async def get_order(self, order_id: str) -> Order | None:
        with _store_errors("get order"):
            response = self.orders_table.get_item(Key={"id": order_id}, ConsistentRead=True)
        return Order.from_dynamodb_item(response["Item"]) if "Item" in response else None

    async def get_order_by_number(self, order_number: str) -> Order | None:
        with _store_errors("get order by number"):
            item = self._query_one(self.orders_table, "order_number-index", "order_number", order_number)
        return Order.from_dynamodb_item(item) if item else None

    async def list_orders(
        self, filters: OrderFilters, offset: int, limit: int
    ) -> tuple[list[Order], int]:
        scan_kwargs: dict[str, Any] = {}
        if filters.status is not None:
            scan_kwargs["FilterExpression"] = Attr("status").eq(filters.status.value)

        with _store_errors("list orders"):
            raw_orders = self._scan(self.orders_table, **scan_kwargs)

        orders = [Order.from_dynamodb_item(raw) for raw in raw_orders]
        matching = [order for order in orders if filters.matches(order)]
        matching.sort(key=lambda order: order.created_at, reverse=True)
        return matching[offset : offset + limit], len(matching)

    async def count_orders(self, statuses: tuple[OrderStatus, ...]) -> int:
        # GSI reads are eventually consistent; a just-committed order may be missed
        with _store_errors("count orders"):
            return sum(
                self._query_count(
                    self.orders_table,
                    IndexName="status-index",
                    KeyConditionExpression=Key("status").eq(status.value),
                )
                for status in statuses
            )

    async def list_orders_by_status(self, statuses: tuple[OrderStatus, ...]) -> list[Order]:
        raw_orders: list[dict[str, Any]] = []
        with _store_errors("list orders by status"):
            for status in statuses:
                raw_orders.extend(
                    self._query(
                        self.orders_table,
                        IndexName="status-index",
                        KeyConditionExpression=Key("status").eq(status.value),
                    )
                )

        orders = [Order.from_dynamodb_item(raw) for raw in raw_orders]
        return sorted(orders, key=lambda order: order.created_at)

    async def list_pending_orders_created_before(self, cutoff: datetime) -> list[Order]:
        condition: ConditionBase = Key("status").eq(OrderStatus.PENDING.value) & Key(
            "created_at"
        ).lt(cutoff.isoformat())

        with _store_errors("list stale pending orders"):
            raw_orders = self._query(
                self.orders_table,
                IndexName="status-index",
                KeyConditionExpression=condition,
            )
        return [Order.from_dynamodb_item(raw) for raw in raw_orders]

    async def create_order(self, order: Order) -> None:
        self._add_write(
            {
                "Put": {
                    "TableName": self.orders_table.name,
                    "Item": self._serialize(order.to_dynamodb_item()),
                    "ConditionExpression": "attribute_not_exists(id)",
                }
            },
            f"Order {order.order_number} already exists",
        )

        line_counts = Counter(line.menu_item_id for line in order.items)
        for menu_item_id, count in line_counts.items():
            # One write per menu item: its reference counter and, when the item
            # was read for this order, the availability and price it was read with
            condition = "attribute_exists(id)"
            values: dict[str, Any] = {":count": count}
            message = f"Menu item {menu_item_id} no longer exists"

            guard = self.guards.pop(menu_item_id, None)
            if guard is not None:
                condition += " AND is_available = :available AND price = :price"
                values[":available"] = True
                values[":price"] = guard.price
                message = f"{guard.name} changed availability or price while ordering"

            self._add_write(
                {
                    "Update": {
                        "TableName": self.menu_table.name,
                        "Key": self._serialize({"id": menu_item_id}),
                        "UpdateExpression": "ADD order_line_count :count",
                        "ConditionExpression": condition,
                        "ExpressionAttributeValues": self._serialize(values),
                    }
                },
                message,
            )

    async def update_order(self, order: Order, expected_status: OrderStatus) -> None:
        self._add_write(
            {
                "Put": {
                    "TableName": self.orders_table.name,
                    "Item": self._serialize(order.to_dynamodb_item()),
                    "ConditionExpression": "#status = :expected",
                    "ExpressionAttributeNames": {"#status": "status"},
                    "ExpressionAttributeValues": self._serialize({":expected": expected_status.value}),
                }
            },
            f"Order {order.order_number} was modified concurrently",
        )

    # Payments

    async def get_payment(self, payment_id: str) -> Payment | None:
        with _store_errors("get payment"):
            response = self.payments_table.get_item(Key={"id": payment_id}, ConsistentRead=True)
        return Payment.from_dynamodb_item(response["Item"]) if "Item" in response else None

    async def get_payment_by_reference(self, reference: str) -> Payment | None:
        with _store_errors("get payment by reference"):
            item = self._query_one(self.payments_table, "reference-index", "reference", reference)
        if item is None:
            return None
        # Re-read through the key so the status is strongly consistent
        return await self.get_payment(item["id"])

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        with _store_errors("get payment by transaction id"):
            item = self._query_one(
                self.payments_table, "transaction_id-index", "transaction_id", transaction_id
            )
        if item is None:
            return None
        return await self.get_payment(item["id"])

    async def list_payments_for_order(self, order_id: str) -> list[Payment]:
        with _store_errors("list payments for order"):
            raw_payments = self._query(
                self.payments_table,
                IndexName="order_id-index",
                KeyConditionExpression=Key("order_id").eq(order_id),
            )
        payments = [Payment.from_dynamodb_item(raw) for raw in raw_payments]
        return sorted(payments, key=lambda payment: payment.created_at, reverse=True)

    async def create_payment(self, payment: Payment) -> None:
        self._add_write(
            {
                "Put": {
                    "TableName": self.payments_table.name,
                    "Item": self._serialize(payment.to_dynamodb_item()),
                    "ConditionExpression": "attribute_not_exists(id)",
                }
            },
            f"Payment {payment.reference} already exists",
        )

    async def update_payment(self, payment: Payment, expected_status: PaymentStatus) -> None:
        self._add_write(
            {
                "Put": {
                    "TableName": self.payments_table.name,
                    "Item": self._serialize(payment.to_dynamodb_item()),
                    "ConditionExpression": "#status = :expected",
                    "ExpressionAttributeNames": {"#status": "status"},
                    "ExpressionAttributeValues": self._serialize({":expected": expected_status.value}),
                }
            },
            f"Payment {payment.reference} was modified concurrently",
        )

    def _scan_payments(self, *attributes: str) -> list[dict[str, Any]]:
        # DynamoDB rejects placeholders the projection does not use
        names = {f"#{attribute}": attribute for attribute in attributes}
        with _store_errors("scan payments"):
            return self._scan(
                self.payments_table,
                ProjectionExpression=", ".join(names),
                ExpressionAttributeNames=names,
            )

    async def count_payments(self, status: PaymentStatus | None = None) -> int:
        rows = self._scan_payments("status")
        return sum(1 for row in rows if status is None or row["status"] == status.value)

    async def sum_payment_amounts(self, status: PaymentStatus) -> int:
        rows = self._scan_payments("status", "amount")
        return sum(int(row["amount"]) for row in rows if row["status"] == status.value)

    async def count_payments_by_method(self) -> dict[PaymentMethod, int]:
        rows = self._scan_payments("method")
        return dict(Counter(PaymentMethod(row["method"]) for row in rows))

    # Commit

    def commit(self) -> None:
        """Write every buffered change in one DynamoDB transaction.

        Raises:
            ConflictError: If any condition failed
            PersistenceError: If DynamoDB rejected the transaction for another reason
        """
        if not self.writes:
            return

        # Guards not consumed by an order write still have to hold at commit
        for item_id, guard in self.guards.items():
            self._add_write(
                {
                    "ConditionCheck": {
                        "TableName": self.menu_table.name,
                        "Key": self._serialize({"id": item_id}),
                        "ConditionExpression": "is_available = :available AND price = :price",
                        "ExpressionAttributeValues": self._serialize(
                            {":available": True, ":price": guard.price}
                        ),
                    }
                },
                f"{guard.name} changed availability or price",
            )

        if len(self.writes) > MAX_TRANSACTION_ITEMS:
            raise PersistenceError(
                f"Transaction has {len(self.writes)} writes, limit is {MAX_TRANSACTION_ITEMS}"
            )

        try:
            self.client.transact_write_items(TransactItems=self.writes)
        except ClientError as e:
            error = e.response.get("Error", {})
            if error.get("Code") != "TransactionCanceledException":
                logger.error(f"Failed to commit transaction: {e}")
                raise PersistenceError("Failed to commit transaction") from e

            reasons = e.response.get("CancellationReasons", [])
            for index, reason in enumerate(reasons):
                if reason.get("Code") == "ConditionalCheckFailed":
                    message = self.conflict_messages[index]
                    logger.warning(f"Transaction cancelled by failed condition: {message}")
                    raise ConflictError(message) from e

            logger.error(f"Transaction cancelled: {reasons}")
            raise PersistenceError("Transaction was cancelled, retry later") from e


class DynamoDBDataStore(DataStore):
    """Data store over three DynamoDB tables."""

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        menu_table_name: str,
        orders_table_name: str,
        payments_table_name: str,
    ) -> None:
        """Initialize store.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            menu_table_name: Name of the menu items table
            orders_table_name: Name of the orders table
            payments_table_name: Name of the payments table
        """
        self.dynamodb = dynamodb_resource
        self.menu_table: Table = dynamodb_resource.Table(menu_table_name)
        self.orders_table: Table = dynamodb_resource.Table(orders_table_name)
        self.payments_table: Table = dynamodb_resource.Table(payments_table_name)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DynamoDBTransaction]:
        """Open a buffered transaction.

        Yields:
            DynamoDBTransaction committed on normal exit, discarded on error
        """
        tx = DynamoDBTransaction(
            dynamodb_resource=self.dynamodb,
            menu_table=self.menu_table,
            orders_table=self.orders_table,
            payments_table=self.payments_table,
        )
        yield tx
        tx.commit()
