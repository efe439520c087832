"""Unit tests for the DynamoDB data store."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from restaurant_ordering_service.models.menu_models import MenuItem
from restaurant_ordering_service.models.order_models import (
    Order,
    OrderFilters,
    OrderItem,
    OrderStatus,
    OrderType,
)
from restaurant_ordering_service.models.payment_models import Payment, PaymentMethod, PaymentStatus
from restaurant_ordering_service.repositories.dynamodb_store import DynamoDBDataStore
from restaurant_ordering_service.services.exceptions import ConflictError, PersistenceError


def make_order(order_id: str = "order_1", created_at: datetime | None = None) -> Order:
    """Build a PENDING order with two Jollof Rice lines and one Dodo line."""
    lines = [
        OrderItem(
            id=f"{order_id}_line_{index}",
            menu_item_id=menu_item_id,
            menu_item_name=name,
            quantity=1,
            unit_price=price,
            subtotal=price,
            preparation_time=20,
        )
        for index, (menu_item_id, name, price) in enumerate(
            [
                ("item_jollof", "Jollof Rice", 15000),
                ("item_jollof", "Jollof Rice", 15000),
                ("item_plantain", "Dodo", 3000),
            ]
        )
    ]
    now = created_at or datetime.now(UTC)
    return Order(
        id=order_id,
        order_number=f"ORD-{order_id}",
        customer_name="Ada Obi",
        customer_phone="08012345678",
        order_type=OrderType.PICKUP,
        items=lines,
        subtotal=33000,
        tax=2475,
        delivery_fee=0,
        total=35475,
        estimated_ready_time=now + timedelta(minutes=25),
        created_at=now,
        updated_at=now,
    )


def make_payment() -> Payment:
    """Build a PENDING card payment."""
    return Payment(
        id="pay_1",
        order_id="order_1",
        amount=35475,
        currency="NGN",
        method=PaymentMethod.CARD,
        reference="PAY-1-AAAAAA",
        transaction_id="pi_1",
    )


def cancelled_transaction(*codes: str) -> ClientError:
    """Build the error DynamoDB raises when a transaction is cancelled."""
    return ClientError(
        {
            "Error": {"Code": "TransactionCanceledException", "Message": "Transaction cancelled"},
            "CancellationReasons": [{"Code": code} for code in codes],
        },
        "TransactWriteItems",
    )


@pytest.mark.unit
class TestDynamoDBStore:
    """Test suite for DynamoDB reads, buffered writes and commit."""

    @pytest.fixture
    def tables(self) -> dict[str, MagicMock]:
        """Create mocked menu, orders and payments tables."""
        tables = {}
        for name in ("menu", "orders", "payments"):
            table = MagicMock()
            table.name = name
            tables[name] = table
        return tables

    @pytest.fixture
    def mock_dynamodb(self, tables: dict[str, MagicMock]) -> MagicMock:
        """Create a mocked DynamoDB resource."""
        resource = MagicMock()
        resource.Table.side_effect = lambda name: tables[name]
        return resource

    @pytest.fixture
    def data_store(self, mock_dynamodb: MagicMock) -> DynamoDBDataStore:
        """Create a store over the mocked resource."""
        return DynamoDBDataStore(
            dynamodb_resource=mock_dynamodb,
            menu_table_name="menu",
            orders_table_name="orders",
            payments_table_name="payments",
        )

    @pytest.mark.asyncio
    async def test_get_menu_item(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock], menu_items: list[MenuItem]
    ) -> None:
        """Test a strongly consistent read of one menu item."""
        tables["menu"].get_item.return_value = {"Item": menu_items[0].to_dynamodb_item()}

        async with data_store.transaction() as tx:
            item = await tx.get_menu_item("item_jollof")

        assert item == menu_items[0]
        tables["menu"].get_item.assert_called_once_with(Key={"id": "item_jollof"}, ConsistentRead=True)

    @pytest.mark.asyncio
    async def test_get_missing_menu_item(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that a missing item returns None."""
        tables["menu"].get_item.return_value = {}

        async with data_store.transaction() as tx:
            assert await tx.get_menu_item("missing") is None

    @pytest.mark.asyncio
    async def test_read_error_becomes_persistence_error(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that botocore failures surface as PersistenceError."""
        tables["orders"].get_item.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "Slow down"}},
            "GetItem",
        )

        with pytest.raises(PersistenceError, match="Failed to get order"):
            async with data_store.transaction() as tx:
                await tx.get_order("order_1")

    @pytest.mark.asyncio
    async def test_read_only_transaction_writes_nothing(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock, tables: dict[str, MagicMock]
    ) -> None:
        """Test that a transaction without writes makes no commit call."""
        tables["orders"].get_item.return_value = {}

        async with data_store.transaction() as tx:
            await tx.get_order("order_1")

        mock_dynamodb.meta.client.transact_write_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_order_guards_menu_items(
        self,
        data_store: DynamoDBDataStore,
        mock_dynamodb: MagicMock,
        tables: dict[str, MagicMock],
        menu_items: list[MenuItem],
    ) -> None:
        """Test that the order and per-item counters commit together with price guards."""
        tables["menu"].get_item.return_value = {"Item": menu_items[0].to_dynamodb_item()}

        async with data_store.transaction() as tx:
            await tx.get_menu_item("item_jollof", for_order=True)
            await tx.create_order(make_order())

        writes = mock_dynamodb.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
        assert len(writes) == 3

        order_put = writes[0]["Put"]
        assert order_put["TableName"] == "orders"
        assert order_put["ConditionExpression"] == "attribute_not_exists(id)"

        jollof = writes[1]["Update"]
        assert jollof["UpdateExpression"] == "ADD order_line_count :count"
        assert "price = :price" in jollof["ConditionExpression"]
        assert jollof["ExpressionAttributeValues"][":count"] == {"N": "2"}
        assert jollof["ExpressionAttributeValues"][":price"] == {"N": "15000"}

        plantain = writes[2]["Update"]
        assert plantain["ConditionExpression"] == "attribute_exists(id)"
        assert plantain["ExpressionAttributeValues"] == {":count": {"N": "1"}}

    @pytest.mark.asyncio
    async def test_unconsumed_guard_becomes_condition_check(
        self,
        data_store: DynamoDBDataStore,
        mock_dynamodb: MagicMock,
        tables: dict[str, MagicMock],
        menu_items: list[MenuItem],
    ) -> None:
        """Test that a guarded read without an order write is still checked on commit."""
        tables["menu"].get_item.return_value = {"Item": menu_items[1].to_dynamodb_item()}

        async with data_store.transaction() as tx:
            await tx.get_menu_item("item_chicken", for_order=True)
            await tx.create_payment(make_payment())

        writes = mock_dynamodb.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
        assert "Put" in writes[0]
        check = writes[1]["ConditionCheck"]
        assert check["Key"] == {"id": {"S": "item_chicken"}}
        assert check["ExpressionAttributeValues"][":price"] == {"N": "8000"}

    @pytest.mark.asyncio
    async def test_failed_condition_raises_conflict(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock
    ) -> None:
        """Test that the message of the failed write is reported."""
        mock_dynamodb.meta.client.transact_write_items.side_effect = cancelled_transaction(
            "None", "ConditionalCheckFailed"
        )
        order = make_order()

        with pytest.raises(ConflictError, match="was modified concurrently"):
            async with data_store.transaction() as tx:
                await tx.create_payment(make_payment())
                await tx.update_order(
                    order.model_copy(update={"status": OrderStatus.CONFIRMED}),
                    expected_status=OrderStatus.PENDING,
                )

    @pytest.mark.asyncio
    async def test_cancelled_without_condition_failure(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock
    ) -> None:
        """Test that contention cancellations are reported as retryable persistence errors."""
        mock_dynamodb.meta.client.transact_write_items.side_effect = cancelled_transaction(
            "TransactionConflict"
        )

        with pytest.raises(PersistenceError) as exc_info:
            async with data_store.transaction() as tx:
                await tx.create_payment(make_payment())

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_commit_error_becomes_persistence_error(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock
    ) -> None:
        """Test that other commit failures raise PersistenceError."""
        mock_dynamodb.meta.client.transact_write_items.side_effect = ClientError(
            {"Error": {"Code": "InternalServerError", "Message": "Oops"}}, "TransactWriteItems"
        )

        with pytest.raises(PersistenceError, match="Failed to commit transaction"):
            async with data_store.transaction() as tx:
                await tx.create_payment(make_payment())

    @pytest.mark.asyncio
    async def test_error_in_body_discards_writes(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock
    ) -> None:
        """Test that nothing is committed when the transaction body raises."""
        with pytest.raises(ValueError):
            async with data_store.transaction() as tx:
                await tx.create_payment(make_payment())
                raise ValueError("validation failed")

        mock_dynamodb.meta.client.transact_write_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_transaction_size_limit(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock
    ) -> None:
        """Test that more than 100 writes are refused before calling DynamoDB."""
        with pytest.raises(PersistenceError, match="limit is 100"):
            async with data_store.transaction() as tx:
                for index in range(101):
                    await tx.delete_menu_item(f"item_{index}")

        mock_dynamodb.meta.client.transact_write_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_requires_no_order_lines(
        self, data_store: DynamoDBDataStore, mock_dynamodb: MagicMock
    ) -> None:
        """Test that deletes are conditioned on the item never being ordered."""
        async with data_store.transaction() as tx:
            await tx.delete_menu_item("item_jollof")

        delete = mock_dynamodb.meta.client.transact_write_items.call_args.kwargs["TransactItems"][0]["Delete"]
        assert "order_line_count = :zero" in delete["ConditionExpression"]
        assert delete["ExpressionAttributeValues"] == {":zero": {"N": "0"}}

    @pytest.mark.asyncio
    async def test_count_order_lines(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that the reference counter is read from the menu item."""
        tables["menu"].get_item.return_value = {"Item": {"order_line_count": 4}}

        async with data_store.transaction() as tx:
            assert await tx.count_order_lines_for_menu_item("item_jollof") == 4

    @pytest.mark.asyncio
    async def test_list_orders_follows_pages(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that scans are paginated and results sorted newest first."""
        older = make_order("order_000001", datetime(2024, 1, 15, 10, 0, tzinfo=UTC))
        newer = make_order("order_000002", datetime(2024, 1, 15, 11, 0, tzinfo=UTC))
        tables["orders"].scan.side_effect = [
            {"Items": [older.to_dynamodb_item()], "LastEvaluatedKey": {"id": "order_000001"}},
            {"Items": [newer.to_dynamodb_item()]},
        ]

        async with data_store.transaction() as tx:
            orders, total = await tx.list_orders(OrderFilters(), offset=0, limit=1)

        assert total == 2
        assert [order.id for order in orders] == ["order_000002"]
        assert tables["orders"].scan.call_args_list[1].kwargs["ExclusiveStartKey"] == {"id": "order_000001"}

    @pytest.mark.asyncio
    async def test_count_orders_queries_each_status(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that active orders are counted on the status index."""
        tables["orders"].query.side_effect = [{"Count": 2}, {"Count": 3}]

        async with data_store.transaction() as tx:
            count = await tx.count_orders((OrderStatus.CONFIRMED, OrderStatus.PREPARING))

        assert count == 5
        for call in tables["orders"].query.call_args_list:
            assert call.kwargs["IndexName"] == "status-index"
            assert call.kwargs["Select"] == "COUNT"

    @pytest.mark.asyncio
    async def test_payment_by_reference_rereads_by_key(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that an index hit is re-read with a consistent get."""
        payment = make_payment()
        stale = payment.model_copy(update={"status": PaymentStatus.PENDING})
        fresh = payment.model_copy(update={"status": PaymentStatus.COMPLETED})
        tables["payments"].query.return_value = {"Items": [stale.to_dynamodb_item()]}
        tables["payments"].get_item.return_value = {"Item": fresh.to_dynamodb_item()}

        async with data_store.transaction() as tx:
            found = await tx.get_payment_by_reference("PAY-1-AAAAAA")

        assert found.status == PaymentStatus.COMPLETED
        tables["payments"].get_item.assert_called_once_with(Key={"id": "pay_1"}, ConsistentRead=True)

    @pytest.mark.asyncio
    async def test_payment_stats_scans(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test payment aggregates over a projected scan."""
        tables["payments"].scan.return_value = {
            "Items": [
                {"status": "COMPLETED", "amount": 1000, "method": "CARD"},
                {"status": "FAILED", "amount": 500, "method": "PAYPAL"},
            ]
        }

        async with data_store.transaction() as tx:
            assert await tx.count_payments() == 2
            assert await tx.sum_payment_amounts(PaymentStatus.COMPLETED) == 1000
            assert await tx.count_payments_by_method() == {
                PaymentMethod.CARD: 1,
                PaymentMethod.PAYPAL: 1,
            }

    @pytest.mark.asyncio
    async def test_payment_scans_declare_only_projected_names(
        self, data_store: DynamoDBDataStore, tables: dict[str, MagicMock]
    ) -> None:
        """Test that each scan declares exactly the placeholders its projection uses."""
        tables["payments"].scan.return_value = {"Items": []}

        async with data_store.transaction() as tx:
            await tx.count_payments()
            await tx.sum_payment_amounts(PaymentStatus.COMPLETED)
            await tx.count_payments_by_method()

        scans = [call.kwargs for call in tables["payments"].scan.call_args_list]
        assert [scan["ProjectionExpression"] for scan in scans] == ["#status", "#status, #amount", "#method"]
        for scan in scans:
            projected = {name.strip() for name in scan["ProjectionExpression"].split(",")}
            assert set(scan["ExpressionAttributeNames"]) == projected
