"""Unit tests for WebSocket order notifications."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from restaurant_ordering_service.models.order_models import Order, OrderItem, OrderStatus, OrderType
from restaurant_ordering_service.notifications.order_notifier import (
    ADMIN_ROOM,
    ConnectionManager,
    WebSocketOrderNotifier,
    order_room,
)


def make_order(status: OrderStatus) -> Order:
    """Build an order in the given status."""
    return Order(
        id="order_1",
        order_number="ORD-000001-AAA",
        customer_name="Ada Obi",
        customer_phone="08012345678",
        order_type=OrderType.PICKUP,
        items=[
            OrderItem(
                id="line_1",
                menu_item_id="item_jollof",
                menu_item_name="Jollof Rice",
                quantity=1,
                unit_price=15000,
                subtotal=15000,
                preparation_time=20,
            )
        ],
        subtotal=15000,
        tax=1125,
        delivery_fee=0,
        total=16125,
        status=status,
        estimated_ready_time=datetime.now(UTC) + timedelta(minutes=25),
    )


def make_socket() -> MagicMock:
    """Create a mocked WebSocket."""
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


@pytest.mark.unit
class TestConnectionManager:
    """Test suite for room membership and broadcast."""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self) -> None:
        """Test that connections join and leave rooms."""
        manager = ConnectionManager()
        websocket = make_socket()

        await manager.connect(ADMIN_ROOM, websocket)
        assert manager.connection_count(ADMIN_ROOM) == 1
        websocket.accept.assert_awaited_once()

        manager.disconnect(ADMIN_ROOM, websocket)
        assert manager.connection_count(ADMIN_ROOM) == 0

    @pytest.mark.asyncio
    async def test_broadcast_drops_dead_connections(self) -> None:
        """Test that a socket failing to receive is removed."""
        manager = ConnectionManager()
        alive = make_socket()
        dead = make_socket()
        dead.send_json.side_effect = WebSocketDisconnect(code=1001)
        await manager.connect(ADMIN_ROOM, alive)
        await manager.connect(ADMIN_ROOM, dead)

        delivered = await manager.broadcast(ADMIN_ROOM, {"type": "ping"})

        assert delivered == 1
        assert manager.connection_count(ADMIN_ROOM) == 1

    @pytest.mark.asyncio
    async def test_broadcast_to_empty_room(self) -> None:
        """Test that broadcasting to nobody is a no-op."""
        assert await ConnectionManager().broadcast("order_missing", {"type": "ping"}) == 0


@pytest.mark.unit
class TestWebSocketOrderNotifier:
    """Test suite for the message fan-out of order events."""

    @pytest.fixture
    def manager(self) -> MagicMock:
        """Create a mocked ConnectionManager."""
        manager = MagicMock(spec=ConnectionManager)
        manager.broadcast = AsyncMock(return_value=1)
        return manager

    @pytest.mark.asyncio
    async def test_order_created_goes_to_staff(self, manager: MagicMock) -> None:
        """Test that new orders are announced to the admin room only."""
        await WebSocketOrderNotifier(manager).notify_order_created(make_order(OrderStatus.PENDING))

        manager.broadcast.assert_awaited_once()
        room, message = manager.broadcast.await_args.args
        assert room == ADMIN_ROOM
        assert message["type"] == "order-created"
        assert message["data"]["order_number"] == "ORD-000001-AAA"

    @pytest.mark.asyncio
    async def test_status_change_goes_to_customer_and_staff(self, manager: MagicMock) -> None:
        """Test that status updates reach the order room and the admin room."""
        await WebSocketOrderNotifier(manager).notify_status_changed(make_order(OrderStatus.PREPARING))

        calls = [(call.args[0], call.args[1]["type"]) for call in manager.broadcast.await_args_list]
        assert calls == [
            (order_room("order_1"), "order-status-updated"),
            (ADMIN_ROOM, "order-status-updated"),
        ]

    @pytest.mark.asyncio
    async def test_ready_order_also_sends_ready_event(self, manager: MagicMock) -> None:
        """Test that READY orders get an extra order-ready message."""
        await WebSocketOrderNotifier(manager).notify_status_changed(make_order(OrderStatus.READY))

        types = [call.args[1]["type"] for call in manager.broadcast.await_args_list]
        assert types.count("order-ready") == 2

    @pytest.mark.asyncio
    async def test_estimated_time_change_has_its_own_event(self, manager: MagicMock) -> None:
        """Test that a new ready-time estimate is not sent as a status update."""
        order = make_order(OrderStatus.PREPARING)

        await WebSocketOrderNotifier(manager).notify_estimated_time_changed(order)

        calls = [(call.args[0], call.args[1]["type"]) for call in manager.broadcast.await_args_list]
        assert calls == [
            (order_room("order_1"), "order-eta-updated"),
            (ADMIN_ROOM, "order-eta-updated"),
        ]
        payload = manager.broadcast.await_args.args[1]["data"]
        assert payload["estimated_ready_time"] == order.estimated_ready_time.isoformat()
