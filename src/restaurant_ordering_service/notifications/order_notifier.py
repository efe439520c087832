"""Realtime order notifications.

Customers subscribe to the room of their own order; staff subscribe to the
admin room, which receives every order event. Notifications are sent by the
HTTP layer after a change has been committed.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from restaurant_ordering_service.models.order_models import Order, OrderStatus

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin"

ORDER_CREATED = "order-created"
ORDER_STATUS_UPDATED = "order-status-updated"
ORDER_READY = "order-ready"
ORDER_ETA_UPDATED = "order-eta-updated"


def order_room(order_id: str) -> str:
    """Room name for one order's subscribers."""
    return f"order_{order_id}"


def _order_payload(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "order_type": order.order_type.value,
        "total": order.total,
        "estimated_ready_time": order.estimated_ready_time.isoformat(),
        "actual_ready_time": order.actual_ready_time.isoformat() if order.actual_ready_time else None,
        "updated_at": order.updated_at.isoformat(),
    }


class OrderNotifier(ABC):
    """Pushes committed order changes to subscribers."""

    @abstractmethod
    async def notify_order_created(self, order: Order) -> None:
        """Announce a newly placed order to staff."""

    @abstractmethod
    async def notify_status_changed(self, order: Order) -> None:
        """Announce an order's new status to its customer and to staff."""

    @abstractmethod
    async def notify_estimated_time_changed(self, order: Order) -> None:
        """Announce a revised ready time to the customer and to staff."""


class ConnectionManager:
    """Tracks open WebSocket connections grouped into rooms."""

    def __init__(self) -> None:
        self.rooms: dict[str, set[WebSocket]] = {}

    async def connect(self, room: str, websocket: WebSocket) -> None:
        """Accept a connection and add it to a room."""
        await websocket.accept()
        self.rooms.setdefault(room, set()).add(websocket)
        logger.info(f"WebSocket joined room {room} ({len(self.rooms[room])} connected)")

    def disconnect(self, room: str, websocket: WebSocket) -> None:
        """Remove a connection from a room."""
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[room]
        logger.info(f"WebSocket left room {room}")

    def connection_count(self, room: str) -> int:
        """Number of connections in a room."""
        return len(self.rooms.get(room, ()))

    async def broadcast(self, room: str, message: dict[str, Any]) -> int:
        """Send a JSON message to every connection in a room.

        Connections that fail to receive are dropped from the room.

        Returns:
            int: Number of connections the message was delivered to
        """
        delivered = 0
        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(f"Dropping dead WebSocket in room {room}: {e}")
                self.disconnect(room, websocket)
        return delivered


class WebSocketOrderNotifier(OrderNotifier):
    """OrderNotifier backed by in-process WebSocket rooms."""

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    async def notify_order_created(self, order: Order) -> None:
        await self.manager.broadcast(
            ADMIN_ROOM, {"type": ORDER_CREATED, "data": _order_payload(order)}
        )

    async def notify_status_changed(self, order: Order) -> None:
        message = {"type": ORDER_STATUS_UPDATED, "data": _order_payload(order)}
        await self.manager.broadcast(order_room(order.id), message)
        await self.manager.broadcast(ADMIN_ROOM, message)

        if order.status == OrderStatus.READY:
            ready = {"type": ORDER_READY, "data": _order_payload(order)}
            await self.manager.broadcast(order_room(order.id), ready)
            await self.manager.broadcast(ADMIN_ROOM, ready)

        logger.debug(f"Notified subscribers of order {order.order_number} -> {order.status.value}")

    async def notify_estimated_time_changed(self, order: Order) -> None:
        message = {"type": ORDER_ETA_UPDATED, "data": _order_payload(order)}
        await self.manager.broadcast(order_room(order.id), message)
        await self.manager.broadcast(ADMIN_ROOM, message)
