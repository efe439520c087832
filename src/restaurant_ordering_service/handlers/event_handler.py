"""EventBridge handler for scheduled maintenance tasks."""

import logging
from datetime import UTC, datetime
from typing import Any

from restaurant_ordering_service.notifications.order_notifier import OrderNotifier
from restaurant_ordering_service.services.order_service import OrderService

logger = logging.getLogger(__name__)

SCHEDULED_EVENT_SOURCE = "aws.events"
SCHEDULED_EVENT_TYPE = "Scheduled Event"


def parse_event_time(event: dict[str, Any]) -> datetime:
    """Read the time an EventBridge event fired, defaulting to now.

    Args:
        event: Raw EventBridge event dictionary

    Returns:
        Timezone-aware event time
    """
    raw = event.get("time")
    if not raw:
        return datetime.now(UTC)

    try:
        fired_at = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable event time {raw!r}, using current time")
        return datetime.now(UTC)

    return fired_at if fired_at.tzinfo else fired_at.replace(tzinfo=UTC)


class ScheduledTaskHandler:
    """Runs periodic order maintenance triggered by an EventBridge schedule."""

    def __init__(self, order_service: OrderService, notifier: OrderNotifier) -> None:
        """Initialize the handler.

        Args:
            order_service: Order aggregate
            notifier: Receives a status update for every expired order
        """
        self.order_service = order_service
        self.notifier = notifier

    async def expire_unpaid_orders(self, now: datetime) -> int:
        """Cancel unpaid orders past the payment window and notify subscribers.

        Args:
            now: Time the schedule fired

        Returns:
            int: Number of orders cancelled
        """
        expired = await self.order_service.expire_unpaid_orders(now)
        for order in expired:
            await self.notifier.notify_status_changed(order)
        return len(expired)

    async def handle_scheduled_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Handle one scheduled EventBridge event.

        Args:
            event: EventBridge event dictionary

        Returns:
            Dictionary with statusCode and body for the Lambda response
        """
        source = event.get("source", "")
        detail_type = event.get("detail-type", "")
        if source != SCHEDULED_EVENT_SOURCE or detail_type != SCHEDULED_EVENT_TYPE:
            logger.warning(f"Unsupported event type: {source}/{detail_type}")
            return {"statusCode": 400, "body": f"Unsupported event type: {source}/{detail_type}"}

        expired = await self.expire_unpaid_orders(parse_event_time(event))
        logger.info(f"Scheduled expiry cancelled {expired} unpaid orders")
        return {"statusCode": 200, "body": f"Expired {expired} unpaid orders"}
