"""Custom metrics for the ordering service."""

from opentelemetry import metrics

meter = metrics.get_meter("ordering-svc")

orders_created_counter = meter.create_counter(
    name="orders_created_total",
    description="Total number of orders created by order type",
    unit="1",
)

order_transition_counter = meter.create_counter(
    name="order_status_transitions_total",
    description="Total number of order status transitions by source and target status",
    unit="1",
)

payment_event_counter = meter.create_counter(
    name="payment_events_total",
    description="Payment lifecycle events by method and outcome",
    unit="1",
)

provider_call_duration = meter.create_histogram(
    name="payment_provider_call_duration_seconds",
    description="Duration of payment provider API calls",
    unit="s",
)


def record_order_created(order_type: str) -> None:
    """Record a successfully created order.

    Args:
        order_type: PICKUP or DELIVERY
    """
    orders_created_counter.add(1, {"order_type": order_type})


def record_order_transition(from_status: str, to_status: str) -> None:
    """Record an order status transition.

    Args:
        from_status: Status before the transition
        to_status: Status after the transition
    """
    order_transition_counter.add(1, {"from": from_status, "to": to_status})


def record_payment_event(method: str, outcome: str) -> None:
    """Record a payment lifecycle event.

    Args:
        method: Payment method (e.g. "CARD", "PAYPAL")
        outcome: What happened (e.g. "intent_created", "completed", "failed", "refunded")
    """
    payment_event_counter.add(1, {"method": method, "outcome": outcome})


def record_provider_call(provider: str, operation: str, duration_seconds: float) -> None:
    """Record a payment provider API call.

    Args:
        provider: Provider name ("stripe", "paypal")
        operation: Operation performed (e.g. "create_intent", "create_refund")
        duration_seconds: Duration in seconds
    """
    provider_call_duration.record(duration_seconds, {"provider": provider, "operation": operation})
