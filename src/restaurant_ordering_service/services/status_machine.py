"""Allowed status transitions for orders and payments.

Both tables are the single source of truth for which moves are legal.
Terminal states map to an empty set.
"""

from restaurant_ordering_service.models.order_models import OrderStatus
from restaurant_ordering_service.models.payment_models import PaymentStatus
from restaurant_ordering_service.services.exceptions import BusinessLogicError

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    # A declined attempt can be retried on the same provider intent
    PaymentStatus.FAILED: frozenset({PaymentStatus.PROCESSING, PaymentStatus.COMPLETED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Orders waiting on or in the kitchen; used for queue length and position
ACTIVE_ORDER_STATUSES: tuple[OrderStatus, ...] = (OrderStatus.CONFIRMED, OrderStatus.PREPARING)


def can_transition_order(current: OrderStatus, requested: OrderStatus) -> bool:
    """Check whether an order may move from ``current`` to ``requested``."""
    return requested in ORDER_TRANSITIONS[current]


def validate_order_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """Reject an illegal order status transition.

    Args:
        current: Status the order is in now
        requested: Status the caller wants

    Raises:
        BusinessLogicError: If the transition is not in the table
    """
    if not can_transition_order(current, requested):
        raise BusinessLogicError(
            f"Cannot update order status from {current.value} to {requested.value}"
        )


def can_transition_payment(current: PaymentStatus, requested: PaymentStatus) -> bool:
    """Check whether a payment may move from ``current`` to ``requested``."""
    return requested in PAYMENT_TRANSITIONS[current]
