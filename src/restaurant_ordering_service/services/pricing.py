"""Pricing and ready-time calculations.

Pure functions over integer minor-currency amounts. Nothing here touches
the data store or the clock unless a caller leaves ``now`` unset.
"""

import secrets
import string
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from restaurant_ordering_service.models.order_models import OrderType

PREPARATION_BUFFER_MINUTES = 5
QUEUE_DELAY_MINUTES = 3

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class OrderTotals:
    """Tax and grand total for a subtotal.

    Attributes:
        tax: Tax in minor currency units
        total: subtotal + tax + delivery fee
    """

    tax: int
    total: int


def compute_totals(subtotal: int, tax_rate: Decimal | float | str, delivery_fee: int = 0) -> OrderTotals:
    """Compute tax and total for an order subtotal.

    Tax is rounded half-up to a whole minor unit.

    Args:
        subtotal: Sum of line subtotals in minor units
        tax_rate: Fractional rate, e.g. 0.075 for 7.5%
        delivery_fee: Delivery fee in minor units

    Returns:
        OrderTotals with tax and total

    Raises:
        ValueError: If any amount or the rate is negative
    """
    rate = Decimal(str(tax_rate))
    if subtotal < 0 or delivery_fee < 0 or rate < 0:
        raise ValueError("subtotal, delivery_fee and tax_rate must be non-negative")

    tax = int((Decimal(subtotal) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return OrderTotals(tax=tax, total=subtotal + tax + delivery_fee)


def estimate_ready_time(
    preparation_times: list[int],
    queue_length: int = 0,
    now: datetime | None = None,
) -> datetime:
    """Estimate when an order will be ready.

    Items are prepared in parallel, so the slowest item dominates. A fixed
    buffer is added, plus a fixed delay per order already in the queue.

    Args:
        preparation_times: Preparation time of each line in minutes
        queue_length: Number of active orders ahead of this one
        now: Reference time (defaults to the current UTC time)

    Returns:
        Estimated ready time
    """
    longest = max(preparation_times, default=0)
    minutes = longest + PREPARATION_BUFFER_MINUTES + max(queue_length, 0) * QUEUE_DELAY_MINUTES
    return (now or datetime.now(UTC)) + timedelta(minutes=minutes)


def validate_minimum_order(subtotal: int, minimum: int) -> bool:
    """Check that a subtotal meets the configured minimum order amount."""
    return subtotal >= minimum


def calculate_delivery_fee(order_type: OrderType, delivery_fee: int) -> int:
    """Delivery fee applicable to an order type."""
    return delivery_fee if order_type == OrderType.DELIVERY else 0


def format_amount(amount: int, currency: str) -> str:
    """Render a minor-unit amount for messages, e.g. ``1500.00 NGN``."""
    return f"{Decimal(amount) / 100:.2f} {currency}"


def _random_code(length: int) -> str:
    return "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(length))


def generate_order_number() -> str:
    """Generate a human-readable order number, ``ORD-<6 digits>-<3 chars>``."""
    timestamp = str(time.time_ns() // 1_000_000)[-6:]
    return f"ORD-{timestamp}-{_random_code(3)}"


def generate_payment_reference() -> str:
    """Generate a public payment reference, ``PAY-<ms timestamp>-<6 chars>``."""
    return f"PAY-{time.time_ns() // 1_000_000}-{_random_code(6)}"
