"""Unit tests for pricing and ready-time calculations."""

import re
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from restaurant_ordering_service.models.order_models import OrderType
from restaurant_ordering_service.services.pricing import (
    calculate_delivery_fee,
    compute_totals,
    estimate_ready_time,
    format_amount,
    generate_order_number,
    generate_payment_reference,
    validate_minimum_order,
)


@pytest.mark.unit
class TestComputeTotals:
    """Test suite for tax and total calculation."""

    def test_delivery_order_totals(self) -> None:
        """Test two mains and a side delivered with 7.5% tax."""
        subtotal = 15000 * 2 + 8000

        totals = compute_totals(subtotal, Decimal("0.075"), delivery_fee=5000)

        assert totals.tax == 2850
        assert totals.total == 45850

    def test_tax_rounds_half_up(self) -> None:
        """Test that a half minor unit of tax rounds up."""
        totals = compute_totals(10, "0.05")

        assert totals.tax == 1
        assert totals.total == 11

    def test_tax_rounds_down_below_half(self) -> None:
        """Test that less than half a minor unit rounds down."""
        totals = compute_totals(10, "0.04")

        assert totals.tax == 0

    def test_accepts_float_rate(self) -> None:
        """Test that a float rate is converted without binary noise."""
        totals = compute_totals(1000, 0.075)

        assert totals.tax == 75

    def test_zero_subtotal(self) -> None:
        """Test that an empty subtotal has no tax."""
        totals = compute_totals(0, Decimal("0.075"))

        assert totals.tax == 0
        assert totals.total == 0

    def test_negative_amount_rejected(self) -> None:
        """Test that negative inputs raise ValueError."""
        with pytest.raises(ValueError):
            compute_totals(-1, Decimal("0.075"))


@pytest.mark.unit
class TestEstimateReadyTime:
    """Test suite for ready-time estimation."""

    def test_slowest_item_plus_buffer_and_queue(self) -> None:
        """Test max prep time plus 5 minute buffer plus 3 minutes per queued order."""
        now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

        ready = estimate_ready_time([15, 20, 10], queue_length=3, now=now)

        assert ready == now + timedelta(minutes=34)

    def test_empty_queue(self) -> None:
        """Test single item with nobody ahead."""
        now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

        ready = estimate_ready_time([6], queue_length=0, now=now)

        assert ready == now + timedelta(minutes=11)

    def test_no_items_uses_buffer_and_queue_only(self) -> None:
        """Test that an empty preparation list counts as zero minutes."""
        now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

        ready = estimate_ready_time([], queue_length=2, now=now)

        assert ready == now + timedelta(minutes=11)

    def test_defaults_to_current_time(self) -> None:
        """Test that the estimate is relative to now when no time is given."""
        before = datetime.now(UTC)

        ready = estimate_ready_time([10])

        assert before + timedelta(minutes=15) <= ready <= datetime.now(UTC) + timedelta(minutes=15)


@pytest.mark.unit
class TestPricingHelpers:
    """Test suite for minimum order, delivery fee and formatting helpers."""

    def test_minimum_order_boundary(self) -> None:
        """Test that a subtotal equal to the minimum is accepted."""
        assert validate_minimum_order(10000, 10000) is True
        assert validate_minimum_order(9999, 10000) is False

    def test_delivery_fee_only_for_delivery(self) -> None:
        """Test that pickup orders carry no delivery fee."""
        assert calculate_delivery_fee(OrderType.DELIVERY, 5000) == 5000
        assert calculate_delivery_fee(OrderType.PICKUP, 5000) == 0

    def test_format_amount(self) -> None:
        """Test rendering of minor units with currency."""
        assert format_amount(150000, "NGN") == "1500.00 NGN"
        assert format_amount(5, "USD") == "0.05 USD"

    def test_order_number_format(self) -> None:
        """Test that order numbers look like ORD-123456-AB1."""
        assert re.fullmatch(r"ORD-\d{6}-[A-Z0-9]{3}", generate_order_number())

    def test_payment_reference_format(self) -> None:
        """Test that payment references look like PAY-<ms>-ABC123."""
        assert re.fullmatch(r"PAY-\d+-[A-Z0-9]{6}", generate_payment_reference())

    def test_payment_references_differ(self) -> None:
        """Test that consecutive references are distinct."""
        references = {generate_payment_reference() for _ in range(50)}

        assert len(references) == 50
