"""Shared pytest fixtures and configuration for all tests."""

import os
from decimal import Decimal

import pytest

os.environ.setdefault("ENVIRONMENT", "test")

from restaurant_ordering_service.adapters.base_adapter import (  # noqa: E402
    PaymentProvider,
    ProviderIntent,
    ProviderRefund,
    ProviderStatus,
)
from restaurant_ordering_service.models.business_config import BusinessConfig  # noqa: E402
from restaurant_ordering_service.models.menu_models import MenuCategory, MenuItem  # noqa: E402
from restaurant_ordering_service.models.order_models import CustomerInfo, DeliveryAddress  # noqa: E402
from restaurant_ordering_service.repositories.memory_store import InMemoryDataStore  # noqa: E402


class ScriptedPaymentProvider(PaymentProvider):
    """Payment provider double that records calls and returns scripted statuses."""

    def __init__(self, provider_name: str = "stripe") -> None:
        super().__init__(provider_name, timeout_seconds=1.0)
        self.intent_status = ProviderStatus.REQUIRES_ACTION
        self.refund_status = ProviderStatus.SUCCEEDED
        self.error: Exception | None = None
        self.created_intents: list[dict] = []
        self.retrieved_intents: list[str] = []
        self.refunds: list[dict] = []

    async def create_intent(
        self,
        amount: int,
        currency: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> ProviderIntent:
        if self.error:
            raise self.error
        self.created_intents.append(
            {"amount": amount, "currency": currency, "customer_email": customer_email, "metadata": metadata}
        )
        intent_id = f"pi_test_{len(self.created_intents)}"
        return ProviderIntent(
            id=intent_id, client_secret=f"{intent_id}_secret", status=ProviderStatus.REQUIRES_ACTION
        )

    async def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        if self.error:
            raise self.error
        self.retrieved_intents.append(intent_id)
        return ProviderIntent(id=intent_id, client_secret="", status=self.intent_status)

    async def create_refund(
        self, transaction_id: str, amount: int, metadata: dict[str, str]
    ) -> ProviderRefund:
        if self.error:
            raise self.error
        self.refunds.append({"transaction_id": transaction_id, "amount": amount, "metadata": metadata})
        return ProviderRefund(id=f"re_test_{len(self.refunds)}", status=self.refund_status)


@pytest.fixture
def business_config() -> BusinessConfig:
    """Fixture providing business settings with a 7.5% tax and a 50.00 delivery fee."""
    return BusinessConfig(
        tax_rate=Decimal("0.075"),
        delivery_fee=5000,
        minimum_order_amount=10000,
        currency="NGN",
        payment_timeout_minutes=30,
    )


@pytest.fixture
def menu_items() -> list[MenuItem]:
    """Fixture providing sample menu items for testing."""
    return [
        MenuItem(
            id="item_jollof",
            name="Jollof Rice",
            description="Smoky party jollof",
            price=15000,
            category=MenuCategory.MAIN,
            preparation_time=20,
            ingredients=["rice", "tomato", "pepper"],
        ),
        MenuItem(
            id="item_chicken",
            name="Grilled Chicken",
            description="Quarter chicken, peppered",
            price=8000,
            category=MenuCategory.MAIN,
            preparation_time=15,
            ingredients=["chicken", "pepper"],
        ),
        MenuItem(
            id="item_plantain",
            name="Dodo",
            description="Fried sweet plantain",
            price=3000,
            category=MenuCategory.SIDE,
            preparation_time=10,
            ingredients=["plantain"],
        ),
        MenuItem(
            id="item_suya",
            name="Suya Platter",
            description="Spiced beef skewers",
            price=12000,
            category=MenuCategory.COMBO,
            is_available=False,
            preparation_time=25,
            ingredients=["beef", "yaji"],
        ),
    ]


@pytest.fixture
def store(menu_items: list[MenuItem]) -> InMemoryDataStore:
    """Fixture providing an in-memory data store seeded with the sample menu."""
    data_store = InMemoryDataStore()
    data_store._menu_items = {item.id: item for item in menu_items}
    return data_store


@pytest.fixture
def customer() -> CustomerInfo:
    """Fixture providing customer contact details."""
    return CustomerInfo(name="Ada Obi", phone="+234 801 234 5678", email="ada@example.com")


@pytest.fixture
def delivery_address() -> DeliveryAddress:
    """Fixture providing a delivery address."""
    return DeliveryAddress(street="12 Admiralty Way", city="Lekki", state="Lagos")


@pytest.fixture
def stripe_provider() -> ScriptedPaymentProvider:
    """Fixture providing a scripted card payment provider."""
    return ScriptedPaymentProvider("stripe")
