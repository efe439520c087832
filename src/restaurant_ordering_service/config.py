"""Environment-driven construction of the service's dependencies.

Both the uvicorn entry point and the Lambda dependency cache build their
objects through these factories so the two deployments read the same
environment variables.
"""

import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import boto3

from restaurant_ordering_service.adapters.base_adapter import PaymentProvider
from restaurant_ordering_service.adapters.paypal_adapter import PayPalProvider
from restaurant_ordering_service.adapters.stripe_adapter import StripeProvider
from restaurant_ordering_service.handlers.rate_limiter import RateLimiter
from restaurant_ordering_service.models.business_config import BusinessConfig
from restaurant_ordering_service.notifications.order_notifier import (
    ConnectionManager,
    WebSocketOrderNotifier,
)
from restaurant_ordering_service.repositories.base_store import DataStore
from restaurant_ordering_service.repositories.cache_store import InMemoryKeyValueStore, KeyValueStore
from restaurant_ordering_service.repositories.dynamodb_store import DynamoDBDataStore
from restaurant_ordering_service.repositories.memory_store import InMemoryDataStore
from restaurant_ordering_service.services.menu_service import MenuService
from restaurant_ordering_service.services.order_service import OrderService
from restaurant_ordering_service.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

DEVELOPMENT_API_KEY = "dummy-key-for-development"


def load_business_config() -> BusinessConfig:
    """Read pricing and lifecycle settings from the environment.

    Raises:
        pydantic.ValidationError: If a value is out of range
    """
    return BusinessConfig(
        tax_rate=Decimal(os.getenv("TAX_RATE", "0.075")),
        delivery_fee=int(os.getenv("DELIVERY_FEE", "50000")),
        minimum_order_amount=int(os.getenv("MINIMUM_ORDER_AMOUNT", "150000")),
        currency=os.getenv("CURRENCY", "NGN").upper(),
        payment_timeout_minutes=int(os.getenv("ORDER_PAYMENT_TIMEOUT_MINUTES", "30")),
    )


def get_dynamodb_resource() -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )

    logger.info(f"Using AWS DynamoDB in region {region}")
    return boto3.resource("dynamodb", region_name=region)


def create_data_store() -> DataStore:
    """Create the data store selected by STORAGE_BACKEND.

    Raises:
        ValueError: If STORAGE_BACKEND is not 'dynamodb' or 'memory'
    """
    backend = os.getenv("STORAGE_BACKEND", "dynamodb").lower()

    if backend == "memory":
        logger.warning("Using in-memory data store; data is lost on restart")
        return InMemoryDataStore()

    if backend != "dynamodb":
        raise ValueError(f"Unsupported STORAGE_BACKEND: {backend}")

    menu_table = os.getenv("DYNAMODB_MENU_TABLE", "restaurant-menu-items")
    orders_table = os.getenv("DYNAMODB_ORDERS_TABLE", "restaurant-orders")
    payments_table = os.getenv("DYNAMODB_PAYMENTS_TABLE", "restaurant-payments")
    logger.info(f"DynamoDB tables - menu: {menu_table}, orders: {orders_table}, payments: {payments_table}")

    return DynamoDBDataStore(
        dynamodb_resource=get_dynamodb_resource(),
        menu_table_name=menu_table,
        orders_table_name=orders_table,
        payments_table_name=payments_table,
    )


def create_payment_providers() -> dict[str, PaymentProvider]:
    """Create payment providers for which credentials are configured.

    Returns:
        Dictionary mapping provider names to configured providers
    """
    timeout = float(os.getenv("PAYMENT_PROVIDER_TIMEOUT_SECONDS", "10"))
    providers: dict[str, PaymentProvider] = {}

    stripe_key = os.getenv("STRIPE_SECRET_KEY")
    if stripe_key:
        providers["stripe"] = StripeProvider(
            secret_key=stripe_key,
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            timeout_seconds=timeout,
        )
        logger.info("Stripe provider configured")
    else:
        logger.warning("STRIPE_SECRET_KEY not set, card and wallet payments disabled")

    paypal_client_id = os.getenv("PAYPAL_CLIENT_ID")
    paypal_client_secret = os.getenv("PAYPAL_CLIENT_SECRET")
    if paypal_client_id and paypal_client_secret:
        providers["paypal"] = PayPalProvider(
            client_id=paypal_client_id,
            client_secret=paypal_client_secret,
            environment=os.getenv("PAYPAL_ENVIRONMENT", "sandbox"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            timeout_seconds=timeout,
        )
        logger.info("PayPal provider configured")
    else:
        logger.warning("PayPal credentials not set, PayPal payments disabled")

    return providers


def load_api_keys() -> list[str]:
    """Read accepted staff API keys from ADMIN_API_KEY (comma-separated)."""
    api_keys = [key.strip() for key in os.getenv("ADMIN_API_KEY", "").split(",") if key.strip()]

    if not api_keys:
        logger.warning("No ADMIN_API_KEY configured - using development key")
        api_keys = [DEVELOPMENT_API_KEY]

    return api_keys


@dataclass
class ServiceContainer:
    """Everything the HTTP app and scheduled handlers are built from."""

    config: BusinessConfig
    store: DataStore
    cache: KeyValueStore
    providers: dict[str, PaymentProvider]
    menu_service: MenuService
    order_service: OrderService
    payment_service: PaymentService
    connection_manager: ConnectionManager
    notifier: WebSocketOrderNotifier
    rate_limiter: RateLimiter

    @property
    def stripe_provider(self) -> StripeProvider | None:
        provider = self.providers.get("stripe")
        return provider if isinstance(provider, StripeProvider) else None


def build_services(store: DataStore | None = None) -> ServiceContainer:
    """Wire services from the environment.

    Args:
        store: Data store to use instead of the one STORAGE_BACKEND selects

    Returns:
        ServiceContainer with every dependency constructed
    """
    config = load_business_config()
    store = store or create_data_store()
    cache = InMemoryKeyValueStore()
    providers = create_payment_providers()

    order_service = OrderService(store=store, config=config)
    connection_manager = ConnectionManager()

    container = ServiceContainer(
        config=config,
        store=store,
        cache=cache,
        providers=providers,
        menu_service=MenuService(
            store=store,
            cache=cache,
            cache_ttl_seconds=int(os.getenv("MENU_CACHE_TTL_SECONDS", "300")),
        ),
        order_service=order_service,
        payment_service=PaymentService(
            store=store,
            order_service=order_service,
            providers=providers,
            config=config,
        ),
        connection_manager=connection_manager,
        notifier=WebSocketOrderNotifier(connection_manager),
        rate_limiter=RateLimiter(
            store=cache,
            limit=int(os.getenv("ORDER_RATE_LIMIT", "10")),
            window_seconds=int(os.getenv("ORDER_RATE_WINDOW_SECONDS", "900")),
        ),
    )

    logger.info(
        f"Services initialized - currency: {config.currency}, "
        f"providers: {', '.join(providers) or 'none'}"
    )
    return container
