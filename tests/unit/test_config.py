"""Unit tests for environment-driven service construction."""

import os
from decimal import Decimal
from unittest.mock import MagicMock, Mock, patch

import pytest
from pydantic import ValidationError

from restaurant_ordering_service.adapters.paypal_adapter import PayPalProvider
from restaurant_ordering_service.adapters.stripe_adapter import StripeProvider
from restaurant_ordering_service.config import (
    DEVELOPMENT_API_KEY,
    build_services,
    create_data_store,
    create_payment_providers,
    get_dynamodb_resource,
    load_api_keys,
    load_business_config,
)
from restaurant_ordering_service.repositories.dynamodb_store import DynamoDBDataStore
from restaurant_ordering_service.repositories.memory_store import InMemoryDataStore


@pytest.mark.unit
class TestLoadBusinessConfig:
    """Tests for load_business_config function."""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self) -> None:
        """Test the default pricing settings."""
        config = load_business_config()

        assert config.tax_rate == Decimal("0.075")
        assert config.delivery_fee == 50000
        assert config.minimum_order_amount == 150000
        assert config.currency == "NGN"
        assert config.payment_timeout_minutes == 30

    @patch.dict(
        os.environ,
        {"TAX_RATE": "0.2", "DELIVERY_FEE": "499", "MINIMUM_ORDER_AMOUNT": "1000", "CURRENCY": "gbp"},
        clear=True,
    )
    def test_reads_environment(self) -> None:
        """Test that environment values override the defaults."""
        config = load_business_config()

        assert config.tax_rate == Decimal("0.2")
        assert config.delivery_fee == 499
        assert config.minimum_order_amount == 1000
        assert config.currency == "GBP"

    @patch.dict(os.environ, {"TAX_RATE": "1.5"}, clear=True)
    def test_rejects_out_of_range_tax(self) -> None:
        """Test that an impossible tax rate fails validation."""
        with pytest.raises(ValidationError):
            load_business_config()


@pytest.mark.unit
class TestGetDynamoDBResource:
    """Tests for get_dynamodb_resource function."""

    @patch.dict(os.environ, {"DYNAMODB_ENDPOINT": "", "AWS_REGION": "us-west-2"}, clear=True)
    @patch("restaurant_ordering_service.config.boto3.resource")
    def test_creates_aws_resource_when_no_endpoint(self, mock_boto3_resource: Mock) -> None:
        """Test that AWS DynamoDB resource is created when no local endpoint configured."""
        mock_resource = MagicMock()
        mock_boto3_resource.return_value = mock_resource

        result = get_dynamodb_resource()

        mock_boto3_resource.assert_called_once_with("dynamodb", region_name="us-west-2")
        assert result == mock_resource

    @patch.dict(
        os.environ,
        {
            "DYNAMODB_ENDPOINT": "http://localhost:8000",
            "AWS_REGION": "us-east-1",
            "AWS_ACCESS_KEY_ID": "test-key",
            "AWS_SECRET_ACCESS_KEY": "test-secret",
        },
        clear=True,
    )
    @patch("restaurant_ordering_service.config.boto3.resource")
    def test_creates_local_resource_when_endpoint_provided(self, mock_boto3_resource: Mock) -> None:
        """Test that local DynamoDB resource is created when endpoint configured."""
        get_dynamodb_resource()

        mock_boto3_resource.assert_called_once_with(
            "dynamodb",
            endpoint_url="http://localhost:8000",
            region_name="us-east-1",
            aws_access_key_id="test-key",
            aws_secret_access_key="test-secret",
        )

    @patch.dict(os.environ, {"DYNAMODB_ENDPOINT": ""}, clear=True)
    @patch("restaurant_ordering_service.config.boto3.resource")
    def test_uses_default_region_when_not_specified(self, mock_boto3_resource: Mock) -> None:
        """Test that default region us-east-1 is used when AWS_REGION not set."""
        get_dynamodb_resource()

        mock_boto3_resource.assert_called_once_with("dynamodb", region_name="us-east-1")


@pytest.mark.unit
class TestCreateDataStore:
    """Tests for create_data_store function."""

    @patch.dict(os.environ, {"STORAGE_BACKEND": "memory"}, clear=True)
    def test_memory_backend(self) -> None:
        """Test that the memory backend needs no AWS access."""
        assert isinstance(create_data_store(), InMemoryDataStore)

    @patch.dict(
        os.environ,
        {"STORAGE_BACKEND": "dynamodb", "DYNAMODB_ORDERS_TABLE": "orders-test"},
        clear=True,
    )
    @patch("restaurant_ordering_service.config.boto3.resource")
    def test_dynamodb_backend(self, mock_boto3_resource: Mock) -> None:
        """Test that the DynamoDB backend uses the configured table names."""
        store = create_data_store()

        assert isinstance(store, DynamoDBDataStore)
        table_names = [call.args[0] for call in mock_boto3_resource.return_value.Table.call_args_list]
        assert "orders-test" in table_names
        assert "restaurant-menu-items" in table_names

    @patch.dict(os.environ, {"STORAGE_BACKEND": "sqlite"}, clear=True)
    def test_unsupported_backend(self) -> None:
        """Test that an unknown backend is rejected."""
        with pytest.raises(ValueError, match="Unsupported STORAGE_BACKEND: sqlite"):
            create_data_store()


@pytest.mark.unit
class TestCreatePaymentProviders:
    """Tests for create_payment_providers function."""

    @patch.dict(os.environ, {}, clear=True)
    def test_no_credentials_no_providers(self) -> None:
        """Test that providers without credentials are left out."""
        assert create_payment_providers() == {}

    @patch.dict(
        os.environ,
        {
            "STRIPE_SECRET_KEY": "sk_test_123",
            "STRIPE_WEBHOOK_SECRET": "whsec_123",
            "PAYPAL_CLIENT_ID": "client-id",
            "PAYPAL_CLIENT_SECRET": "client-secret",
            "PAYMENT_PROVIDER_TIMEOUT_SECONDS": "4",
        },
        clear=True,
    )
    def test_configured_providers(self) -> None:
        """Test that both providers are created from their credentials."""
        providers = create_payment_providers()

        assert isinstance(providers["stripe"], StripeProvider)
        assert isinstance(providers["paypal"], PayPalProvider)
        assert providers["stripe"].timeout_seconds == 4.0
        assert providers["paypal"].timeout_seconds == 4.0


@pytest.mark.unit
class TestLoadApiKeys:
    """Tests for load_api_keys function."""

    @patch.dict(os.environ, {"ADMIN_API_KEY": " key-1 , key-2,, "}, clear=True)
    def test_splits_comma_separated_keys(self) -> None:
        """Test that keys are split and trimmed."""
        assert load_api_keys() == ["key-1", "key-2"]

    @patch.dict(os.environ, {}, clear=True)
    def test_falls_back_to_development_key(self) -> None:
        """Test the development fallback when no key is configured."""
        assert load_api_keys() == [DEVELOPMENT_API_KEY]


@pytest.mark.unit
class TestBuildServices:
    """Tests for build_services function."""

    @patch.dict(
        os.environ,
        {"STRIPE_SECRET_KEY": "sk_test_123", "ORDER_RATE_LIMIT": "3", "MENU_CACHE_TTL_SECONDS": "60"},
        clear=True,
    )
    def test_wires_services_over_given_store(self) -> None:
        """Test that every service shares the supplied store."""
        store = InMemoryDataStore()

        services = build_services(store)

        assert services.store is store
        assert services.order_service.store is store
        assert services.payment_service.store is store
        assert services.menu_service.store is store
        assert services.menu_service.cache is services.cache
        assert services.rate_limiter.limit == 3
        assert services.notifier.manager is services.connection_manager
        assert isinstance(services.stripe_provider, StripeProvider)

    @patch.dict(os.environ, {}, clear=True)
    def test_stripe_provider_absent_without_key(self) -> None:
        """Test that no Stripe provider is exposed when Stripe is not configured."""
        services = build_services(InMemoryDataStore())

        assert services.stripe_provider is None
