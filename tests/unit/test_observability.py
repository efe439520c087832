"""Unit tests for observability setup and the tracing decorator."""

import logging
import os
from unittest.mock import MagicMock, Mock, patch

import pytest
from pythonjsonlogger import jsonlogger

from restaurant_ordering_service.observability import config as observability_config
from restaurant_ordering_service.observability.decorators import traced
from restaurant_ordering_service.services.exceptions import BusinessLogicError


@pytest.mark.unit
class TestTraced:
    """Test suite for the traced decorator."""

    @pytest.fixture
    def span(self) -> MagicMock:
        """Patch the tracer lookup and return the span it opens."""
        with patch("restaurant_ordering_service.observability.decorators.trace.get_tracer") as get_tracer:
            tracer = get_tracer.return_value
            yield tracer.start_as_current_span.return_value.__enter__.return_value

    @pytest.mark.asyncio
    async def test_async_success(self, span: MagicMock) -> None:
        """Test that a custom span name also records the function name."""

        @traced("settle_payment")
        async def settle() -> str:
            return "settled"

        assert await settle() == "settled"
        span.set_attribute.assert_any_call("service.name", "ordering-svc")
        span.set_attribute.assert_any_call("function.name", "settle")
        span.set_attribute.assert_any_call("success", True)

    def test_sync_error_is_recorded_and_raised(self, span: MagicMock) -> None:
        """Test that typed errors add their code to the span before propagating."""
        error = BusinessLogicError("Order already has a payment in progress")

        @traced()
        def reject() -> None:
            raise error

        with pytest.raises(BusinessLogicError):
            reject()

        span.set_attribute.assert_any_call("success", False)
        span.set_attribute.assert_any_call("error.type", "BusinessLogicError")
        span.set_attribute.assert_any_call("error.code", "BUSINESS_LOGIC_ERROR")
        span.record_exception.assert_called_once_with(error)


@pytest.mark.unit
class TestSetupObservability:
    """Tests for setup_observability and configure_logging."""

    @patch.dict(os.environ, {"ENVIRONMENT": "test"})
    @patch.object(observability_config, "setup_auto_instrumentation")
    @patch.object(observability_config, "setup_metrics")
    @patch.object(observability_config, "setup_tracing")
    @patch.object(observability_config.metrics, "set_meter_provider")
    @patch.object(observability_config.trace, "set_tracer_provider")
    def test_test_environment_skips_exporters(
        self,
        mock_set_tracer_provider: Mock,
        mock_set_meter_provider: Mock,
        mock_setup_tracing: Mock,
        mock_setup_metrics: Mock,
        mock_auto_instrumentation: Mock,
    ) -> None:
        """Test that ENVIRONMENT=test installs bare providers instead of OTLP exporters."""
        observability_config.setup_observability(enable_exporters=True)

        mock_setup_tracing.assert_not_called()
        mock_setup_metrics.assert_not_called()
        mock_set_tracer_provider.assert_called_once()
        mock_set_meter_provider.assert_called_once()
        mock_auto_instrumentation.assert_called_once()

    @patch.dict(os.environ, {"OTEL_SERVICE_NAME": "ordering-svc-staging", "ENVIRONMENT": "staging"})
    def test_service_resource_from_environment(self) -> None:
        """Test that the resource carries the configured service name and environment."""
        resource = observability_config.get_service_resource()

        assert resource.attributes["service.name"] == "ordering-svc-staging"
        assert resource.attributes["deployment.environment"] == "staging"

    @patch.dict(os.environ, {"LOG_LEVEL": "warning"})
    def test_configure_logging_replaces_root_handlers(self) -> None:
        """Test that the root logger gets a single JSON handler at LOG_LEVEL."""
        root_logger = logging.getLogger()
        saved_handlers = root_logger.handlers[:]
        saved_level = root_logger.level

        try:
            observability_config.configure_logging()

            assert root_logger.level == logging.WARNING
            assert len(root_logger.handlers) == 1
            assert isinstance(root_logger.handlers[0].formatter, jsonlogger.JsonFormatter)
        finally:
            root_logger.handlers = saved_handlers
            root_logger.setLevel(saved_level)
