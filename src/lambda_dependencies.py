"""Shared dependency factory for Lambda handlers.

Dependencies are created once per Lambda container and reused across
invocations to keep warm starts cheap.
"""

import logging
import os

from fastapi import FastAPI

from restaurant_ordering_service.config import ServiceContainer, build_services, load_api_keys
from restaurant_ordering_service.handlers.api_handler import create_app
from restaurant_ordering_service.handlers.event_handler import ScheduledTaskHandler
from restaurant_ordering_service.observability import configure_logging, setup_observability

logger = logging.getLogger(__name__)

# Module-level caches for Lambda container reuse
_services: ServiceContainer | None = None
_scheduled_task_handler: ScheduledTaskHandler | None = None
_fastapi_app: FastAPI | None = None


def get_services() -> ServiceContainer:
    """Create or retrieve the cached service container.

    Returns:
        ServiceContainer wired from the environment
    """
    global _services

    if _services is not None:
        return _services

    _services = build_services()
    return _services


def get_scheduled_task_handler() -> ScheduledTaskHandler:
    """Create or retrieve the cached scheduled task handler.

    Returns:
        Configured ScheduledTaskHandler instance
    """
    global _scheduled_task_handler

    if _scheduled_task_handler is not None:
        return _scheduled_task_handler

    services = get_services()
    _scheduled_task_handler = ScheduledTaskHandler(
        order_service=services.order_service,
        notifier=services.notifier,
    )

    logger.info("Scheduled task handler initialized")
    return _scheduled_task_handler


def get_fastapi_app() -> FastAPI:
    """Create or retrieve the cached FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    global _fastapi_app

    if _fastapi_app is not None:
        return _fastapi_app

    services = get_services()
    _fastapi_app = create_app(
        order_service=services.order_service,
        payment_service=services.payment_service,
        menu_service=services.menu_service,
        notifier=services.notifier,
        connection_manager=services.connection_manager,
        rate_limiter=services.rate_limiter,
        api_keys=load_api_keys(),
        stripe_provider=services.stripe_provider,
    )

    logger.info("FastAPI application initialized")
    return _fastapi_app


def initialize_lambda_environment() -> None:
    """Initialize Lambda environment with logging and observability.

    Should be called once during Lambda cold start.
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    setup_observability()

    logger.info("Lambda environment initialized")
