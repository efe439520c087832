"""Main application entry point for the restaurant ordering service.

This module builds the FastAPI application for running the service locally
or behind uvicorn in production.
"""

import logging
import os

from fastapi import FastAPI

from restaurant_ordering_service.config import build_services, load_api_keys
from restaurant_ordering_service.handlers.api_handler import create_app
from restaurant_ordering_service.observability import configure_logging, setup_observability

logger = logging.getLogger(__name__)


def create_application() -> FastAPI:
    """Create and configure the FastAPI application with all dependencies.

    This factory function:
    1. Configures logging
    2. Builds the data store, payment providers and services
    3. Creates the FastAPI app
    4. Sets up observability

    Returns:
        Configured FastAPI application instance
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger.info("Initializing restaurant ordering service...")

    services = build_services()

    app = create_app(
        order_service=services.order_service,
        payment_service=services.payment_service,
        menu_service=services.menu_service,
        notifier=services.notifier,
        connection_manager=services.connection_manager,
        rate_limiter=services.rate_limiter,
        api_keys=load_api_keys(),
        stripe_provider=services.stripe_provider,
    )

    setup_observability(app)

    logger.info("Restaurant ordering service initialized successfully")
    return app


# Create the FastAPI application instance (only when not in test mode)
# This prevents the app from being created during test collection
if os.getenv("ENVIRONMENT") != "test":  # noqa: SIM108
    app = create_application()
else:
    # Create a placeholder app for test imports
    app = FastAPI()


if __name__ == "__main__":
    """Run the application with uvicorn when executed directly."""
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting development server on {host}:{port}")
    logger.info(f"API documentation available at http://{host}:{port}/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
