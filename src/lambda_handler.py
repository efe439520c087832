"""AWS Lambda handler for API Gateway and scheduled EventBridge events.

A single Lambda entry point handles:
1. API Gateway requests (via the Mangum ASGI adapter for FastAPI)
2. Scheduled EventBridge events that expire unpaid orders
"""

import asyncio
import logging
import os
from typing import Any

from mangum import Mangum

from lambda_dependencies import (
    get_fastapi_app,
    get_scheduled_task_handler,
    initialize_lambda_environment,
)

# Initialize Lambda environment during cold start (skip in test mode)
if os.getenv("ENVIRONMENT") != "test":
    initialize_lambda_environment()

logger = logging.getLogger(__name__)

# Create FastAPI app and Mangum adapter (cached for warm starts, skip in test mode)
if os.getenv("ENVIRONMENT") != "test":
    app = get_fastapi_app()
    mangum_handler = Mangum(app, lifespan="off")
else:
    app = None  # type: ignore
    mangum_handler = None  # type: ignore


def is_eventbridge_event(event: dict[str, Any]) -> bool:
    """Determine if the event is from EventBridge.

    Args:
        event: The Lambda event payload

    Returns:
        True if this is an EventBridge event, False otherwise
    """
    return "source" in event and "detail-type" in event and "detail" in event


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Route a Lambda invocation to EventBridge handling or to FastAPI.

    Args:
        event: The Lambda event payload (EventBridge or API Gateway)
        context: The Lambda context object

    Returns:
        Response dict with statusCode and body
    """
    logger.info(f"Received Lambda invocation, request_id: {context.aws_request_id}")

    try:
        if is_eventbridge_event(event):
            logger.info(
                f"Processing EventBridge event: {event.get('source')} - {event.get('detail-type')}"
            )
            return handle_eventbridge_event(event)

        logger.info("Processing API Gateway request via Mangum")
        result: dict[str, Any] = mangum_handler(event, context)
        return result

    except Exception as e:
        logger.exception(f"Unhandled error in Lambda handler: {e}")
        return {
            "statusCode": 500,
            "body": "Internal server error",
        }


def handle_eventbridge_event(event: dict[str, Any]) -> dict[str, Any]:
    """Run the scheduled unpaid-order expiry.

    Args:
        event: The EventBridge event payload

    Returns:
        Response dict with statusCode and body
    """
    handler = get_scheduled_task_handler()
    return asyncio.run(handler.handle_scheduled_event(event))
