"""FastAPI application for the ordering API.

Public routes serve the menu, order placement and tracking, and payments.
Routes under /admin require an X-API-Key header. Notifications are sent
here, after the service call has committed.
"""

import logging
from datetime import datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, WebSocket
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketDisconnect

from restaurant_ordering_service.adapters.stripe_adapter import StripeProvider
from restaurant_ordering_service.auth.api_dependencies import get_api_key_from_header
from restaurant_ordering_service.auth.api_key_validator import APIKeyValidator
from restaurant_ordering_service.handlers.rate_limiter import RateLimiter, enforce_rate_limit
from restaurant_ordering_service.models.menu_models import (
    MenuCategory,
    MenuFilters,
    MenuItem,
    MenuItemCreate,
    MenuItemUpdate,
)
from restaurant_ordering_service.models.order_models import (
    CustomerInfo,
    DeliveryAddress,
    Order,
    OrderFilters,
    OrderItemRequest,
    OrderStatus,
    OrderTracking,
    OrderType,
)
from restaurant_ordering_service.models.payment_models import (
    CreatePaymentIntentRequest,
    Payment,
    PaymentIntentResult,
    PaymentMethodOption,
    PaymentStats,
)
from restaurant_ordering_service.notifications.order_notifier import (
    ADMIN_ROOM,
    ConnectionManager,
    OrderNotifier,
    order_room,
)
from restaurant_ordering_service.services.exceptions import NotFoundError, OrderingError
from restaurant_ordering_service.services.menu_service import MenuService
from restaurant_ordering_service.services.order_service import OrderService
from restaurant_ordering_service.services.payment_service import PaymentService, Settlement

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class CreateOrderRequest(BaseModel):
    """Checkout payload."""

    customer_info: CustomerInfo
    order_type: OrderType
    items: list[OrderItemRequest]
    special_instructions: str | None = Field(None, max_length=500)
    delivery_address: DeliveryAddress | None = None


class CancelOrderRequest(BaseModel):
    """Cancellation payload."""

    reason: str | None = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    """Kitchen status update payload."""

    status: OrderStatus


class EstimatedTimeRequest(BaseModel):
    """Ready-time override payload."""

    estimated_ready_time: datetime


class OrderListResponse(BaseModel):
    """One page of orders with pagination details."""

    orders: list[Order]
    total: int
    page: int
    limit: int
    total_pages: int


class WebhookResponse(BaseModel):
    """Acknowledgement sent to the payment provider."""

    received: bool


def create_app(
    order_service: OrderService,
    payment_service: PaymentService,
    menu_service: MenuService,
    notifier: OrderNotifier,
    connection_manager: ConnectionManager,
    rate_limiter: RateLimiter,
    api_keys: list[str],
    stripe_provider: StripeProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        order_service: Order aggregate
        payment_service: Payment coordinator
        menu_service: Menu reads and admin menu management
        notifier: Pushes committed order changes to subscribers
        connection_manager: WebSocket rooms the notifier broadcasts to
        rate_limiter: Request budget for order creation
        api_keys: Accepted API keys for privileged routes
        stripe_provider: Stripe provider used to verify webhooks, if configured

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Restaurant Ordering API",
        description="Menu, ordering, payment and order tracking API",
        version="1.0.0",
    )

    # Store services in app state for access in route handlers
    app.state.order_service = order_service
    app.state.payment_service = payment_service
    app.state.menu_service = menu_service
    app.state.notifier = notifier
    app.state.connection_manager = connection_manager
    app.state.rate_limiter = rate_limiter
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)
    app.state.stripe_provider = stripe_provider

    @app.exception_handler(OrderingError)
    async def ordering_error_handler(request: Request, exc: OrderingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")

        headers = {"Retry-After": "5"} if exc.retryable else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Invalid request",
                "code": "VALIDATION_ERROR",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "code": "INTERNAL_SERVER_ERROR"},
        )

    def validate_api_key(x_api_key: str | None = Header(None)) -> str:
        """Dependency to validate API key."""
        return get_api_key_from_header(x_api_key=x_api_key, validator=app.state.api_key_validator)

    async def order_rate_limit(request: Request) -> None:
        """Dependency applying the order-creation budget."""
        await enforce_rate_limit(app.state.rate_limiter, request)

    async def notify_settlement(settlement: Settlement) -> None:
        if settlement.order_confirmed and settlement.order is not None:
            await app.state.notifier.notify_status_changed(settlement.order)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy")

    # Menu

    @app.get("/menu", response_model=list[MenuItem], tags=["Menu"])
    async def list_menu(
        category: MenuCategory | None = None,
        available: bool | None = None,
        search: str | None = Query(None, max_length=100),
    ) -> list[MenuItem]:
        """List menu items with optional filters."""
        filters = MenuFilters(category=category, is_available=available, search=search)
        items: list[MenuItem] = await app.state.menu_service.get_all_menu_items(filters)
        return items

    @app.get("/menu/{item_id}", response_model=MenuItem, tags=["Menu"])
    async def get_menu_item(item_id: str) -> MenuItem:
        """Get one menu item."""
        item: MenuItem = await app.state.menu_service.get_menu_item_by_id(item_id)
        return item

    @app.post("/admin/menu", response_model=MenuItem, status_code=201, tags=["Menu Admin"])
    async def create_menu_item(
        payload: MenuItemCreate,
        _api_key: str = Depends(validate_api_key),
    ) -> MenuItem:
        """Create a menu item."""
        item: MenuItem = await app.state.menu_service.create_menu_item(payload)
        return item

    @app.put("/admin/menu/{item_id}", response_model=MenuItem, tags=["Menu Admin"])
    async def update_menu_item(
        item_id: str,
        payload: MenuItemUpdate,
        _api_key: str = Depends(validate_api_key),
    ) -> MenuItem:
        """Partially update a menu item."""
        item: MenuItem = await app.state.menu_service.update_menu_item(item_id, payload)
        return item

    @app.patch("/admin/menu/{item_id}/availability", response_model=MenuItem, tags=["Menu Admin"])
    async def toggle_menu_item(
        item_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> MenuItem:
        """Flip a menu item's availability."""
        item: MenuItem = await app.state.menu_service.toggle_availability(item_id)
        return item

    @app.delete("/admin/menu/{item_id}", status_code=204, tags=["Menu Admin"])
    async def delete_menu_item(
        item_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> Response:
        """Delete a menu item that has never been ordered."""
        await app.state.menu_service.delete_menu_item(item_id)
        return Response(status_code=204)

    # Orders

    @app.post(
        "/orders",
        response_model=Order,
        status_code=201,
        tags=["Orders"],
        dependencies=[Depends(order_rate_limit)],
    )
    async def create_order(payload: CreateOrderRequest) -> Order:
        """Place an order."""
        order: Order = await app.state.order_service.create_order(
            customer=payload.customer_info,
            order_type=payload.order_type,
            items=payload.items,
            special_instructions=payload.special_instructions,
            delivery_address=payload.delivery_address,
        )
        await app.state.notifier.notify_order_created(order)
        return order

    @app.get("/orders/number/{order_number}", response_model=Order, tags=["Orders"])
    async def get_order_by_number(order_number: str) -> Order:
        """Get an order by its order number."""
        order: Order = await app.state.order_service.get_order_by_number(order_number)
        return order

    @app.get("/orders/track/{order_number}", response_model=OrderTracking, tags=["Orders"])
    async def track_order(order_number: str) -> OrderTracking:
        """Public tracking view of an order."""
        tracking: OrderTracking = await app.state.order_service.track_order(order_number)
        return tracking

    @app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
    async def get_order(order_id: str) -> Order:
        """Get an order by id."""
        order: Order = await app.state.order_service.get_order_by_id(order_id)
        return order

    @app.post("/orders/{order_id}/cancel", response_model=Order, tags=["Orders"])
    async def cancel_order(order_id: str, payload: CancelOrderRequest | None = None) -> Order:
        """Cancel an order that has not reached READY."""
        reason = payload.reason if payload else None
        order: Order = await app.state.order_service.cancel_order(order_id, reason)
        await app.state.notifier.notify_status_changed(order)
        return order

    @app.get("/admin/orders", response_model=OrderListResponse, tags=["Orders Admin"])
    async def list_orders(
        status: OrderStatus | None = None,
        order_type: OrderType | None = None,
        customer_phone: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
        _api_key: str = Depends(validate_api_key),
    ) -> OrderListResponse:
        """List orders newest first with filters and pagination."""
        filters = OrderFilters(
            status=status,
            order_type=order_type,
            customer_phone=customer_phone,
            date_from=date_from,
            date_to=date_to,
        )
        result = await app.state.order_service.get_orders(filters, page, limit)
        return OrderListResponse(
            orders=result.orders,
            total=result.total,
            page=result.page,
            limit=result.limit,
            total_pages=result.total_pages,
        )

    @app.get("/admin/orders/queue", response_model=list[Order], tags=["Orders Admin"])
    async def order_queue(_api_key: str = Depends(validate_api_key)) -> list[Order]:
        """Orders confirmed or in preparation, oldest first."""
        orders: list[Order] = await app.state.order_service.get_order_queue()
        return orders

    @app.get("/admin/orders/status/{status}", response_model=list[Order], tags=["Orders Admin"])
    async def orders_by_status(
        status: OrderStatus,
        _api_key: str = Depends(validate_api_key),
    ) -> list[Order]:
        """Orders in one status, oldest first."""
        orders: list[Order] = await app.state.order_service.get_orders_by_status(status)
        return orders

    @app.put("/admin/orders/{order_id}/status", response_model=Order, tags=["Orders Admin"])
    async def update_order_status(
        order_id: str,
        payload: StatusUpdateRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> Order:
        """Move an order through its lifecycle."""
        order: Order = await app.state.order_service.update_order_status(order_id, payload.status)
        await app.state.notifier.notify_status_changed(order)
        return order

    @app.put("/admin/orders/{order_id}/estimated-time", response_model=Order, tags=["Orders Admin"])
    async def update_estimated_time(
        order_id: str,
        payload: EstimatedTimeRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> Order:
        """Override an order's estimated ready time."""
        order: Order = await app.state.order_service.update_estimated_ready_time(
            order_id, payload.estimated_ready_time
        )
        await app.state.notifier.notify_estimated_time_changed(order)
        return order

    # Payments

    @app.get("/payments/methods", response_model=list[PaymentMethodOption], tags=["Payments"])
    async def payment_methods() -> list[PaymentMethodOption]:
        """Payment methods offered at checkout."""
        methods: list[PaymentMethodOption] = app.state.payment_service.get_payment_methods()
        return methods

    @app.post("/payments/intents", response_model=PaymentIntentResult, status_code=201, tags=["Payments"])
    async def create_payment_intent(payload: CreatePaymentIntentRequest) -> PaymentIntentResult:
        """Start paying for an order."""
        result: PaymentIntentResult = await app.state.payment_service.create_payment_intent(
            order_id=payload.order_id,
            amount=payload.amount,
            currency=payload.currency,
            method=payload.method,
            customer_email=payload.customer_email,
        )
        return result

    @app.get("/payments/verify/{reference}", response_model=Payment, tags=["Payments"])
    async def verify_payment(reference: str) -> Payment:
        """Check a payment with the provider and settle it."""
        settlement: Settlement = await app.state.payment_service.verify_and_settle(reference)
        await notify_settlement(settlement)
        return settlement.payment

    @app.get("/payments/order/{order_id}", response_model=list[Payment], tags=["Payments"])
    async def payments_for_order(order_id: str) -> list[Payment]:
        """Payment attempts for an order, newest first."""
        payments: list[Payment] = await app.state.payment_service.get_payments_for_order(order_id)
        return payments

    @app.post("/payments/webhooks/stripe", response_model=WebhookResponse, tags=["Payments"])
    async def stripe_webhook(request: Request) -> WebhookResponse:
        """Receive Stripe payment intent events."""
        provider: StripeProvider | None = app.state.stripe_provider
        if provider is None:
            raise HTTPException(status_code=404, detail="Stripe webhooks are not configured")

        payload = await request.body()
        event = provider.construct_event(payload, request.headers.get("stripe-signature"))
        logger.info(f"Stripe webhook received: {event.type} for {event.intent_id}")

        settlement: Settlement | None = await app.state.payment_service.apply_provider_event(event)
        if settlement is not None:
            await notify_settlement(settlement)

        return WebhookResponse(received=True)

    @app.post("/admin/payments/{payment_id}/refund", response_model=Payment, tags=["Payments Admin"])
    async def refund_payment(
        payment_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> Payment:
        """Refund a completed payment in full."""
        payment: Payment = await app.state.payment_service.refund_payment(payment_id)
        return payment

    @app.get("/admin/payments/stats", response_model=PaymentStats, tags=["Payments Admin"])
    async def payment_stats(_api_key: str = Depends(validate_api_key)) -> PaymentStats:
        """Aggregate payment figures."""
        stats: PaymentStats = await app.state.payment_service.get_payment_stats()
        return stats

    # Realtime

    @app.websocket("/ws/orders/{order_id}")
    async def order_updates(websocket: WebSocket, order_id: str) -> None:
        """Subscribe to status updates for one order."""
        try:
            await app.state.order_service.get_order_by_id(order_id)
        except NotFoundError:
            logger.warning(f"WebSocket subscription for unknown order {order_id}")
            await websocket.close(code=4404)
            return

        room = order_room(order_id)
        manager: ConnectionManager = app.state.connection_manager
        await manager.connect(room, websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(room, websocket)

    @app.websocket("/ws/admin")
    async def admin_updates(websocket: WebSocket) -> None:
        """Subscribe to every order event; needs an API key header or query parameter."""
        api_key = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
        if not api_key or not app.state.api_key_validator.validate(api_key):
            await websocket.close(code=4401)
            return

        manager: ConnectionManager = app.state.connection_manager
        await manager.connect(ADMIN_ROOM, websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(ADMIN_ROOM, websocket)

    return app
