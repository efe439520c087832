"""Order data models.

An order owns its line items: they are created with the order, stored with
it, and never edited afterwards. Money fields are integers in minor
currency units.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_ITEM_QUANTITY = 10


class OrderStatus(str, Enum):
    """Enumeration of order status values."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderType(str, Enum):
    """Enumeration of fulfilment types."""

    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"


class DeliveryAddress(BaseModel):
    """Delivery address for DELIVERY orders."""

    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str | None = None
    landmark: str | None = None


class CustomerInfo(BaseModel):
    """Customer contact details captured on the order."""

    name: str = Field(..., min_length=2, max_length=100)
    phone: str = Field(..., min_length=7, max_length=20)
    email: str | None = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate that the phone number holds only dialable characters."""
        allowed = set("0123456789+-() ")
        if not set(v) <= allowed or not any(ch.isdigit() for ch in v):
            raise ValueError("phone must contain digits and may include + - ( ) or spaces")
        return v.strip()


class OrderItemRequest(BaseModel):
    """A requested cart line, before pricing."""

    menu_item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=MAX_ITEM_QUANTITY)
    customizations: list[str] = Field(default_factory=list)


class OrderItem(BaseModel):
    """Priced order line.

    Name and unit price are snapshotted from the menu item at order time so
    historical orders do not change when the menu does.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the line")
    menu_item_id: str = Field(..., description="Menu item this line was ordered from")
    menu_item_name: str = Field(..., description="Menu item name at order time")
    quantity: int = Field(..., ge=1, le=MAX_ITEM_QUANTITY)
    unit_price: int = Field(..., description="Unit price at order time", gt=0)
    subtotal: int = Field(..., description="unit_price x quantity", gt=0)
    preparation_time: int = Field(..., description="Preparation time at order time", gt=0)
    customizations: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_subtotal(self) -> "OrderItem":
        """Validate that the line subtotal matches unit price times quantity."""
        if self.subtotal != self.unit_price * self.quantity:
            raise ValueError("subtotal must equal unit_price * quantity")
        return self

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to the nested map stored inside the order item."""
        return {
            "id": self.id,
            "menu_item_id": self.menu_item_id,
            "menu_item_name": self.menu_item_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "subtotal": self.subtotal,
            "preparation_time": self.preparation_time,
            "customizations": list(self.customizations),
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "OrderItem":
        """Create OrderItem from its nested DynamoDB map."""
        return cls(
            id=item["id"],
            menu_item_id=item["menu_item_id"],
            menu_item_name=item["menu_item_name"],
            quantity=int(item["quantity"]),
            unit_price=int(item["unit_price"]),
            subtotal=int(item["subtotal"]),
            preparation_time=int(item["preparation_time"]),
            customizations=list(item.get("customizations", [])),
        )


class Order(BaseModel):
    """Customer order.

    Stored in DynamoDB with id as partition key and a global secondary index
    on order_number. Status changes go through the order status table only.
    """

    id: str = Field(..., description="Unique order identifier")
    order_number: str = Field(..., description="Human-readable order number")
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    order_type: OrderType
    delivery_address: DeliveryAddress | None = None
    items: list[OrderItem] = Field(..., min_length=1)
    subtotal: int = Field(..., ge=0)
    tax: int = Field(..., ge=0)
    delivery_fee: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    estimated_ready_time: datetime
    actual_ready_time: datetime | None = None
    special_instructions: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def validate_invariants(self) -> "Order":
        """Validate money invariants and delivery requirements."""
        if self.subtotal != sum(item.subtotal for item in self.items):
            raise ValueError("subtotal must equal the sum of item subtotals")

        if self.total != self.subtotal + self.tax + self.delivery_fee:
            raise ValueError("total must equal subtotal + tax + delivery_fee")

        if self.order_type == OrderType.DELIVERY and self.delivery_address is None:
            raise ValueError("delivery orders require a delivery address")

        return self

    @property
    def is_terminal(self) -> bool:
        """Whether the order has reached a state with no exits."""
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "order_type": self.order_type.value,
            "items": [line.to_dynamodb_item() for line in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
            "status": self.status.value,
            "estimated_ready_time": self.estimated_ready_time.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

        if self.customer_email is not None:
            item["customer_email"] = self.customer_email

        if self.delivery_address is not None:
            item["delivery_address"] = self.delivery_address.model_dump(exclude_none=True)

        if self.actual_ready_time is not None:
            item["actual_ready_time"] = self.actual_ready_time.isoformat()

        if self.special_instructions is not None:
            item["special_instructions"] = self.special_instructions

        if self.cancellation_reason is not None:
            item["cancellation_reason"] = self.cancellation_reason

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Order":
        """Create Order from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Order: Parsed model instance
        """
        data: dict[str, Any] = {
            "id": item["id"],
            "order_number": item["order_number"],
            "customer_name": item["customer_name"],
            "customer_phone": item["customer_phone"],
            "order_type": OrderType(item["order_type"]),
            "items": [OrderItem.from_dynamodb_item(line) for line in item["items"]],
            "subtotal": int(item["subtotal"]),
            "tax": int(item["tax"]),
            "delivery_fee": int(item["delivery_fee"]),
            "total": int(item["total"]),
            "status": OrderStatus(item["status"]),
            "estimated_ready_time": datetime.fromisoformat(item["estimated_ready_time"]),
            "created_at": datetime.fromisoformat(item["created_at"]),
            "updated_at": datetime.fromisoformat(item["updated_at"]),
        }

        if "customer_email" in item:
            data["customer_email"] = item["customer_email"]

        if "delivery_address" in item:
            data["delivery_address"] = DeliveryAddress(**item["delivery_address"])

        if "actual_ready_time" in item:
            data["actual_ready_time"] = datetime.fromisoformat(item["actual_ready_time"])

        if "special_instructions" in item:
            data["special_instructions"] = item["special_instructions"]

        if "cancellation_reason" in item:
            data["cancellation_reason"] = item["cancellation_reason"]

        return cls(**data)


class OrderFilters(BaseModel):
    """Filters for the privileged order listing."""

    status: OrderStatus | None = None
    order_type: OrderType | None = None
    customer_phone: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    @field_validator("date_from", "date_to")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Treat datetimes without an offset as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    def matches(self, order: Order) -> bool:
        """Check whether an order satisfies these filters."""
        if self.status is not None and order.status != self.status:
            return False

        if self.order_type is not None and order.order_type != self.order_type:
            return False

        if self.customer_phone and self.customer_phone.lower() not in order.customer_phone.lower():
            return False

        if self.date_from is not None and order.created_at < self.date_from:
            return False

        if self.date_to is not None and order.created_at > self.date_to:
            return False

        return True


class OrderPage(BaseModel):
    """One page of a filtered order listing."""

    orders: list[Order]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)

    @property
    def total_pages(self) -> int:
        """Number of pages available at this page size."""
        return (self.total + self.limit - 1) // self.limit


class OrderTracking(BaseModel):
    """Public tracking view of an order."""

    order_number: str
    status: OrderStatus
    order_type: OrderType
    total: int
    estimated_ready_time: datetime
    actual_ready_time: datetime | None = None
    queue_position: int | None = Field(
        None, description="1-based position among active orders, None when not queued"
    )
    created_at: datetime
