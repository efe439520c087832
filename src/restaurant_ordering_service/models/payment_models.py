"""Payment data models."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class PaymentMethod(str, Enum):
    """Enumeration of supported payment methods."""

    CARD = "CARD"
    APPLE_PAY = "APPLE_PAY"
    GOOGLE_PAY = "GOOGLE_PAY"
    PAYPAL = "PAYPAL"
    CASH = "CASH"


class PaymentStatus(str, Enum):
    """Enumeration of payment status values."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(BaseModel):
    """A single payment attempt against an order.

    Stored in DynamoDB with id as partition key and global secondary indexes
    on reference, transaction_id and order_id. Failed attempts accumulate;
    at most one attempt per order is expected to reach COMPLETED.
    """

    id: str = Field(..., description="Internal payment identifier")
    order_id: str = Field(..., description="Order this payment settles")
    amount: int = Field(..., description="Amount in minor currency units", gt=0)
    currency: str = Field(..., description="ISO 4217 currency code", min_length=3, max_length=3)
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = Field(None, description="Provider-assigned identifier")
    reference: str = Field(..., description="Public lookup reference")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Normalize the currency code to upper case."""
        if not v.isalpha():
            raise ValueError("currency must be a three-letter code")
        return v.upper()

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "id": self.id,
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "method": self.method.value,
            "status": self.status.value,
            "reference": self.reference,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

        if self.transaction_id is not None:
            item["transaction_id"] = self.transaction_id

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Payment":
        """Create Payment from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Payment: Parsed model instance
        """
        data: dict[str, Any] = {
            "id": item["id"],
            "order_id": item["order_id"],
            "amount": int(item["amount"]),
            "currency": item["currency"],
            "method": PaymentMethod(item["method"]),
            "status": PaymentStatus(item["status"]),
            "reference": item["reference"],
            "metadata": dict(item.get("metadata", {})),
            "created_at": datetime.fromisoformat(item["created_at"]),
            "updated_at": datetime.fromisoformat(item["updated_at"]),
        }

        if "transaction_id" in item:
            data["transaction_id"] = item["transaction_id"]

        return cls(**data)


class CreatePaymentIntentRequest(BaseModel):
    """Client request to start paying for an order."""

    order_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    method: PaymentMethod
    customer_email: str | None = None


class PaymentIntentResult(BaseModel):
    """What the client needs to complete a payment with the provider.

    For redirect providers the client secret is the approval URL.
    """

    client_secret: str
    payment_intent_id: str
    reference: str


class PaymentStats(BaseModel):
    """Aggregate payment figures for the admin dashboard."""

    total_payments: int = 0
    total_revenue: int = 0
    successful_payments: int = 0
    failed_payments: int = 0
    refunded_amount: int = 0
    payment_method_distribution: dict[PaymentMethod, int] = Field(default_factory=dict)


class PaymentMethodOption(BaseModel):
    """A payment method as offered to customers at checkout."""

    method: PaymentMethod
    display_name: str
    enabled: bool = Field(..., description="Whether a provider is configured for this method")
    online: bool = Field(..., description="Whether the method needs a provider payment intent")
