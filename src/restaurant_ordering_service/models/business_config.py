"""Business rules configuration passed into the services."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class BusinessConfig(BaseModel):
    """Pricing and lifecycle settings for one restaurant deployment.

    Amounts are in minor currency units.
    """

    model_config = ConfigDict(frozen=True)

    tax_rate: Decimal = Field(default=Decimal("0.075"), ge=0, le=1)
    delivery_fee: int = Field(default=50000, ge=0)
    minimum_order_amount: int = Field(default=150000, ge=0)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    payment_timeout_minutes: int = Field(default=30, gt=0)
