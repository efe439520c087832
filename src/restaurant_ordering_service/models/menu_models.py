"""Menu data models.

Prices are integers in the minor currency unit (kobo, cents) so that order
arithmetic never touches floating point.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class MenuCategory(str, Enum):
    """Enumeration of menu categories."""

    MAIN = "MAIN"
    SIDE = "SIDE"
    COMBO = "COMBO"


NUTRITION_FIELDS = ("calories", "protein", "carbs", "fat", "fiber", "sodium")


class MenuItem(BaseModel):
    """Menu item model.

    Stored in DynamoDB with id as partition key. The availability flag is
    toggled independently of other edits.
    """

    id: str = Field(..., description="Unique identifier for the menu item")
    name: str = Field(..., description="Item name, unique across the menu", min_length=1)
    description: str = Field(default="", description="Item description")
    price: int = Field(..., description="Unit price in minor currency units", gt=0)
    category: MenuCategory = Field(..., description="Menu category")
    is_available: bool = Field(default=True, description="Whether item can be ordered")
    preparation_time: int = Field(..., description="Preparation time in minutes", gt=0)
    ingredients: list[str] = Field(..., description="Ordered ingredient list", min_length=1)
    image_url: str | None = Field(None, description="URL to item image")
    calories: float | None = Field(None, ge=0)
    protein: float | None = Field(None, ge=0)
    carbs: float | None = Field(None, ge=0)
    fat: float | None = Field(None, ge=0)
    fiber: float | None = Field(None, ge=0)
    sodium: float | None = Field(None, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the name is not blank."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category.value,
            "is_available": self.is_available,
            "preparation_time": self.preparation_time,
            "ingredients": list(self.ingredients),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

        if self.image_url is not None:
            item["image_url"] = self.image_url

        # boto3 rejects floats, so nutrition values travel as Decimal
        for field_name in NUTRITION_FIELDS:
            value = getattr(self, field_name)
            if value is not None:
                item[field_name] = Decimal(str(value))

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "MenuItem":
        """Create MenuItem from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            MenuItem: Parsed model instance
        """
        data: dict[str, Any] = {
            "id": item["id"],
            "name": item["name"],
            "description": item.get("description", ""),
            "price": int(item["price"]),
            "category": MenuCategory(item["category"]),
            "is_available": bool(item.get("is_available", True)),
            "preparation_time": int(item["preparation_time"]),
            "ingredients": list(item["ingredients"]),
            "created_at": datetime.fromisoformat(item["created_at"]),
            "updated_at": datetime.fromisoformat(item["updated_at"]),
        }

        if "image_url" in item:
            data["image_url"] = item["image_url"]

        for field_name in NUTRITION_FIELDS:
            if field_name in item:
                data[field_name] = float(item[field_name])

        return cls(**data)


class MenuItemCreate(BaseModel):
    """Payload for creating a menu item."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    price: int = Field(..., gt=0)
    category: MenuCategory
    preparation_time: int = Field(..., gt=0, le=180)
    ingredients: list[str] = Field(..., min_length=1)
    image_url: str | None = None
    calories: float | None = Field(None, ge=0)
    protein: float | None = Field(None, ge=0)
    carbs: float | None = Field(None, ge=0)
    fat: float | None = Field(None, ge=0)
    fiber: float | None = Field(None, ge=0)
    sodium: float | None = Field(None, ge=0)


class MenuItemUpdate(BaseModel):
    """Partial update for a menu item. Unset fields are left untouched."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    price: int | None = Field(None, gt=0)
    category: MenuCategory | None = None
    preparation_time: int | None = Field(None, gt=0, le=180)
    ingredients: list[str] | None = Field(None, min_length=1)
    image_url: str | None = None
    is_available: bool | None = None
    calories: float | None = Field(None, ge=0)
    protein: float | None = Field(None, ge=0)
    carbs: float | None = Field(None, ge=0)
    fat: float | None = Field(None, ge=0)
    fiber: float | None = Field(None, ge=0)
    sodium: float | None = Field(None, ge=0)


class MenuFilters(BaseModel):
    """Filters for listing menu items."""

    category: MenuCategory | None = None
    is_available: bool | None = None
    search: str | None = None

    def cache_key(self) -> str:
        """Stable string form used as part of cache keys."""
        return (
            f"category={self.category.value if self.category else ''}"
            f"|available={'' if self.is_available is None else self.is_available}"
            f"|search={(self.search or '').lower()}"
        )

    def matches(self, item: MenuItem) -> bool:
        """Check whether a menu item satisfies these filters.

        Args:
            item: Menu item to test

        Returns:
            bool: True if the item passes every set filter
        """
        if self.category is not None and item.category != self.category:
            return False

        if self.is_available is not None and item.is_available != self.is_available:
            return False

        if self.search:
            needle = self.search.lower()
            haystack = [item.name.lower(), item.description.lower()]
            haystack.extend(ingredient.lower() for ingredient in item.ingredients)
            if not any(needle in text for text in haystack):
                return False

        return True
