"""Menu management service.

Admin writes go straight to the data store. Public reads are served from a
short-lived cache that every write invalidates. Order creation never reads
through this cache.
"""

import logging
import uuid
from datetime import UTC, datetime

from restaurant_ordering_service.models.menu_models import (
    MenuCategory,
    MenuFilters,
    MenuItem,
    MenuItemCreate,
    MenuItemUpdate,
)
from restaurant_ordering_service.observability import traced
from restaurant_ordering_service.repositories.base_store import DataStore
from restaurant_ordering_service.repositories.cache_store import KeyValueStore
from restaurant_ordering_service.services.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

CACHE_PREFIX = "menu:"


class MenuService:
    """Service for menu reads and admin menu management."""

    def __init__(self, store: DataStore, cache: KeyValueStore, cache_ttl_seconds: int = 300) -> None:
        """Initialize the MenuService.

        Args:
            store: Transactional data store
            cache: Key/value store used for public read caching
            cache_ttl_seconds: Lifetime of cached menu reads
        """
        self.store = store
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def _invalidate_cache(self) -> None:
        removed = await self.cache.delete_prefix(CACHE_PREFIX)
        logger.debug(f"Invalidated {removed} cached menu entries")

    async def get_all_menu_items(self, filters: MenuFilters | None = None) -> list[MenuItem]:
        """List menu items, served from cache when possible.

        Args:
            filters: Optional category, availability and search filters

        Returns:
            list[MenuItem]: Matching items ordered by category then name
        """
        filters = filters or MenuFilters()
        cache_key = f"{CACHE_PREFIX}list:{filters.cache_key()}"

        cached = await self.cache.get(cache_key)
        if cached is not None:
            return [MenuItem.model_validate(item) for item in cached]

        async with self.store.transaction() as tx:
            items = await tx.list_menu_items(filters)

        await self.cache.set(
            cache_key, [item.model_dump(mode="json") for item in items], self.cache_ttl_seconds
        )
        return items

    async def get_available_menu_items(self) -> list[MenuItem]:
        """List items customers can order right now."""
        return await self.get_all_menu_items(MenuFilters(is_available=True))

    async def get_menu_items_by_category(self, category: MenuCategory) -> list[MenuItem]:
        """List available items in one category."""
        return await self.get_all_menu_items(MenuFilters(category=category, is_available=True))

    async def get_menu_item_by_id(self, item_id: str) -> MenuItem:
        """Get one menu item.

        Raises:
            NotFoundError: If the item does not exist
        """
        cache_key = f"{CACHE_PREFIX}item:{item_id}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return MenuItem.model_validate(cached)

        async with self.store.transaction() as tx:
            item = await tx.get_menu_item(item_id)

        if item is None:
            raise NotFoundError("Menu item not found")

        await self.cache.set(cache_key, item.model_dump(mode="json"), self.cache_ttl_seconds)
        return item

    @traced("create_menu_item")
    async def create_menu_item(self, data: MenuItemCreate) -> MenuItem:
        """Create a menu item.

        Raises:
            ConflictError: If another item already has the same name
        """
        async with self.store.transaction() as tx:
            if await tx.get_menu_item_by_name(data.name.strip()) is not None:
                raise ConflictError("Menu item with this name already exists")

            item = MenuItem(id=str(uuid.uuid4()), **data.model_dump())
            await tx.create_menu_item(item)

        await self._invalidate_cache()
        logger.info(f"Created menu item {item.id} ({item.name})")
        return item

    @traced("update_menu_item")
    async def update_menu_item(self, item_id: str, data: MenuItemUpdate) -> MenuItem:
        """Apply a partial update to a menu item.

        Raises:
            NotFoundError: If the item does not exist
            ConflictError: If the new name is taken by another item
        """
        changes = data.model_dump(exclude_unset=True)

        async with self.store.transaction() as tx:
            current = await tx.get_menu_item(item_id)
            if current is None:
                raise NotFoundError("Menu item not found")

            new_name = changes.get("name")
            if new_name and new_name.strip().lower() != current.name.lower():
                existing = await tx.get_menu_item_by_name(new_name.strip())
                if existing is not None and existing.id != item_id:
                    raise ConflictError("Menu item with this name already exists")

            updated = MenuItem.model_validate(
                {**current.model_dump(), **changes, "updated_at": datetime.now(UTC)}
            )
            await tx.update_menu_item(updated)

        await self._invalidate_cache()
        logger.info(f"Updated menu item {item_id}: {sorted(changes)}")
        return updated

    @traced("toggle_availability")
    async def toggle_availability(self, item_id: str) -> MenuItem:
        """Flip a menu item's availability flag.

        Raises:
            NotFoundError: If the item does not exist
        """
        async with self.store.transaction() as tx:
            current = await tx.get_menu_item(item_id)
            if current is None:
                raise NotFoundError("Menu item not found")

            updated = current.model_copy(
                update={"is_available": not current.is_available, "updated_at": datetime.now(UTC)}
            )
            await tx.update_menu_item(updated)

        await self._invalidate_cache()
        logger.info(f"Menu item {item_id} is_available={updated.is_available}")
        return updated

    @traced("delete_menu_item")
    async def delete_menu_item(self, item_id: str) -> None:
        """Delete a menu item that has never been ordered.

        Raises:
            NotFoundError: If the item does not exist
            ConflictError: If any order line references the item
        """
        async with self.store.transaction() as tx:
            if await tx.get_menu_item(item_id) is None:
                raise NotFoundError("Menu item not found")

            if await tx.count_order_lines_for_menu_item(item_id) > 0:
                raise ConflictError("Cannot delete menu item that has been ordered")

            await tx.delete_menu_item(item_id)

        await self._invalidate_cache()
        logger.info(f"Deleted menu item {item_id}")
