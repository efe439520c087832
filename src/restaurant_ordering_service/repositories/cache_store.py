"""Key/value store with per-key expiry.

Backs the public menu read cache and the order-creation rate limiter.
The in-process implementation suits a single instance; a shared store can
be plugged in behind the same interface when running several instances.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract key/value store with TTL support."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value for key, or None if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix.

        Returns:
            int: Number of keys removed
        """

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> tuple[int, float]:
        """Increment a counter, starting a new window if it is missing or expired.

        Args:
            key: Counter key
            ttl_seconds: Window length applied when the counter is created

        Returns:
            tuple: (new counter value, seconds until the window resets)
        """


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local TTL store.

    Expired entries are dropped lazily on access and swept whenever the
    store grows past ``max_entries``.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize store.

        Args:
            max_entries: Size that triggers a sweep of expired entries
            clock: Monotonic time source in seconds
        """
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def _live_entry(self, key: str) -> tuple[Any, float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self.clock():
            del self._entries[key]
            return None
        return entry

    def _sweep(self) -> None:
        now = self.clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")

    async def get(self, key: str) -> Any | None:
        entry = self._live_entry(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if len(self._entries) >= self.max_entries:
            self._sweep()
        self._entries[key] = (value, self.clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def incr(self, key: str, ttl_seconds: int) -> tuple[int, float]:
        entry = self._live_entry(key)
        if entry is None:
            await self.set(key, 1, ttl_seconds)
            return 1, float(ttl_seconds)

        count, expires_at = entry
        self._entries[key] = (count + 1, expires_at)
        return count + 1, expires_at - self.clock()
