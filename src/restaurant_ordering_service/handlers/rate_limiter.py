"""Fixed-window request budget for order creation."""

import logging
import math
from dataclasses import dataclass

from fastapi import HTTPException, Request

from restaurant_ordering_service.repositories.cache_store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check.

    Attributes:
        allowed: Whether the request fits in the current window
        remaining: Requests left in the window
        retry_after: Seconds until the window resets
    """

    allowed: bool
    remaining: int
    retry_after: int


class RateLimiter:
    """Counts requests per client key in fixed windows held in a KeyValueStore."""

    def __init__(self, store: KeyValueStore, limit: int = 10, window_seconds: int = 900, scope: str = "orders") -> None:
        """Initialize the limiter.

        Args:
            store: Counter storage shared by every instance that should share budgets
            limit: Requests allowed per window
            window_seconds: Window length
            scope: Name separating this budget from others in the same store
        """
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.scope = scope

    async def check(self, client_key: str) -> RateLimitResult:
        """Count one request for a client and say whether it is allowed."""
        count, reset_in = await self.store.incr(f"ratelimit:{self.scope}:{client_key}", self.window_seconds)
        retry_after = max(1, math.ceil(reset_in))

        if count > self.limit:
            logger.warning(f"Rate limit exceeded for {client_key} on {self.scope} ({count}/{self.limit})")
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

        return RateLimitResult(allowed=True, remaining=self.limit - count, retry_after=retry_after)


def client_key(request: Request) -> str:
    """Identify the caller, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_rate_limit(limiter: RateLimiter, request: Request) -> None:
    """Reject the request with 429 when the caller's budget is spent.

    Raises:
        HTTPException: 429 with a Retry-After header
    """
    result = await limiter.check(client_key(request))
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many orders, please try again later",
            headers={"Retry-After": str(result.retry_after)},
        )
