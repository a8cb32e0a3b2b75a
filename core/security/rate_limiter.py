"""
Redis-backed fixed-window rate limiter.

Each (identity, window) pair owns one counter key:

    rate_limit:<identity>:<window_start_ms>     (namespace "rate_limit")

where ``window_start_ms = floor(now_ms / window_ms) * window_ms``. A new
window is simply a new key, and the first increment seeds a TTL equal to
the window so stale counters drop out on their own.

The limiter fails open: when the cache store errors, the request is
allowed and the failure is logged.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from core.cache import CacheKeys, RedisCache
from core.exceptions import CacheError, RateLimitExceededError
from core.logging import get_logger

logger = get_logger("security.rate_limiter")


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    Quota for one route.

    Attributes:
        name: Route label, used in logs
        limit: Requests allowed per window
        window_ms: Window length in milliseconds
        key_func: Optional ``request -> identity`` override
        skip_if: Optional ``request -> bool`` bypass predicate
        message: Optional rejection message
    """

    name: str
    limit: int
    window_ms: int
    key_func: Callable[[Any], str] | None = field(default=None, compare=False)
    skip_if: Callable[[Any], bool] | None = field(default=None, compare=False)
    message: str | None = None


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    window_ms: int
    reset_at_ms: int
    retry_after: int | None = None
    degraded: bool = False

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at_ms / 1000, tz=timezone.utc)

    def to_headers(self) -> dict[str, str]:
        """Rate limit response headers; empty when the check could not run."""
        if self.degraded:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat().replace("+00:00", "Z"),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_error(self, message: str | None = None) -> RateLimitExceededError:
        return RateLimitExceededError(
            limit=self.limit,
            window_ms=self.window_ms,
            retry_after=self.retry_after or 0,
            headers=self.to_headers(),
            message=message,
        )


class RateLimiter:
    """
    Fixed-window limiter on top of RedisCache.increment.

    Usage:
        limiter = RateLimiter(cache)
        result = limiter.check(RateLimitPolicy("tasks.create", 20, 60_000), "user:7")
        if not result.allowed:
            raise result.to_error()

    ``clock`` returns epoch seconds and exists so tests can move time.
    """

    def __init__(self, cache: RedisCache, clock: Callable[[], float] = time.time):
        self.cache = cache
        self.clock = clock

    def check(self, policy: RateLimitPolicy, identity: str) -> RateLimitResult:
        now_ms = int(self.clock() * 1000)
        window_start = (now_ms // policy.window_ms) * policy.window_ms
        reset_at_ms = window_start + policy.window_ms
        key = CacheKeys.rate_window(identity, window_start)

        try:
            current = int(self.cache.get(key, namespace=CacheKeys.NS_RATE_LIMIT, default=0) or 0)

            if current >= policy.limit:
                retry_after = max(1, math.ceil((reset_at_ms - now_ms) / 1000))
                logger.warning(
                    "rate_limit_exceeded",
                    policy=policy.name,
                    identifier=identity[:40],
                    limit=policy.limit,
                    retry_after=retry_after,
                )
                return RateLimitResult(
                    allowed=False,
                    limit=policy.limit,
                    remaining=0,
                    window_ms=policy.window_ms,
                    reset_at_ms=reset_at_ms,
                    retry_after=retry_after,
                )

            count = self.cache.increment(key, namespace=CacheKeys.NS_RATE_LIMIT)
            if count == 1:
                self.cache.expire(
                    key, math.ceil(policy.window_ms / 1000), namespace=CacheKeys.NS_RATE_LIMIT
                )
        except (CacheError, ValueError, TypeError) as exc:
            logger.error(
                "rate_limit_check_failed",
                policy=policy.name,
                identifier=identity[:40],
                error=str(exc),
            )
            return RateLimitResult(
                allowed=True,
                limit=policy.limit,
                remaining=policy.limit,
                window_ms=policy.window_ms,
                reset_at_ms=reset_at_ms,
                degraded=True,
            )

        return RateLimitResult(
            allowed=True,
            limit=policy.limit,
            remaining=max(0, policy.limit - count),
            window_ms=policy.window_ms,
            reset_at_ms=reset_at_ms,
        )
