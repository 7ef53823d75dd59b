# src/coursechain/middleware/rate_limit.py
"""Fixed-window rate limiting on top of the cache's atomic counters."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from coursechain.middleware.pipeline import Handler, HandlerResult, RequestContext
from coursechain.services.cache import MISS, CacheService

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429

KeyGenerator = Callable[[RequestContext], str]
SkipPredicate = Callable[[RequestContext], bool]


def client_ip(context: RequestContext) -> str:
    """Resolve the caller's address: X-Forwarded-For, then X-Real-IP, then the peer."""
    forwarded = context.header("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = context.header("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return context.client_host or "unknown"


@dataclass(frozen=True)
class RateLimitStatus:
    """Current counter value and seconds until the window resets."""

    current: int
    ttl: int


@dataclass(frozen=True)
class _Decision:
    count: int
    headers: dict[str, str]


class RateLimiter:
    """Count requests per scope and reject those over ``max_requests`` per window.

    The window starts at the first request and its TTL is fixed from then
    on. When the counter store cannot be reached the request is let through.
    """

    def __init__(
        self,
        cache: CacheService,
        *,
        max_requests: int = 100,
        window_seconds: int = 900,
        by_user: bool = False,
        key_generator: KeyGenerator | None = None,
        skip: SkipPredicate | None = None,
        message: str = "Too many requests, please try again later.",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._by_user = by_user
        self._key_generator = key_generator
        self._skip = skip
        self.message = message
        self._clock = clock

    def key_for(self, context: RequestContext) -> str:
        if self._key_generator is not None:
            return self._key_generator(context)
        if self._by_user and context.principal is not None:
            return f"ratelimit:user:{context.principal.id}:{context.path}"
        return f"ratelimit:ip:{client_ip(context)}:{context.path}"

    async def _count(self, key: str) -> _Decision:
        count = await self._cache.increment(key, self.window_seconds)
        if count is None:
            logger.warning("Rate limit counter unavailable for %s, allowing request", key)
            count = 0
        remaining = max(0, self.max_requests - count)
        headers = {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int((self._clock() + self.window_seconds) * 1000)),
        }
        return _Decision(count=count, headers=headers)

    async def _reject(self, context: RequestContext, key: str, decision: _Decision) -> HandlerResult:
        ttl = await self._cache.ttl(key)
        retry_after = ttl if ttl is not None and ttl > 0 else self.window_seconds
        logger.warning(
            "Rate limit exceeded key=%s count=%d max=%d user=%s ip=%s path=%s",
            key,
            decision.count,
            self.max_requests,
            context.principal.id if context.principal else None,
            client_ip(context),
            context.path,
        )
        return HandlerResult(
            TOO_MANY_REQUESTS,
            {
                "detail": self.message,
                "retry_after": retry_after,
                "limit": self.max_requests,
                "window_seconds": self.window_seconds,
            },
            {**decision.headers, "Retry-After": str(retry_after)},
        )

    def __call__(self, handler: Handler) -> Handler:
        async def limited_handler(context: RequestContext) -> HandlerResult:
            if self._skip is not None and self._skip(context):
                return await handler(context)

            try:
                key = self.key_for(context)
                decision = await self._count(key)
                if decision.count > self.max_requests:
                    return await self._reject(context, key, decision)
            except Exception as err:
                logger.error("Rate limiter error, allowing request: %s", err)
                return await handler(context)

            result = await handler(context)
            return result.with_headers(decision.headers)

        return limited_handler

    async def reset(self, key: str) -> bool:
        """Clear the counter for ``key``, e.g. after a successful captcha."""
        cleared = await self._cache.delete(key)
        if cleared:
            logger.info("Rate limit reset for key: %s", key)
        return cleared

    async def status(self, key: str) -> RateLimitStatus:
        current = await self._cache.get(key)
        ttl = await self._cache.ttl(key)
        return RateLimitStatus(
            current=int(current) if current is not MISS and current is not None else 0,
            ttl=ttl if ttl is not None else -1,
        )


def strict_rate_limit(cache: CacheService) -> RateLimiter:
    """Five attempts per five minutes per IP, for sensitive endpoints."""
    return RateLimiter(
        cache,
        max_requests=5,
        window_seconds=300,
        message="Too many attempts. Please wait before trying again.",
    )


def auth_rate_limit(cache: CacheService) -> RateLimiter:
    """Ten attempts per fifteen minutes per IP, for the sign-in handshake."""
    return RateLimiter(
        cache,
        max_requests=10,
        window_seconds=900,
        message="Too many authentication attempts. Please try again later.",
    )


def user_rate_limit(
    cache: CacheService, max_requests: int = 100, window_seconds: int = 900
) -> RateLimiter:
    """Per-user quota for authenticated endpoints."""
    return RateLimiter(
        cache,
        max_requests=max_requests,
        window_seconds=window_seconds,
        by_user=True,
        message="You have exceeded your request limit. Please try again later.",
    )
