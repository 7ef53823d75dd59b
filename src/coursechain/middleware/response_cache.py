# src/coursechain/middleware/response_cache.py
"""Response caching and invalidation stages for read endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial
from typing import Any, Final
from urllib.parse import urlencode

from coursechain.middleware.pipeline import Handler, HandlerResult, RequestContext
from coursechain.services.cache import MISS, CacheService

logger = logging.getLogger(__name__)

# TTL policy, in seconds
LIST_TTL: Final[int] = 300
DETAIL_TTL: Final[int] = 600
USER_TTL: Final[int] = 180

DEFAULT_CONTENT_TYPE = "application/json"

KeyGenerator = Callable[[RequestContext], str]
PatternSource = str | Callable[[RequestContext], str]


def default_cache_key(
    context: RequestContext,
    *,
    include_query: bool = True,
    include_user: bool = False,
) -> str:
    """Derive ``cache:{METHOD}:{path}[?k=v&...][:user:{id}]``.

    Query pairs are sorted and percent-encoded, so parameter order never
    changes the key and distinct values never share one.
    """
    key = f"cache:{context.method}:{context.path}"
    if include_query and context.query:
        key += "?" + urlencode(sorted(context.query))
    if include_user and context.principal is not None:
        key += f":user:{context.principal.id}"
    return key


def _is_cached_response(entry: Any) -> bool:
    return isinstance(entry, dict) and isinstance(entry.get("status"), int) and "body" in entry


class ResponseCache:
    """Serve GET responses from the cache and store successful misses.

    Non-GET requests pass straight through. Stores are deferred until after
    the response has been sent.
    """

    def __init__(
        self,
        cache: CacheService,
        *,
        ttl: int = LIST_TTL,
        key_generator: KeyGenerator | None = None,
        include_query: bool = True,
        include_user: bool = False,
    ) -> None:
        self._cache = cache
        self.ttl = ttl
        self._key_generator = key_generator
        self._include_query = include_query
        self._include_user = include_user

    def key_for(self, context: RequestContext) -> str:
        if self._key_generator is not None:
            return self._key_generator(context)
        return default_cache_key(
            context,
            include_query=self._include_query,
            include_user=self._include_user,
        )

    async def _store(self, key: str, entry: dict[str, Any]) -> None:
        if not await self._cache.set(key, entry, self.ttl):
            logger.debug("Response for %s was not cached", key)

    def __call__(self, handler: Handler) -> Handler:
        async def cached_handler(context: RequestContext) -> HandlerResult:
            if context.method != "GET":
                return await handler(context)

            key = self.key_for(context)
            entry = await self._cache.get(key)
            if entry is not MISS and _is_cached_response(entry):
                logger.debug("Cache HIT: %s", key)
                headers = {**entry.get("headers", {}), "X-Cache": "HIT"}
                return HandlerResult(entry["status"], entry["body"], headers)

            logger.debug("Cache MISS: %s", key)
            result = await handler(context)
            if result.ok:
                snapshot = {
                    "status": result.status_code,
                    "body": result.body,
                    "headers": {
                        "content-type": result.header("content-type") or DEFAULT_CONTENT_TYPE
                    },
                }
                result = result.with_deferred(partial(self._store, key, snapshot))
            return result.with_headers({"X-Cache": "MISS"})

        return cached_handler


class CacheInvalidation:
    """Delete cached entries matching glob patterns after a successful write.

    Patterns are either literal globs or callables building one from the
    request context. Choosing patterns that cover every cached read a write
    can affect is the caller's job.
    """

    def __init__(self, cache: CacheService, *patterns: PatternSource) -> None:
        self._cache = cache
        self._patterns = patterns

    def patterns_for(self, context: RequestContext) -> list[str]:
        return [p(context) if callable(p) else p for p in self._patterns]

    async def invalidate(self, context: RequestContext) -> int:
        patterns = self.patterns_for(context)
        removed = await asyncio.gather(*(self._cache.delete_pattern(p) for p in patterns))
        logger.debug("Invalidated cache patterns: %s", ", ".join(patterns))
        return sum(removed)

    def __call__(self, handler: Handler) -> Handler:
        async def invalidating_handler(context: RequestContext) -> HandlerResult:
            result = await handler(context)
            if result.ok:
                await self.invalidate(context)
            return result

        return invalidating_handler
