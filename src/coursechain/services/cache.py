# src/coursechain/services/cache.py
"""Cache access that degrades to a miss or a no-op when the store is unavailable."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Final, TypeVar

from coursechain.services.cache_backends import CacheBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS: Final[int] = 300
TTL_NO_EXPIRY: Final[int] = -1
TTL_MISSING: Final[int] = -2


class _Miss:
    """Sentinel for "no entry", distinct from a stored ``None``."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


class CacheService:
    """JSON cache and atomic counters over a :class:`CacheBackend`.

    Every backend call is bounded by ``timeout``. Failures, timeouts and a
    missing backend are logged and reported as a miss (reads), a dropped
    write, or ``None`` (counters); they are never raised to the caller.
    """

    def __init__(self, backend: CacheBackend | None, *, timeout: float = 2.0) -> None:
        self._backend = backend
        self._timeout = timeout

    async def _execute(
        self, description: str, operation: Callable[[CacheBackend], Awaitable[T]]
    ) -> T | _Miss:
        if self._backend is None:
            logger.debug("Cache backend not configured, skipping %s", description)
            return MISS
        try:
            return await asyncio.wait_for(operation(self._backend), timeout=self._timeout)
        except Exception as err:
            logger.error("Cache %s failed: %s", description, str(err) or type(err).__name__)
            return MISS

    async def get(self, key: str) -> Any:
        """Return the stored value for ``key`` or :data:`MISS`."""
        raw = await self._execute(f"get for key {key}", lambda b: b.get(key))
        if raw is MISS or raw is None:
            return MISS
        try:
            return json.loads(raw)  # type: ignore[arg-type]
        except ValueError as err:
            logger.error("Cache entry %s is not valid JSON: %s", key, err)
            return MISS

    async def set(self, key: str, value: Any, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool:
        """Store ``value`` as JSON; return False when the write was dropped."""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as err:
            logger.error("Cache set for key %s dropped, value not serializable: %s", key, err)
            return False
        result = await self._execute(
            f"set for key {key}", lambda b: b.set(key, payload, ttl_seconds)
        )
        return result is not MISS

    async def delete(self, key: str) -> bool:
        result = await self._execute(f"delete for key {key}", lambda b: b.delete(key))
        return result is not MISS

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every live key matching the glob ``pattern``; return how many."""
        removed = await self._execute(
            f"pattern delete for {pattern}", lambda b: b.delete_pattern(pattern)
        )
        if removed is MISS:
            return 0
        if removed:
            logger.info("Deleted %d cache keys matching pattern: %s", removed, pattern)
        return int(removed)  # type: ignore[arg-type]

    async def exists(self, key: str) -> bool:
        result = await self._execute(f"exists check for key {key}", lambda b: b.exists(key))
        return bool(result)

    async def increment(self, key: str, ttl_seconds: int = 0) -> int | None:
        """Atomically increment ``key``.

        The TTL is applied only when this call created the counter. Returns
        ``None`` when the store could not be reached.
        """
        count = await self._execute(
            f"increment for key {key}", lambda b: b.increment(key, ttl_seconds)
        )
        return None if count is MISS else int(count)  # type: ignore[arg-type]

    async def ttl(self, key: str) -> int | None:
        """Seconds left on ``key``, :data:`TTL_NO_EXPIRY`, :data:`TTL_MISSING`, or ``None`` on failure."""
        remaining = await self._execute(f"TTL check for key {key}", lambda b: b.ttl(key))
        return None if remaining is MISS else int(remaining)  # type: ignore[arg-type]

    async def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> T:
        """Cache-aside read: return the cached value or fetch, store and return it."""
        cached = await self.get(key)
        if cached is not MISS:
            return cached  # type: ignore[no-any-return]
        fresh = await fetch()
        await self.set(key, fresh, ttl_seconds)
        return fresh

    async def clear(self) -> bool:
        result = await self._execute("clear", lambda b: b.clear())
        if result is not MISS:
            logger.info("Cache cleared successfully")
        return result is not MISS

    async def close(self) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.close()
        except Exception as err:
            logger.warning("Error closing cache backend: %s", err)
