# src/coursechain/services/cache_backends.py
"""Key/value engines behind :class:`~coursechain.services.cache.CacheService`."""

from __future__ import annotations

import fnmatch
import math
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

# INCR and the first-window EXPIRE run as one server-side step, so racing
# callers see strictly increasing counts and only the creator sets the TTL.
INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 and tonumber(ARGV[1]) > 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""

SCAN_BATCH_SIZE = 500


class CacheBackend(Protocol):
    """Minimal async key/value interface with Redis TTL conventions."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def increment(self, key: str, ttl_seconds: int) -> int: ...

    async def ttl(self, key: str) -> int: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...


class RedisCacheBackend:
    """Redis-backed store using ``redis.asyncio``."""

    def __init__(self, client: redis.Redis) -> None:
        self.redis = client
        self._increment = client.register_script(INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, *, timeout: float = 2.0) -> RedisCacheBackend:
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        value = await self.redis.get(key)
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.redis.set(key, value, ex=ttl_seconds if ttl_seconds > 0 else None)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.redis.delete(*keys))

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self.redis.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)]
        if not keys:
            return 0
        return int(await self.redis.unlink(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def increment(self, key: str, ttl_seconds: int) -> int:
        return int(await self._increment(keys=[key], args=[ttl_seconds]))

    async def ttl(self, key: str) -> int:
        return int(await self.redis.ttl(key))

    async def clear(self) -> None:
        await self.redis.flushdb()

    async def close(self) -> None:
        await self.redis.aclose()


class MemoryCacheBackend:
    """In-process store for development and testing.

    Operations never await, so each one is atomic with respect to other
    coroutines on the same event loop. Use RedisCacheBackend when more than one
    process serves traffic.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int) -> float | None:
        return self._clock() + ttl_seconds if ttl_seconds > 0 else None

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return None if entry is None else entry[0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._expiry(ttl_seconds))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._entries[key]
                removed += 1
        return removed

    async def delete_pattern(self, pattern: str) -> int:
        matched = [
            key
            for key in list(self._entries)
            if fnmatch.fnmatchcase(key, pattern) and self._live(key) is not None
        ]
        for key in matched:
            del self._entries[key]
        return len(matched)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def increment(self, key: str, ttl_seconds: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._entries[key] = ("1", self._expiry(ttl_seconds))
            return 1
        value, expires_at = entry
        try:
            count = int(value) + 1
        except ValueError as err:
            raise ValueError(f"value at {key} is not an integer") from err
        self._entries[key] = (str(count), expires_at)
        return count

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return max(0, math.ceil(entry[1] - self._clock()))

    async def clear(self) -> None:
        self._entries.clear()

    async def close(self) -> None:
        self._entries.clear()
