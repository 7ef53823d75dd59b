# tests/services/test_cache_backends.py
"""Tests for the Redis cache backend against a mocked client."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from coursechain.services.cache import CacheService
from coursechain.services.cache_backends import INCREMENT_SCRIPT, RedisCacheBackend


@pytest.fixture()
def redis_client() -> MagicMock:
    client = MagicMock()
    client.register_script.return_value = AsyncMock(return_value=1)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.unlink = AsyncMock(return_value=0)
    client.exists = AsyncMock(return_value=0)
    client.ttl = AsyncMock(return_value=-2)
    client.flushdb = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest.fixture()
def backend(redis_client: MagicMock) -> RedisCacheBackend:
    return RedisCacheBackend(redis_client)


def test_registers_increment_script(redis_client: MagicMock, backend: RedisCacheBackend) -> None:
    redis_client.register_script.assert_called_once_with(INCREMENT_SCRIPT)
    assert "INCR" in INCREMENT_SCRIPT and "EXPIRE" in INCREMENT_SCRIPT


@pytest.mark.asyncio
async def test_increment_runs_script_atomically(
    redis_client: MagicMock, backend: RedisCacheBackend
) -> None:
    script = redis_client.register_script.return_value
    script.return_value = 3

    assert await backend.increment("ratelimit:ip:1.2.3.4:/x", 900) == 3
    script.assert_awaited_once_with(keys=["ratelimit:ip:1.2.3.4:/x"], args=[900])


@pytest.mark.asyncio
async def test_set_uses_expiry(redis_client: MagicMock, backend: RedisCacheBackend) -> None:
    await backend.set("k", '{"a": 1}', 300)
    redis_client.set.assert_awaited_once_with("k", '{"a": 1}', ex=300)


@pytest.mark.asyncio
async def test_delete_pattern_scans_then_unlinks(
    redis_client: MagicMock, backend: RedisCacheBackend
) -> None:
    async def scan_iter(match: str, count: int):
        for key in ("cache:GET:/api/v1/users", "cache:GET:/api/v1/users/1"):
            yield key

    redis_client.scan_iter = MagicMock(side_effect=scan_iter)
    redis_client.unlink.return_value = 2

    assert await backend.delete_pattern("cache:GET:/api/v1/users*") == 2
    redis_client.scan_iter.assert_called_once_with(match="cache:GET:/api/v1/users*", count=500)
    redis_client.unlink.assert_awaited_once_with(
        "cache:GET:/api/v1/users", "cache:GET:/api/v1/users/1"
    )


@pytest.mark.asyncio
async def test_delete_pattern_without_matches(
    redis_client: MagicMock, backend: RedisCacheBackend
) -> None:
    async def scan_iter(match: str, count: int):
        return
        yield  # pragma: no cover

    redis_client.scan_iter = MagicMock(side_effect=scan_iter)

    assert await backend.delete_pattern("none*") == 0
    redis_client.unlink.assert_not_awaited()


@pytest.mark.asyncio
async def test_close_releases_connections(
    redis_client: MagicMock, backend: RedisCacheBackend
) -> None:
    await backend.close()
    redis_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_service_round_trip_through_redis_backend(
    redis_client: MagicMock, backend: RedisCacheBackend
) -> None:
    redis_client.get.return_value = '{"users": []}'
    cache = CacheService(backend)

    assert await cache.get("cache:GET:/api/v1/users") == {"users": []}
    assert await cache.ttl("missing") == -2


@pytest.mark.asyncio
async def test_service_degrades_on_connection_error(
    redis_client: MagicMock, backend: RedisCacheBackend
) -> None:
    from redis.exceptions import ConnectionError as RedisConnectionError

    redis_client.register_script.return_value.side_effect = RedisConnectionError("refused")
    cache = CacheService(backend)

    assert await cache.increment("k", 60) is None
