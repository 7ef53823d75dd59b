# src/coursechain/services/container.py
"""Process-wide service wiring, built once at startup and kept on ``app.state``."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from coursechain.core.settings import Settings
from coursechain.services.audit import AuditWorker
from coursechain.services.cache import CacheService
from coursechain.services.cache_backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived services shared by every request."""

    cache: CacheService
    audit: AuditWorker | None = None

    async def start(self) -> None:
        if self.audit is not None:
            await self.audit.start()

    async def stop(self) -> None:
        if self.audit is not None:
            await self.audit.stop()
        await self.cache.close()


def build_cache_backend(config: Settings) -> CacheBackend | None:
    """Select the cache engine named by ``cache_backend``."""
    if config.cache_backend == "redis":
        return RedisCacheBackend.from_url(config.redis_url, timeout=config.cache_timeout_seconds)
    if config.cache_backend == "memory":
        return MemoryCacheBackend()
    logger.warning("Cache backend disabled; responses will not be cached")
    return None


def build_container(
    config: Settings, session_factory: Callable[[], Session]
) -> ServiceContainer:
    """Create the services described by ``config``; call :meth:`ServiceContainer.start` next."""
    cache = CacheService(build_cache_backend(config), timeout=config.cache_timeout_seconds)
    audit = (
        AuditWorker(
            session_factory,
            queue_size=config.audit_queue_size,
            max_retries=config.audit_max_retries,
        )
        if config.audit_enabled
        else None
    )
    return ServiceContainer(cache=cache, audit=audit)
