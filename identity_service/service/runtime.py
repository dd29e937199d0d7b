from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse

from identity_service.config import Settings, get_settings, reset_settings_cache
from identity_service.logging import get_logger
from identity_service.service.identity import IdentityEngine
from identity_service.storage.memory import MemoryCache, MemoryStore
from identity_service.storage.postgres import PostgresStore
from identity_service.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)

Store = Union[MemoryStore, PostgresStore]
Cache = Union[RedisCache, SyncRedisCache, MemoryCache]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a DSN with ``***`` so it can be logged.

    redis://:pw@localhost:6379/0 -> redis://:***@localhost:6379/0
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        host = parsed.hostname or ""
        if parsed.port:
            host = f"{host}:{parsed.port}"
        return parsed._replace(netloc=f"{parsed.username or ''}:***@{host}").geturl()
    except ValueError:
        return "***url_parse_error***"


def _build_store(settings: Settings) -> Store:
    store_type = "memory" if settings.use_memory_store else "postgres"
    try:
        store: Store = (
            MemoryStore() if settings.use_memory_store else PostgresStore(settings.database_url)
        )
    except Exception as exc:
        logger.error(
            "runtime_store_init_failed",
            store_type=store_type,
            database_url=_mask_url_password(settings.database_url),
            error_type=type(exc).__name__,
        )
        raise
    logger.info("runtime_store_initialized", store_type=store_type)
    return store


def _build_cache(settings: Settings) -> Cache:
    """Connect to Redis, or fall back to a process-local cache where allowed.

    TEST_MODE uses the sync client so no event loop is bound at startup.
    """
    redis_error: Exception | None = None
    if settings.redis_url:
        cache_cls = SyncRedisCache if settings.test_mode else RedisCache
        try:
            cache = cache_cls(settings.redis_url)
            cache.verify_connection()
            return cache
        except Exception as exc:
            redis_error = exc

    if not (settings.test_mode or settings.allow_redis_fallback_dev):
        raise RuntimeError(
            "Redis is required for the session cache and revocation list; "
            "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error

    mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    # Revocations written here are invisible to other processes
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        mode=mode,
    )
    return MemoryCache()


class Runtime:
    """Store, cache and identity engine shared by one process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.store = _build_store(self.settings)
        self.cache = _build_cache(self.settings)
        self.engine = IdentityEngine(self.store, self.cache, self.settings)
        logger.info(
            "runtime_initialized",
            redis_enabled=not isinstance(self.cache, MemoryCache),
        )

    async def close(self) -> None:
        await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process-wide Runtime, building it on first use."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Drop the current Runtime (closing its Redis client) and build a fresh one."""
    global runtime

    with _runtime_lock:
        cache = runtime.cache if runtime is not None else None
        if isinstance(cache, SyncRedisCache):
            cache.client.close()
        elif isinstance(cache, RedisCache):
            try:
                asyncio.get_running_loop().create_task(cache.close())
            except RuntimeError:
                asyncio.run(cache.close())

        reset_settings_cache()
        if not get_settings().test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
