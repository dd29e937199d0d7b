import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before any import that might read settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# SyncRedisCache is used when Redis is reachable; otherwise the runtime falls
# back to the in-process cache (ALLOW_REDIS_FALLBACK_DEV)
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")

import pytest  # noqa: E402
from argon2 import PasswordHasher as Argon2Hasher  # noqa: E402
from argon2 import Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from identity_service.config import Settings  # noqa: E402
from identity_service.service.identity import IdentityEngine  # noqa: E402
from identity_service.service.passwords import PasswordHasher  # noqa: E402
from identity_service.storage.memory import MemoryCache, MemoryStore  # noqa: E402

TEST_JWT_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class FailingCache:
    """Cache double whose every call raises, like an unreachable Redis."""

    def __init__(self):
        self.calls = []

    async def get(self, key):
        self.calls.append(("get", key))
        raise ConnectionError("cache unavailable")

    async def set(self, key, value, ttl_seconds):
        self.calls.append(("set", key))
        raise ConnectionError("cache unavailable")

    async def delete(self, key):
        raise ConnectionError("cache unavailable")

    async def close(self):
        return None


class RecordingCache(MemoryCache):
    """MemoryCache that remembers every write with its TTL."""

    def __init__(self):
        super().__init__()
        self.writes = []

    async def set(self, key, value, ttl_seconds):
        self.writes.append((key, value, ttl_seconds))
        await super().set(key, value, ttl_seconds)


@pytest.fixture
def settings():
    return Settings(jwt_secret=TEST_JWT_SECRET, test_mode=True)


@pytest.fixture
def hasher():
    """argon2id with minimal cost so the suite stays fast."""
    return PasswordHasher(
        Argon2Hasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID)
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def memory_cache():
    return RecordingCache()


@pytest.fixture
def failing_cache():
    return FailingCache()


@pytest.fixture
def engine(memory_store, memory_cache, settings, hasher):
    return IdentityEngine(memory_store, memory_cache, settings, hasher=hasher)


@pytest.fixture
def engine_failing_cache(memory_store, failing_cache, settings, hasher):
    return IdentityEngine(memory_store, failing_cache, settings, hasher=hasher)


@pytest.fixture
def engine_no_cache(memory_store, settings, hasher):
    return IdentityEngine(memory_store, None, settings, hasher=hasher)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
