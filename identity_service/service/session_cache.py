from __future__ import annotations

import asyncio
import json
from typing import Any, Optional, Protocol

from identity_service.logging import get_logger
from identity_service.storage.models import User

logger = get_logger(__name__)

USER_PREFIX = "user:"
EMAIL_INDEX_PREFIX = "emailToUserId:"
BLACKLIST_PREFIX = "bl:"
BLACKLIST_MARKER = "blacklisted"


class KeyValueCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


class SessionCache:
    """Best-effort view over the cache key families used by the identity engine.

    ``user:<id>`` holds a profile snapshot, ``emailToUserId:<email>`` the
    reverse lookup, ``bl:<token>`` a revocation marker. Reads that fail are
    reported as misses and writes that fail are logged and dropped; nothing
    here raises into the caller. A missing backend behaves like an empty cache.
    """

    def __init__(self, backend: Optional[KeyValueCache], ttl_seconds: int) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    async def _get(self, key: str) -> Optional[str]:
        if self.backend is None:
            return None
        try:
            return await self.backend.get(key)
        except Exception as exc:
            logger.warning(
                "cache_read_failed",
                key_family=key.split(":", 1)[0],
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None

    async def _set(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self.backend is None:
            return False
        try:
            await self.backend.set(key, value, ttl_seconds)
            return True
        except Exception as exc:
            logger.warning(
                "cache_write_failed",
                key_family=key.split(":", 1)[0],
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

    async def lookup_user_id(self, email: str) -> Optional[str]:
        return await self._get(f"{EMAIL_INDEX_PREFIX}{email}")

    async def get_snapshot(self, user_id: str) -> Optional[dict[str, Any]]:
        raw = await self._get(f"{USER_PREFIX}{user_id}")
        if not raw:
            return None
        try:
            snapshot = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("cache_snapshot_corrupt", user_id=user_id)
            return None
        return snapshot if isinstance(snapshot, dict) else None

    async def remember_user(self, user: User) -> bool:
        """Write the snapshot and email index; True only when both landed."""
        if self.backend is None:
            return False
        snapshot = json.dumps(
            {"userId": user.id, "username": user.username, "email": user.email}
        )
        # Independent writes; neither gates the other
        results = await asyncio.gather(
            self._set(f"{USER_PREFIX}{user.id}", snapshot, self.ttl_seconds),
            self._set(f"{EMAIL_INDEX_PREFIX}{user.email}", user.id, self.ttl_seconds),
        )
        return all(results)

    async def is_blacklisted(self, refresh_token: str) -> bool:
        return bool(await self._get(f"{BLACKLIST_PREFIX}{refresh_token}"))

    async def blacklist(self, refresh_token: str, ttl_seconds: int) -> bool:
        return await self._set(
            f"{BLACKLIST_PREFIX}{refresh_token}", BLACKLIST_MARKER, ttl_seconds
        )
