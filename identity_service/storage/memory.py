from __future__ import annotations

import threading
import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from identity_service.logging import get_logger
from identity_service.storage.errors import ConstraintViolation
from identity_service.storage.models import RefreshToken, User, utcnow


class MemoryStore:
    """In-process credential store for tests and local development.

    Enforces the same uniqueness rules as the Postgres schema: username,
    email and refresh-token hash are each unique. Records are copied on the
    way in and out so callers never mutate stored state directly.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        # RLock so helpers can nest inside public methods
        self._data_lock = threading.RLock()

    # users
    def find_user_by_email_or_username(
        self, email: str, username: str
    ) -> Optional[User]:
        with self._data_lock:
            for user in self.users.values():
                if user.email == email or user.username == username:
                    return replace(user)
            return None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def create_user(self, username: str, email: str, password_hash: str) -> User:
        with self._data_lock:
            for existing in self.users.values():
                if existing.email == email:
                    raise ConstraintViolation("email already exists", field="email")
                if existing.username == username:
                    raise ConstraintViolation("username already exists", field="username")
            user = User(
                id=str(uuid.uuid4()),
                username=username,
                email=email,
                password_hash=password_hash,
            )
            self.users[user.id] = user
            return replace(user)

    # refresh tokens
    def _row_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        return next(
            (t for t in self.refresh_tokens.values() if t.token_hash == token_hash),
            None,
        )

    def find_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        with self._data_lock:
            row = self._row_by_hash(token_hash)
            return replace(row) if row else None

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        with self._data_lock:
            if token.user_id not in self.users:
                raise ConstraintViolation("token owner does not exist", field="user_id")
            if self._row_by_hash(token.token_hash) is not None:
                raise ConstraintViolation("token hash already exists", field="token_hash")
            self.refresh_tokens[token.id] = replace(token)
            return replace(token)

    def update_refresh_token(
        self,
        token_id: str,
        new_hash: str,
        new_expires_at: datetime,
        *,
        expected_hash: Optional[str] = None,
    ) -> bool:
        """Swap hash and expiry in one step.

        With ``expected_hash`` the update only applies while the row still
        carries that hash, so one of two racing rotations loses.
        """
        with self._data_lock:
            row = self.refresh_tokens.get(token_id)
            if row is None:
                return False
            if expected_hash is not None and row.token_hash != expected_hash:
                return False
            clash = self._row_by_hash(new_hash)
            if clash is not None and clash.id != token_id:
                raise ConstraintViolation("token hash already exists", field="token_hash")
            row.token_hash = new_hash
            row.expires_at = new_expires_at
            return True

    def delete_refresh_token_by_id(self, token_id: str) -> bool:
        with self._data_lock:
            return self.refresh_tokens.pop(token_id, None) is not None

    def delete_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        with self._data_lock:
            row = self._row_by_hash(token_hash)
            if row is None:
                return None
            return self.refresh_tokens.pop(row.id)

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._data_lock:
            stale = [tid for tid, row in self.refresh_tokens.items() if row.is_expired(now)]
            for tid in stale:
                self.refresh_tokens.pop(tid, None)
        if stale:
            self.logger.info("refresh_tokens_purged", count=len(stale))
        return len(stale)


class MemoryCache:
    """Process-local key/value cache with per-key expiry.

    Stands in for Redis when it is unreachable and fallback is allowed. Not
    shared between processes, so revocations only hold within one process.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
