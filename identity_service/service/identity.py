from __future__ import annotations

import inspect
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from identity_service.config import MAX_REFRESH_TOKEN_TTL_DAYS, Settings
from identity_service.logging import get_logger, sanitize_error_message
from identity_service.service.errors import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    InfrastructureFault,
    NotFoundError,
    OperationResult,
    RevokedError,
    ServiceError,
    ValidationError,
)
from identity_service.service.passwords import PasswordHasher
from identity_service.service.session_cache import KeyValueCache, SessionCache
from identity_service.service.tokens import TokenMinter, hash_refresh_token
from identity_service.service.validation import (
    validate_login,
    validate_registration,
    validate_token,
)
from identity_service.storage.errors import ConstraintViolation
from identity_service.storage.models import RefreshToken, User, utcnow
from identity_service.storage.redis_cache import RedisCache

MAX_BLACKLIST_TTL_SECONDS = int(timedelta(days=MAX_REFRESH_TOKEN_TTL_DAYS).total_seconds())


class CredentialStore(Protocol):
    def find_user_by_email_or_username(
        self, email: str, username: str
    ) -> Optional[User]: ...

    def find_user_by_email(self, email: str) -> Optional[User]: ...

    def find_user_by_id(self, user_id: str) -> Optional[User]: ...

    def create_user(self, username: str, email: str, password_hash: str) -> User: ...

    def find_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]: ...

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken: ...

    def update_refresh_token(
        self,
        token_id: str,
        new_hash: str,
        new_expires_at: datetime,
        *,
        expected_hash: Optional[str] = None,
    ) -> bool: ...

    def delete_refresh_token_by_id(self, token_id: str) -> bool: ...

    def delete_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]: ...

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int: ...


def _token_payload(access_token: str, refresh_token: str, user_id: str) -> dict[str, Any]:
    return {"accessToken": access_token, "refreshToken": refresh_token, "userId": user_id}


class IdentityEngine:
    """Register, login, refresh and logout over a credential store and a cache.

    The store is authoritative. The cache only accelerates the login lookup
    and holds the revocation list; when it is absent or failing the engine
    still answers correctly, only with more store reads. Business outcomes
    are raised as :class:`ServiceError` subclasses; :meth:`execute` turns
    them (and any infrastructure exception) into an :class:`OperationResult`.
    """

    def __init__(
        self,
        store: CredentialStore,
        cache: Optional[KeyValueCache],
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        minter: Optional[TokenMinter] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.cache = SessionCache(cache, settings.cache_ttl_seconds)
        self.hasher = hasher or PasswordHasher()
        self.minter = minter or TokenMinter(settings, store)
        self.logger = get_logger(__name__)

    async def register(self, username: str, email: str, password: str) -> dict[str, Any]:
        request = validate_registration(
            {"username": username, "email": email, "password": password}
        )
        existing = self.store.find_user_by_email_or_username(request.email, request.username)
        if existing is not None:
            field = "email" if existing.email == request.email else "username"
            self.logger.info("register_conflict", field=field)
            raise ConflictError("User already exists!", detail={"field": field})

        password_hash = self.hasher.hash(request.password)
        try:
            user = self.store.create_user(request.username, request.email, password_hash)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration
            self.logger.info("register_conflict", field=exc.field)
            raise ConflictError("User already exists!", detail={"field": exc.field}) from exc

        issued = self.minter.issue(user)
        await self.cache.remember_user(user)
        self.logger.info("register_succeeded", user_id=user.id)
        return _token_payload(issued.access_token, issued.refresh_token, user.id)

    async def _resolve_login_user(self, email: str) -> Optional[User]:
        cached_id = await self.cache.lookup_user_id(email)
        if cached_id and await self.cache.get_snapshot(cached_id) is not None:
            user = self.store.find_user_by_id(cached_id)
            if user is not None and user.email == email:
                return user
            # Dangling or reassigned entry; the store lookup below decides
            self.logger.info("login_cache_stale", user_id=cached_id)

        user = self.store.find_user_by_email(email)
        if user is not None:
            await self.cache.remember_user(user)
        return user

    async def login(self, email: str, password: str) -> dict[str, Any]:
        request = validate_login({"email": email, "password": password})
        user = await self._resolve_login_user(request.email)
        if user is None:
            # Spend the same argon2 work as a real mismatch
            self.hasher.burn_verify(request.password)
            self.logger.info("login_failed", reason="unknown_email")
            if self.settings.conceal_unknown_login:
                raise AuthenticationError("Invalid credentials")
            raise NotFoundError("User not found")

        if not self.hasher.verify(user.password_hash, request.password):
            self.logger.info("login_failed", reason="password_mismatch", user_id=user.id)
            if self.settings.conceal_unknown_login:
                raise AuthenticationError("Invalid credentials")
            raise AuthenticationError("Invalid password")

        issued = self.minter.issue(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return _token_payload(issued.access_token, issued.refresh_token, user.id)

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        plaintext = validate_token({"refresh_token": refresh_token}).refresh_token
        if await self.cache.is_blacklisted(plaintext):
            self.logger.info("refresh_rejected", reason="blacklisted")
            raise RevokedError("Refresh token is blacklisted")

        digest = hash_refresh_token(plaintext)
        row = self.store.find_refresh_token_by_hash(digest)
        if row is None:
            raise NotFoundError("Refresh token not found")
        if row.is_expired():
            self.store.delete_refresh_token_by_id(row.id)
            self.logger.info("refresh_rejected", reason="expired", user_id=row.user_id)
            raise ExpiredError("Refresh token expired")

        user = self.store.find_user_by_id(row.user_id)
        if user is None:
            self.store.delete_refresh_token_by_id(row.id)
            self.logger.warning("refresh_orphaned_token", token_id=row.id)
            raise NotFoundError("User not found")

        new_plaintext, new_digest = self.minter.mint_refresh_token()
        rotated = self.store.update_refresh_token(
            row.id,
            new_digest,
            utcnow() + self.minter.refresh_ttl,
            expected_hash=digest,
        )
        if not rotated:
            self.logger.info("refresh_rejected", reason="superseded", user_id=user.id)
            raise NotFoundError("Refresh token not found")

        access_token = self.minter.mint_access_token(user.id, user.username)
        self.logger.info("refresh_succeeded", user_id=user.id)
        return _token_payload(access_token, new_plaintext, user.id)

    async def logout(self, refresh_token: str) -> dict[str, Any]:
        plaintext = validate_token({"refresh_token": refresh_token}).refresh_token
        row = self.store.delete_refresh_token_by_hash(hash_refresh_token(plaintext))
        if row is None:
            raise NotFoundError("Refresh token not found or already logged out")

        ttl = min(MAX_BLACKLIST_TTL_SECONDS, RedisCache.ttl_until(row.expires_at))
        if await self.cache.blacklist(plaintext, ttl):
            self.logger.info("refresh_token_blacklisted", user_id=row.user_id, ttl=ttl)
        self.logger.info("logout_succeeded", user_id=row.user_id)
        return {"loggedOut": True, "userId": row.user_id}

    async def authenticate(self, access_token: str) -> dict[str, Any]:
        claims = self.minter.verify_access_token(access_token)
        return {
            "userId": claims.get("userId"),
            "username": claims.get("username"),
            "expiresAt": claims.get("exp"),
        }

    async def purge_expired(self) -> dict[str, Any]:
        return {"purged": self.store.purge_expired_refresh_tokens(utcnow())}

    _OPERATIONS = ("register", "login", "refresh", "logout", "authenticate", "purge_expired")

    async def execute(self, operation: str, **kwargs: Any) -> OperationResult:
        """Run one operation and wrap its outcome in an :class:`OperationResult`."""
        if operation not in self._OPERATIONS:
            return OperationResult.failure(
                ValidationError(f"Unknown operation: {operation}")
            )
        handler = getattr(self, operation)
        try:
            inspect.signature(handler).bind(**kwargs)
        except TypeError as exc:
            return OperationResult.failure(
                ValidationError("Invalid operation arguments", detail={"error": str(exc)})
            )
        try:
            return OperationResult.success(await handler(**kwargs))
        except InfrastructureFault as exc:
            return self._infrastructure_failure(operation, exc)
        except ServiceError as exc:
            return OperationResult.failure(exc)
        except Exception as exc:
            return self._infrastructure_failure(operation, exc)

    def _infrastructure_failure(self, operation: str, exc: Exception) -> OperationResult:
        self.logger.exception(
            "operation_failed", operation=operation, error_type=type(exc).__name__
        )
        detail: dict[str, Any] = {}
        if self.settings.expose_error_detail:
            detail = {"error": sanitize_error_message(str(exc))}
        return OperationResult.failure(
            InfrastructureFault("Internal server error", detail=detail)
        )
