from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from identity_service.logging import get_logger

logger = get_logger(__name__)

# Lower bound on refresh-token entropy, in random bytes.
MIN_REFRESH_TOKEN_BYTES = 40
# Upper bound on any refresh-token lifetime and on blacklist entry TTLs.
MAX_REFRESH_TOKEN_TTL_DAYS = 7


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the identity service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/identity", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (sync Redis client, generated JWT secret).",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("identity-service", "JWT_ISSUER")
    access_token_ttl_minutes: int = env_field(
        15,
        "ACCESS_TOKEN_TTL_MINUTES",
        description="Lifetime of signed access tokens",
    )
    refresh_token_ttl_days: int = env_field(
        MAX_REFRESH_TOKEN_TTL_DAYS,
        "REFRESH_TOKEN_TTL_DAYS",
        description="Lifetime of refresh-token rows; reset on every rotation",
    )
    refresh_token_bytes: int = env_field(
        MIN_REFRESH_TOKEN_BYTES,
        "REFRESH_TOKEN_BYTES",
        description="Random bytes of entropy per refresh token",
    )
    cache_ttl_seconds: int = env_field(
        60 * 60 * 24,
        "CACHE_TTL_SECONDS",
        description="TTL for user snapshots and the email index in the session cache",
    )
    conceal_unknown_login: bool = env_field(
        False,
        "CONCEAL_UNKNOWN_LOGIN",
        description="Report unknown login emails as invalid credentials instead of not found",
    )
    expose_error_detail: bool = env_field(
        False,
        "EXPOSE_ERROR_DETAIL",
        description="Include sanitized infrastructure error text in failure results",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("access_token_ttl_minutes", "cache_ttl_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("refresh_token_ttl_days")
    @classmethod
    def _bounded_refresh_ttl(cls, value: int) -> int:
        if value <= 0 or value > MAX_REFRESH_TOKEN_TTL_DAYS:
            raise ValueError(
                f"refresh_token_ttl_days must be between 1 and {MAX_REFRESH_TOKEN_TTL_DAYS}"
            )
        return value

    @field_validator("refresh_token_bytes")
    @classmethod
    def _enough_entropy(cls, value: int) -> int:
        if value < MIN_REFRESH_TOKEN_BYTES:
            raise ValueError(
                f"refresh_token_bytes must be at least {MIN_REFRESH_TOKEN_BYTES}"
            )
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            if len(self.jwt_secret) < 32 and not self.test_mode:
                raise ValueError("JWT_SECRET must be at least 32 characters")
            return self
        if not self.test_mode:
            raise ValueError("JWT_SECRET is required outside TEST_MODE")
        # Tokens signed with a generated secret do not survive a restart
        logger.warning("jwt_secret_generated", reason="test_mode")
        self.jwt_secret = secrets.token_urlsafe(64)
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
