from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, List, Mapping, Type, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from identity_service.service.errors import ValidationError

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128
REFRESH_TOKEN_MAX_LENGTH = 2048

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and drop zero-width and bidi override characters."""
    zero_width = '\u200b\u200c\u200d\ufeff'
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = ''.join(c for c in value if c not in zero_width and c not in bidi_overrides)
    return unicodedata.normalize('NFKC', cleaned)


def normalize_email(value: str) -> str:
    return _normalize_unicode(value.strip().lower())


def _validate_email(value: str) -> str:
    normalized = normalize_email(value)
    if len(normalized) > 254:
        raise ValueError("Email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("Invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("Invalid email address")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("Invalid email address")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("Invalid email address")
    return normalized


def _validate_password(value: str) -> str:
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(value) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"Password can't exceed {PASSWORD_MAX_LENGTH} characters")
    return value


class RegistrationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: str
    email: str
    password: str

    @field_validator("username")
    @classmethod
    def _validate_username(cls, value: str) -> str:
        value = _normalize_unicode(value.strip())
        if len(value) < USERNAME_MIN_LENGTH:
            raise ValueError(f"Username must be at least {USERNAME_MIN_LENGTH} characters")
        if len(value) > USERNAME_MAX_LENGTH:
            raise ValueError(f"Username can't exceed {USERNAME_MAX_LENGTH} characters")
        return value

    @field_validator("email")
    @classmethod
    def _validate_registration_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_registration_password(cls, value: str) -> str:
        return _validate_password(value)


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_login_password(cls, value: str) -> str:
        return _validate_password(value)


class TokenRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    refresh_token: str

    @field_validator("refresh_token")
    @classmethod
    def _validate_refresh_token(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Refresh token required")
        if len(value) > REFRESH_TOKEN_MAX_LENGTH:
            raise ValueError("Refresh token too long")
        return value


_M = TypeVar("_M", bound=BaseModel)


def field_errors(exc: PydanticValidationError) -> Dict[str, List[str]]:
    """Flatten pydantic errors into ``{field: [message, ...]}``."""
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("_",)
        field = str(loc[0])
        message = err.get("msg", "Invalid value")
        if err.get("type") == "value_error":
            message = message.removeprefix("Value error, ")
        elif err.get("type") == "missing":
            message = f"{field} is required"
        errors.setdefault(field, []).append(message)
    return errors


def validate(schema: Type[_M], data: Mapping[str, Any]) -> _M:
    """Parse ``data`` into ``schema`` or raise a ValidationError with field messages."""
    try:
        return schema.model_validate(dict(data))
    except PydanticValidationError as exc:
        fields = field_errors(exc)
        raise ValidationError("Validation failed", detail={"fields": fields}) from exc


def validate_registration(data: Mapping[str, Any]) -> RegistrationRequest:
    return validate(RegistrationRequest, data)


def validate_login(data: Mapping[str, Any]) -> LoginRequest:
    return validate(LoginRequest, data)


def validate_token(data: Mapping[str, Any]) -> TokenRequest:
    return validate(TokenRequest, data)
