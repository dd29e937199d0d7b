from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class ServiceError(Exception):
    """Base class for identity-engine outcomes that are not a success.

    Each subclass carries a stable ``error_code`` (the error kind reported in
    an :class:`OperationResult`) and the HTTP ``status_code`` an outer layer
    would normally map it to:
    - validation_error (400)
    - unauthorized (401)
    - revoked (403)
    - expired (403)
    - not_found (404)
    - conflict (409)
    - infrastructure_fault (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Malformed input (400). ``detail["fields"]`` maps field -> messages."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Credentials or access token rejected (401)."""
    status_code = 401
    error_code = "unauthorized"


class RevokedError(ServiceError):
    """Refresh token is on the revocation list (403)."""
    status_code = 403
    error_code = "revoked"


class ExpiredError(ServiceError):
    """Refresh token is past its validity; its row has been purged (403)."""
    status_code = 403
    error_code = "expired"


class NotFoundError(ServiceError):
    """No matching user or refresh token (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Username or email already registered (409)."""
    status_code = 409
    error_code = "conflict"


class InfrastructureFault(ServiceError):
    """Store, cache or hashing backend failure (500)."""
    status_code = 500
    error_code = "infrastructure_fault"


@dataclass
class OperationResult:
    """Tagged outcome handed to the (external) transport layer."""

    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None
    message: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, payload: Optional[dict[str, Any]] = None) -> "OperationResult":
        return cls(ok=True, payload=payload or {})

    @classmethod
    def failure(cls, exc: ServiceError) -> "OperationResult":
        return cls(
            ok=False,
            error_kind=exc.error_code,
            message=exc.message,
            detail=dict(exc.detail),
        )

    @property
    def status_code(self) -> int:
        if self.ok:
            return 200
        return _STATUS_BY_KIND.get(self.error_kind or "", 500)

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "payload": self.payload}
        return {
            "ok": False,
            "errorKind": self.error_kind,
            "message": self.message,
            "detail": self.detail,
        }


_STATUS_BY_KIND = {
    cls.error_code: cls.status_code
    for cls in (
        ValidationError,
        AuthenticationError,
        RevokedError,
        ExpiredError,
        NotFoundError,
        ConflictError,
        InfrastructureFault,
    )
}


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "RevokedError",
    "ExpiredError",
    "NotFoundError",
    "ConflictError",
    "InfrastructureFault",
    "OperationResult",
]
