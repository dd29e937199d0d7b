import pytest

from identity_service.logging import sanitize_error_message
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


@pytest.mark.parametrize(
    "exc_cls, kind, status",
    [
        (ValidationError, "validation_error", 400),
        (AuthenticationError, "unauthorized", 401),
        (RevokedError, "revoked", 403),
        (ExpiredError, "expired", 403),
        (NotFoundError, "not_found", 404),
        (ConflictError, "conflict", 409),
        (InfrastructureFault, "infrastructure_fault", 500),
    ],
)
def test_failure_result_carries_kind_and_status(exc_cls, kind, status):
    result = OperationResult.failure(exc_cls("boom", detail={"field": "email"}))
    assert result.ok is False
    assert result.error_kind == kind
    assert result.status_code == status
    assert result.to_dict() == {
        "ok": False,
        "errorKind": kind,
        "message": "boom",
        "detail": {"field": "email"},
    }


def test_success_result():
    result = OperationResult.success({"userId": "u1"})
    assert result.status_code == 200
    assert result.to_dict() == {"ok": True, "payload": {"userId": "u1"}}


def test_service_error_overrides():
    exc = ServiceError("gone", status_code=410, error_code="gone")
    assert exc.status_code == 410
    assert exc.error_code == "gone"
    assert exc.detail == {}
    assert OperationResult.failure(exc).status_code == 500


def test_sanitize_strips_dsn_and_credentials():
    message = "could not connect to postgresql://app:hunter2@db:5432/identity password=hunter2"
    sanitized = sanitize_error_message(message)
    assert "hunter2" not in sanitized
    assert "postgresql://" not in sanitized


def test_sanitize_handles_empty():
    assert sanitize_error_message("") == "An error occurred"
