from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A uniqueness or reference constraint on users or refresh tokens failed.

    ``field`` names the violated column (``email``, ``username``,
    ``token_hash`` or ``user_id``) so callers can report which identity
    collided without parsing the message.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.detail = dict(detail or {})
        if field is not None:
            self.detail.setdefault("field", field)


__all__ = ["ConstraintViolation"]
