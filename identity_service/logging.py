from __future__ import annotations

import logging
import os
import re
import uuid
from typing import Any, Dict, Optional

import structlog

# Substrings of event keys whose values never reach the log in clear
_SECRET_KEY_PARTS = ("password", "secret", "token", "authorization")
_CONTACT_KEY_PARTS = ("email",)
# Identifiers for records (token_id, user_id) are safe to log
_SAFE_KEYS = frozenset({"token_id", "user_id", "key_family"})


def get_correlation_id() -> Optional[str]:
    """Correlation id bound to the current context, if any."""
    return structlog.contextvars.get_contextvars().get("correlation_id")


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation id (generated when omitted) to every later log line."""
    cid = correlation_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(correlation_id=cid)
    return cid


def _mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def _redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask secrets entirely and contact details partially."""
    for key, value in list(event_dict.items()):
        lower_key = key.lower()
        if lower_key in _SAFE_KEYS or not isinstance(value, str):
            continue
        if any(part in lower_key for part in _SECRET_KEY_PARTS):
            event_dict[key] = "***"
        elif any(part in lower_key for part in _CONTACT_KEY_PARTS):
            event_dict[key] = _mask_email(value)
    return event_dict


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """(Re)configure structlog for the identity service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, key=value console output otherwise
        development_mode: Colored console output regardless of ``json_output``
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", True),
    development_mode=_env_flag("LOG_DEV_MODE", False),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# Fragments of driver and client errors that must not reach a caller
_INTERNAL_DETAIL_PATTERNS = [
    re.compile(p)
    for p in (
        # DSNs carry hosts and credentials
        r"(?i)\b(?:postgres(?:ql)?|rediss?)://\S+",
        r"(?i)\b(?:password|secret|token|key)\s*[:=]\s*\S+",
        # SQL fragments from psycopg errors
        r"(?i)\b(?:select|insert|update|delete)\b.{0,80}",
        r'(?i)(?:relation|constraint|column) "[^"]+"',
        r"(?i)/(?:home|var|etc|usr|opt|tmp|srv)/\S+",
    )
]


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Strip DSNs, credentials, SQL and filesystem paths from an error message.

    Used before infrastructure error text is placed in a failure result.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"

    result = error
    for pattern in _INTERNAL_DETAIL_PATTERNS:
        result = pattern.sub(replacement, result)
    return result if len(result) <= 300 else result[:297] + "..."
