"""
Logging utilities for the API and its security middleware.

Provides a consistent logging format plus a small helper for emitting
``key=value`` structured entries with sensitive fields scrubbed.
"""

import logging
import sys
from typing import Any

SENSITIVE_FIELDS = frozenset(
    {
        "email",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "user_agent",
        "client_ip",
    }
)
USER_AGENT_MAX_LENGTH = 100

_redact_sensitive = False

audit_logger = logging.getLogger("app.audit")


def configure_logging(level: str = "INFO", *, redact: bool = False) -> None:
    """Configure root logging and whether structured fields are scrubbed."""
    global _redact_sensitive
    _redact_sensitive = redact
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def truncate_user_agent(user_agent: str | None) -> str:
    return (user_agent or "unknown")[:USER_AGENT_MAX_LENGTH]


def sanitize_fields(fields: dict[str, Any], *, redact: bool | None = None) -> dict[str, Any]:
    """Drop sensitive values and shorten user identifiers when redaction is on."""
    if redact is None:
        redact = _redact_sensitive
    if not redact:
        return dict(fields)
    sanitized = {key: value for key, value in fields.items() if key not in SENSITIVE_FIELDS}
    user_id = sanitized.get("user_id")
    if isinstance(user_id, str) and user_id:
        sanitized["user_id"] = f"{user_id[:8]}..."
    return sanitized


def format_fields(fields: dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """Emit ``message | key=value ...`` with sensitive fields scrubbed."""
    if not logger.isEnabledFor(level):
        return
    rendered = format_fields(sanitize_fields(fields))
    if rendered:
        logger.log(level, "%s | %s", message, rendered, exc_info=exc_info)
    else:
        logger.log(level, "%s", message, exc_info=exc_info)


def audit(action: str, *, severity: str = "low", **fields: Any) -> None:
    """Record a security-relevant event on the audit logger."""
    level = logging.WARNING if severity in {"high", "critical"} else logging.INFO
    log_event(audit_logger, level, "Audit event", action=action, severity=severity, **fields)


__all__ = [
    "SENSITIVE_FIELDS",
    "audit",
    "configure_logging",
    "format_fields",
    "log_event",
    "sanitize_fields",
    "truncate_user_agent",
]
