"""Redaction helpers for safe logging.

Anything that came from outside (request bodies, headers, gateway
payloads) goes through safe_log_context() before it reaches a log line.
"""

import re
from typing import Any

_REDACTED = "[REDACTED]"

# Values under these keys are dropped whatever they look like
_SENSITIVE_KEY_PARTS = ("signature", "secret", "token", "password", "authorization")

_PATTERNS = (
    # Hex digests first: payment/webhook signatures are credentials
    re.compile(r"\b[0-9a-fA-F]{40,}\b"),
    re.compile(r"\+?\d[\d\s\-()]{8,}\d"),
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
)


def redact_string(value: str) -> str:
    """Mask signatures, phone numbers and e-mail addresses in free text."""
    for pattern in _PATTERNS:
        value = pattern.sub(_REDACTED, value)
    return value


def redact_value(value: Any) -> str:
    """String form of a value that is safe to log.

    Containers are summarized by shape only; unknown types by type name.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return f"dict(keys={list(value)})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a redacted context dict for ``extra={"extra_fields": ...}``."""
    return {
        key: _REDACTED if _is_sensitive(key) and value is not None else redact_value(value)
        for key, value in kwargs.items()
    }


def id_prefix(value: str | None, length: int = 8) -> str | None:
    """First ``length`` characters of an identifier, for correlation in logs."""
    if value is None:
        return None
    return value[:length]
