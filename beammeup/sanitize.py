"""Redact secrets before values reach logs or the audit table."""

from typing import Any, Mapping

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = (
    "password",
    "token",
    "authkey",
    "apikey",
    "secret",
    "authorization",
    "cookie",
)


def is_sensitive_key(key: str) -> bool:
    """True if a key name looks like it holds a credential."""
    lowered = key.lower().replace("_", "").replace("-", "")
    return any(s in lowered for s in _SENSITIVE_KEYS)


def sanitize_for_logging(value: Any) -> Any:
    """Return a copy of value with sensitive keys replaced by [REDACTED] (recursive)."""
    if isinstance(value, Mapping):
        out = {}
        for key, item in value.items():
            if is_sensitive_key(str(key)):
                out[key] = REDACTED
            else:
                out[key] = sanitize_for_logging(item)
        return out
    if isinstance(value, (list, tuple)):
        return [sanitize_for_logging(item) for item in value]
    return value


def sanitize_headers(headers: Mapping[str, str]) -> dict:
    """Headers with credential-bearing entries redacted (values are not descended into)."""
    return {k: (REDACTED if is_sensitive_key(k) else v) for k, v in headers.items()}
