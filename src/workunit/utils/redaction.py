"""Redaction helpers for logged statement parameters and event payloads."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

REDACTED_VALUE = "***"

_SENSITIVE_TOKENS = (
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "private_key",
    "bearer",
    "authorization",
)


def is_sensitive(text: str) -> bool:
    normalized = text.lower()
    return any(token in normalized for token in _SENSITIVE_TOKENS)


def redact_value(value: Any, *, key: str | None = None) -> Any:
    if key is not None and is_sensitive(str(key)):
        return REDACTED_VALUE
    if isinstance(value, Mapping):
        return {k: redact_value(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(item) for item in value)
    if isinstance(value, bytes):
        decoded = value.decode("utf-8", errors="ignore")
        if decoded and is_sensitive(decoded):
            return REDACTED_VALUE
        return value
    if isinstance(value, str) and is_sensitive(value):
        return REDACTED_VALUE
    return value


def redact_params(params: Iterable[Any]) -> list[Any]:
    return [redact_value(value) for value in params]


def redact_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    return {key: redact_value(value, key=key) for key, value in data.items()}
