"""Scrub secret-shaped substrings before they reach logs or error messages."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

_SECRET_KEYS = {
    "access_token",
    "accesstoken",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "id_token",
    "password",
    "refresh_token",
    "secret",
    "session_token",
    "sessionkey",
    "token",
}

_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    # Authorization header values
    (re.compile(r"(?i)\b(bearer|token|basic)\s+[A-Za-z0-9._~+/=-]{8,}"), rf"\1 {REDACTED}"),
    # JSON web tokens
    (re.compile(r"\beyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]*"), REDACTED),
    # Vendor API keys (sk-..., sk-ant-..., ghp_..., gho_...)
    (re.compile(r"\b(?:sk-[A-Za-z0-9_-]{8,}|gh[pousr]_[A-Za-z0-9]{16,})"), REDACTED),
    # key=value / key: value pairs whose key names a secret
    (
        re.compile(
            r"(?i)(\"?(?:[a-z_-]*(?:token|secret|session|auth|password|key|cookie)[a-z_-]*)\"?\s*[:=]\s*\"?)"
            r"([^\s\";,&]{6,})"
        ),
        rf"\1{REDACTED}",
    ),
    # Long opaque strings (hex or base64-ish)
    (re.compile(r"\b[A-Za-z0-9+/_-]{40,}={0,2}"), REDACTED),
)


def redact(text: str) -> str:
    """Return ``text`` with every secret-shaped substring replaced."""

    if not text:
        return text
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_payload(payload: Any, *, max_length: int = 500) -> str:
    """Render an arbitrary payload as a short, redacted excerpt for diagnostics."""

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, (dict, list)):
        payload = _mask_structure(payload)
    compact = " ".join(str(payload).split())
    compact = redact(compact)
    if len(compact) > max_length:
        compact = f"{compact[: max_length - 3]}..."
    return compact


def _mask_structure(value: Any) -> Any:
    if isinstance(value, dict):
        masked: dict[Any, Any] = {}
        for key, item in value.items():
            if isinstance(key, str) and key.replace("-", "_").lower() in _SECRET_KEYS:
                masked[key] = REDACTED
            else:
                masked[key] = _mask_structure(item)
        return masked
    if isinstance(value, list):
        return [_mask_structure(item) for item in value]
    return value


__all__ = ["REDACTED", "redact", "redact_payload"]
