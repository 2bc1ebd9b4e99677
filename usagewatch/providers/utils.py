"""Helper utilities for provider adapters."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from usagewatch.core.exceptions import ParseFailureError

_MS_THRESHOLD = 10_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO-8601 strings, epoch seconds or epoch milliseconds."""

    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > _MS_THRESHOLD:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return parse_timestamp(int(text))
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def reset_in(seconds: Any, now: datetime) -> datetime | None:
    if seconds is None:
        return None
    return now + timedelta(seconds=float(seconds))


def number(data: Mapping[str, Any], *keys: str, default: float | None = None) -> float:
    """Return the first numeric value found under ``keys``."""

    for key in keys:
        value = data.get(key)
        if value is None or isinstance(value, bool):
            continue
        return float(value)
    if default is None:
        raise KeyError(keys[0])
    return default


def mapping(data: Mapping[str, Any], key: str, provider_id: str) -> Mapping[str, Any]:
    value = data.get(key)
    if not isinstance(value, Mapping):
        raise ParseFailureError(provider_id, f"missing object '{key}'")
    return value


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


__all__ = ["bearer", "mapping", "number", "parse_timestamp", "reset_in"]
