"""OpenCode subscription usage adapter (server function behind the billing page)."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

from usagewatch.core.exceptions import AuthFailureError, ParseFailureError, SourceUnavailableError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter

BASE_URL = "https://opencode.ai"
SERVER_URL = "https://opencode.ai/_server"
SUBSCRIPTION_SERVER_ID = "7abeebee372f304e050aaaf92be863f4a86490e382f8c79db68fd94040d691b4"

_PERCENT_KEYS = ("usagePercent", "usedPercent", "percentUsed", "percent", "utilization")
_RESET_KEYS = ("resetInSec", "resetInSeconds", "resetSeconds", "resetsInSec")
_WINDOWS = (
    ("5h", 300, ("rollingUsage", "rolling", "rolling_usage")),
    ("weekly", 10080, ("weeklyUsage", "weekly", "weekly_usage")),
)
_SIGNED_OUT_MARKERS = ("sign in", "login", "unauthorized")


def _window_values(obj: Any) -> tuple[float, float] | None:
    if not isinstance(obj, dict):
        return None
    percent = None
    for key in _PERCENT_KEYS:
        value = obj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            percent = value * 100.0 if value <= 1.0 else float(value)
            break
    if percent is None:
        used = obj.get("used", obj.get("usage"))
        limit = obj.get("limit", obj.get("total"))
        if isinstance(used, (int, float)) and isinstance(limit, (int, float)) and limit > 0:
            percent = used / limit * 100.0
    if percent is None:
        return None
    reset = next((obj[key] for key in _RESET_KEYS if isinstance(obj.get(key), (int, float))), 0)
    return min(max(percent, 0.0), 100.0), max(float(reset), 0.0)


def _find_window(data: Any, keys: tuple[str, ...]) -> tuple[float, float] | None:
    if isinstance(data, dict):
        for key in keys:
            found = _window_values(data.get(key))
            if found is not None:
                return found
        for value in data.values():
            found = _find_window(value, keys)
            if found is not None:
                return found
    elif isinstance(data, list):
        for value in data:
            found = _find_window(value, keys)
            if found is not None:
                return found
    return None


def _regex_window(text: str, prefix: str) -> tuple[float, float] | None:
    percent = re.search(rf"{prefix}[^}}]*?usagePercent\s*:\s*([0-9]+(?:\.[0-9]+)?)", text)
    if percent is None:
        return None
    reset = re.search(rf"{prefix}[^}}]*?resetInSec\s*:\s*([0-9]+)", text)
    return float(percent.group(1)), float(reset.group(1)) if reset else 0.0


class OpenCodeProvider(ProviderAdapter):
    provider_id = "opencode"
    display_name = "OpenCode"
    dashboard_url = BASE_URL
    sources = (SourceKind.WEB,)

    cookie_domain = "opencode.ai"
    cookie_names = ("auth",)

    def _web_request(self, credentials: Credentials) -> HttpUsageRequest:
        workspace_id = credentials.extra.get("workspace_id") or self._options.get("workspace_id")
        if not workspace_id:
            raise SourceUnavailableError(self.provider_id, "workspace_id not configured")
        args = quote(json.dumps([workspace_id]), safe="")
        return HttpUsageRequest(
            url=f"{SERVER_URL}?id={SUBSCRIPTION_SERVER_ID}&args={args}",
            headers={
                "Cookie": credentials.cookie_header,
                "X-Server-Id": SUBSCRIPTION_SERVER_ID,
                "Origin": BASE_URL,
                "Referer": f"{BASE_URL}/workspace/{workspace_id}/billing",
                "Accept": "text/javascript, application/json;q=0.9, */*;q=0.8",
            },
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        text = body.decode("utf-8", errors="replace")
        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError:
            data = None

        windows = []
        for label, minutes, keys in _WINDOWS:
            found = _find_window(data, keys) if data is not None else None
            if found is None:
                found = _regex_window(text, keys[0])
            if found is None:
                continue
            percent, reset_in = found
            windows.append(
                RawWindow(
                    label=label,
                    used=percent,
                    limit=100.0,
                    resets_at=now + timedelta(seconds=reset_in),
                    window_minutes=minutes,
                )
            )
        if not windows:
            lowered = text.lower()
            if any(marker in lowered for marker in _SIGNED_OUT_MARKERS):
                raise AuthFailureError(self.provider_id, "session signed out")
            raise ParseFailureError(self.provider_id, "no usage windows in subscription payload")
        return RawUsageResponse(windows=tuple(windows), plan="OpenCode")
