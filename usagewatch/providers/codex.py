"""Codex usage adapter backed by the ChatGPT usage endpoint."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.exceptions import ParseFailureError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, parse_timestamp

USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"


def window_label(minutes: int | None, fallback: str) -> str:
    if minutes == 300:
        return "5h"
    if minutes == 10080:
        return "weekly"
    if minutes:
        return f"{minutes // 60}h" if minutes % 60 == 0 else f"{minutes}m"
    return fallback


class CodexProvider(ProviderAdapter):
    provider_id = "codex"
    display_name = "Codex"
    dashboard_url = "https://chatgpt.com/codex/settings/usage"
    sources = (SourceKind.OAUTH,)

    token_env_vars = ("CODEX_ACCESS_TOKEN",)
    token_files = ("~/.codex/auth.json",)

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        tokens = data.get("tokens") or {}
        token = tokens.get("access_token")
        if not token:
            return None
        extra = {}
        if tokens.get("account_id"):
            extra["account_id"] = tokens["account_id"]
        return Credentials(secret=token, extra=extra, origin="file")

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        headers = bearer(credentials.secret)
        account_id = credentials.extra.get("account_id")
        if account_id:
            headers["ChatGPT-Account-Id"] = account_id
        return HttpUsageRequest(url=USAGE_URL, headers=headers)

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        rate_limit = data.get("rate_limit")
        if not isinstance(rate_limit, dict):
            raise ParseFailureError(self.provider_id, "missing rate_limit")

        windows = []
        for key, fallback in (("primary_window", "5h"), ("secondary_window", "weekly")):
            entry = rate_limit.get(key)
            if not isinstance(entry, dict):
                continue
            seconds = entry.get("limit_window_seconds")
            minutes = int(seconds) // 60 if seconds else None
            windows.append(
                RawWindow(
                    label=window_label(minutes, fallback),
                    used=float(entry.get("used_percent", 0)),
                    limit=100.0,
                    resets_at=parse_timestamp(entry.get("reset_at")),
                    window_minutes=minutes,
                )
            )
        if not windows:
            raise ParseFailureError(self.provider_id, "rate_limit has no windows")
        return RawUsageResponse(
            windows=tuple(windows),
            plan=data.get("plan_type"),
            account_email=data.get("email"),
        )
