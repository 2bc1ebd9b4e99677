"""Zed AI usage adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, number, parse_timestamp

USAGE_URL = "https://api.zed.dev/user/usage"


class ZaiProvider(ProviderAdapter):
    provider_id = "zai"
    display_name = "Zed AI"
    dashboard_url = "https://zed.dev/account"
    sources = (SourceKind.OAUTH,)

    token_env_vars = ("ZED_ACCESS_TOKEN",)
    token_files = ("~/.config/zed/settings.json",)

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        token = data.get("access_token")
        return Credentials(secret=token, origin="file") if token else None

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        return HttpUsageRequest(url=USAGE_URL, headers=bearer(credentials.secret))

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        used = number(data, "used_credits", "usage")
        limit = number(data, "credit_limit", "limit")
        window = RawWindow(
            label="monthly",
            used=used,
            limit=limit,
            resets_at=parse_timestamp(data.get("period_end") or data.get("resets_at")),
        )
        return RawUsageResponse(
            windows=(window,),
            plan=data.get("plan") or data.get("subscription"),
            account_email=data.get("email"),
        )
