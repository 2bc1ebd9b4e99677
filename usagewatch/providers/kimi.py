"""Kimi usage adapter (kimi.moonshot.cn session)."""

from __future__ import annotations

from datetime import datetime

from usagewatch.core.exceptions import ParseFailureError, SourceUnavailableError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import number, parse_timestamp

API_BASE = "https://kimi.moonshot.cn"


class KimiProvider(ProviderAdapter):
    provider_id = "kimi"
    display_name = "Kimi"
    dashboard_url = "https://kimi.moonshot.cn"
    sources = (SourceKind.WEB,)

    cookie_domain = "kimi.moonshot.cn"
    cookie_names = ("kimi-auth", "authorization", "access_token")

    def _web_request(self, credentials: Credentials) -> HttpUsageRequest:
        token = next(
            (credentials.cookies[name] for name in self.cookie_names if credentials.cookies.get(name)),
            None,
        )
        if token is None and credentials.secret and "=" not in credentials.secret:
            token = credentials.secret.strip()
        if not token:
            raise SourceUnavailableError(self.provider_id, "kimi-auth cookie missing")
        return HttpUsageRequest(
            url=f"{API_BASE}/api/user",
            headers={
                "Authorization": f"Bearer {token}",
                "Cookie": f"kimi-auth={token}",
                "Accept": "application/json",
            },
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        quota = data.get("quota") or data.get("usage")
        if not isinstance(quota, dict):
            raise ParseFailureError(self.provider_id, "missing quota")

        windows = [
            RawWindow(
                label="5h",
                used=number(quota, "rate_limit_used", "five_hour_used"),
                limit=number(quota, "rate_limit_total", "five_hour_limit"),
                resets_at=parse_timestamp(quota.get("rate_limit_reset_at")),
                window_minutes=300,
            )
        ]
        if quota.get("weekly_limit") is not None or quota.get("week_limit") is not None:
            windows.append(
                RawWindow(
                    label="weekly",
                    used=number(quota, "weekly_used", "week_used", default=0.0),
                    limit=number(quota, "weekly_limit", "week_limit"),
                    resets_at=parse_timestamp(quota.get("weekly_reset_at")),
                    window_minutes=10080,
                )
            )
        return RawUsageResponse(
            windows=tuple(windows),
            plan=data.get("vip_type") or data.get("plan"),
            account_email=data.get("nickname") or data.get("name"),
        )
