"""Synthetic usage adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, number, parse_timestamp

USAGE_URL = "https://api.synthetic.computer/v1/usage"


class SyntheticProvider(ProviderAdapter):
    provider_id = "synthetic"
    display_name = "Synthetic"
    dashboard_url = "https://synthetic.computer/account"
    sources = (SourceKind.OAUTH,)

    token_env_vars = ("SYNTHETIC_API_KEY", "SYNTHETIC_ACCESS_TOKEN")
    token_files = ("~/.config/synthetic/config.json", "~/.config/synthetic/credentials.json")

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        token = data.get("apiKey") or data.get("accessToken") or data.get("token")
        return Credentials(secret=token, origin="file") if token else None

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        return HttpUsageRequest(url=USAGE_URL, headers=bearer(credentials.secret))

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        window = RawWindow(
            label="tokens",
            used=number(data, "usage", "used", "tokensUsed"),
            limit=number(data, "limit", "quota", "tokensLimit"),
            resets_at=parse_timestamp(
                data.get("resetAt") or data.get("periodEnd") or data.get("resetsAt")
            ),
        )
        return RawUsageResponse(
            windows=(window,),
            plan=data.get("plan") or data.get("tier") or data.get("subscription"),
        )
