"""MiniMax billing usage adapter."""

from __future__ import annotations

from datetime import datetime

from usagewatch.core.exceptions import ParseFailureError, SourceUnavailableError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, number, parse_timestamp

USAGE_URL = "https://api.minimax.chat/v1/billing/usage"


class MiniMaxProvider(ProviderAdapter):
    provider_id = "minimax"
    display_name = "MiniMax"
    dashboard_url = "https://platform.minimaxi.com/user-center"
    sources = (SourceKind.OAUTH,)

    token_env_vars = ("MINIMAX_API_KEY",)

    def _group_id(self, credentials: Credentials) -> str | None:
        return credentials.extra.get("group_id") or self._options.get("group_id")

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        group_id = self._group_id(credentials)
        if not group_id:
            raise SourceUnavailableError(self.provider_id, "group_id not configured")
        return HttpUsageRequest(
            url=USAGE_URL,
            headers=bearer(credentials.secret),
            params={"group_id": str(group_id)},
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        base = data.get("base_resp")
        if isinstance(base, dict) and base.get("status_code", 0) != 0:
            raise ParseFailureError(
                self.provider_id, str(base.get("status_msg") or "provider reported an error")
            )
        window = RawWindow(
            label="credits",
            used=number(data, "used_amount", "total_amount"),
            limit=number(data, "total_quota", "quota"),
            resets_at=parse_timestamp(data.get("reset_time")),
        )
        return RawUsageResponse(windows=(window,), plan=data.get("plan_type") or data.get("type"))
