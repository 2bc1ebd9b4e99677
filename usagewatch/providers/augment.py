"""Augment Code credit usage adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, number, parse_timestamp

API_USAGE_URL = "https://api.augmentcode.com/v1/user/usage"
WEB_CREDITS_URL = "https://app.augmentcode.com/api/credits"


class AugmentProvider(ProviderAdapter):
    provider_id = "augment"
    display_name = "Augment"
    dashboard_url = "https://app.augmentcode.com/account"
    sources = (SourceKind.OAUTH, SourceKind.WEB)

    cookie_domain = "app.augmentcode.com"
    cookie_names = ("_session",)
    token_files = (
        "~/.augment/auth.json",
        "~/.config/Code/User/globalStorage/augment.augment-vscode/auth.json",
    )

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        token = data.get("access_token") or data.get("accessToken")
        return Credentials(secret=token, origin="file") if token else None

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        return HttpUsageRequest(url=API_USAGE_URL, headers=bearer(credentials.secret))

    def _web_request(self, credentials: Credentials) -> HttpUsageRequest:
        return HttpUsageRequest(
            url=WEB_CREDITS_URL,
            headers={
                "Cookie": credentials.cookie_header,
                "Accept": "application/json",
                "Origin": "https://app.augmentcode.com",
                "Referer": "https://app.augmentcode.com/account",
            },
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        if source is SourceKind.WEB:
            used = number(data, "usageUnitsUsedThisBillingCycle", "creditsUsed", "used_credits")
            remaining = data.get("usageUnitsAvailable")
            if remaining is not None:
                limit = used + float(remaining)
            else:
                limit = number(data, "creditsTotal", "credit_limit")
        else:
            used = number(data, "used_credits", "usage")
            limit = number(data, "credit_limit", "limit")
        window = RawWindow(
            label="credits",
            used=used,
            limit=limit,
            resets_at=parse_timestamp(data.get("billingPeriodEnd") or data.get("period_end")),
        )
        return RawUsageResponse(
            windows=(window,),
            plan=data.get("plan") or data.get("subscription"),
            account_email=data.get("email"),
        )
