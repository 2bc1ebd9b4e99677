"""Amp (Sourcegraph) usage adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.models import RawSession, RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import number, parse_timestamp

USAGE_URL = "https://sourcegraph.com/.api/cody/current-user/usage"


class AmpProvider(ProviderAdapter):
    provider_id = "amp"
    display_name = "Amp"
    dashboard_url = "https://sourcegraph.com/cody/manage"
    sources = (SourceKind.OAUTH,)

    token_env_vars = ("SRC_ACCESS_TOKEN", "AMP_ACCESS_TOKEN")
    token_files = ("~/.amp/config.json", "~/.sourcegraph/config.json")

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        token = data.get("accessToken")
        return Credentials(secret=token, origin="file") if token else None

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        return HttpUsageRequest(
            url=USAGE_URL,
            headers={"Authorization": f"token {credentials.secret}", "Accept": "application/json"},
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        used = number(data, "completionsUsed", "used")
        resets_at = parse_timestamp(data.get("resetAt") or data.get("periodEnd"))
        plan = data.get("plan") or data.get("tier")

        limit = data.get("completionsLimit", data.get("limit"))
        if limit is None:
            # Free-form plans report consumption only.
            session = RawSession(used=used, started_at=parse_timestamp(data.get("periodStart")))
            return RawUsageResponse(session=session, plan=plan)

        window = RawWindow(label="completions", used=used, limit=float(limit), resets_at=resets_at)
        return RawUsageResponse(windows=(window,), plan=plan)
