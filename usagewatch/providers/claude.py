"""Claude usage adapter (OAuth usage endpoint and claude.ai dashboard)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.exceptions import ParseFailureError, SourceUnavailableError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind
from usagewatch.storage.token_accounts import strip_bearer

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, parse_timestamp

OAUTH_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
WEB_USAGE_URL = "https://claude.ai/api/organizations/{org_id}/usage"

# response key -> (window label, window minutes)
_WINDOWS = (
    ("five_hour", "5h", 300),
    ("seven_day", "weekly", 10080),
    ("seven_day_opus", "weekly_opus", 10080),
    ("seven_day_sonnet", "weekly_sonnet", 10080),
)


class ClaudeProvider(ProviderAdapter):
    provider_id = "claude"
    display_name = "Claude"
    dashboard_url = "https://claude.ai/settings/usage"
    sources = (SourceKind.OAUTH, SourceKind.WEB)

    cookie_domain = "claude.ai"
    cookie_names = ("sessionKey", "lastActiveOrg")
    token_env_vars = ("CLAUDE_CODE_OAUTH_TOKEN",)
    token_files = ("~/.claude/.credentials.json",)

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        oauth = data.get("claudeAiOauth") or {}
        token = oauth.get("accessToken")
        if not token:
            return None
        return Credentials(
            secret=token,
            expires_at=parse_timestamp(oauth.get("expiresAt")),
            origin="file",
        )

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        headers = bearer(strip_bearer(credentials.secret))
        headers["anthropic-beta"] = "oauth-2025-04-20"
        return HttpUsageRequest(url=OAUTH_USAGE_URL, headers=headers)

    def _web_request(self, credentials: Credentials) -> HttpUsageRequest:
        org_id = (
            credentials.cookies.get("lastActiveOrg")
            or credentials.extra.get("org_id")
            or self._options.get("org_id")
        )
        if not org_id:
            raise SourceUnavailableError(self.provider_id, "organization id unknown (lastActiveOrg cookie missing)")
        return HttpUsageRequest(
            url=WEB_USAGE_URL.format(org_id=org_id),
            headers={
                "Cookie": credentials.cookie_header,
                "Accept": "application/json",
                "Referer": "https://claude.ai/settings/usage",
            },
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        windows = []
        for key, label, minutes in _WINDOWS:
            entry = data.get(key)
            if not isinstance(entry, dict) or entry.get("utilization") is None:
                continue
            windows.append(
                RawWindow(
                    label=label,
                    used=float(entry["utilization"]),
                    limit=100.0,
                    resets_at=parse_timestamp(entry.get("resets_at")),
                    window_minutes=minutes,
                )
            )
        if not windows:
            raise ParseFailureError(self.provider_id, "no usage windows in response")
        return RawUsageResponse(windows=tuple(windows))
