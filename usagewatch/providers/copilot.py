"""GitHub Copilot usage adapter (internal user endpoint, directly or via ``gh``)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.exceptions import ParseFailureError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import CliUsageRequest, Credentials, HttpUsageRequest, ProviderAdapter
from .utils import parse_timestamp

API_URL = "https://api.github.com/copilot_internal/user"

_EDITOR_HEADERS = {
    "Accept": "application/json",
    "Editor-Version": "vscode/1.96.2",
    "Editor-Plugin-Version": "copilot-chat/0.26.7",
    "User-Agent": "GitHubCopilotChat/0.26.7",
    "X-Github-Api-Version": "2025-04-01",
}

_QUOTAS = (("premium_interactions", "premium"), ("chat", "chat"), ("completions", "completions"))


class CopilotProvider(ProviderAdapter):
    provider_id = "copilot"
    display_name = "GitHub Copilot"
    dashboard_url = "https://github.com/settings/copilot"
    sources = (SourceKind.OAUTH, SourceKind.CLI)

    token_env_vars = ("COPILOT_GITHUB_TOKEN", "GH_TOKEN", "GITHUB_TOKEN")
    token_files = ("~/.config/github-copilot/apps.json", "~/.config/github-copilot/hosts.json")
    cli_binary = "gh"

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        # Both files map "github.com[:app-id]" -> {"oauth_token": ...}
        for key, entry in data.items():
            if key.startswith("github.com") and isinstance(entry, dict) and entry.get("oauth_token"):
                return Credentials(
                    secret=entry["oauth_token"],
                    account_label=entry.get("user"),
                    origin="file",
                )
        return None

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        token = credentials.secret.strip()
        if ":" in token:
            # git credential helpers store "user:token"
            token = token.split(":", 1)[1].strip()
        headers = dict(_EDITOR_HEADERS)
        headers["Authorization"] = f"token {token}"
        return HttpUsageRequest(url=API_URL, headers=headers)

    def _cli_request(self, credentials: Credentials) -> CliUsageRequest:
        return CliUsageRequest(argv=(self.cli_binary, "api", "copilot_internal/user"))

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        snapshots = data.get("quota_snapshots")
        if not isinstance(snapshots, dict):
            raise ParseFailureError(self.provider_id, "missing quota_snapshots")

        resets_at = parse_timestamp(data.get("quota_reset_date"))
        windows = []
        for key, label in _QUOTAS:
            entry = snapshots.get(key)
            if not isinstance(entry, dict) or entry.get("unlimited"):
                continue
            entitlement = float(entry.get("entitlement") or 0)
            if entitlement > 0 and entry.get("remaining") is not None:
                used = entitlement - float(entry["remaining"])
                limit = entitlement
            else:
                used = 100.0 - float(entry.get("percent_remaining", 100.0))
                limit = 100.0
            windows.append(RawWindow(label=label, used=used, limit=limit, resets_at=resets_at))
        if not windows:
            raise ParseFailureError(self.provider_id, "no metered quotas in response")
        return RawUsageResponse(
            windows=tuple(windows),
            plan=data.get("copilot_plan"),
            account_email=data.get("login"),
        )
