import json
from datetime import datetime, timezone

from usagewatch.core.config import ProviderSettings
from usagewatch.core.models import SourceKind
from usagewatch.providers.base import CliUsageRequest, Credentials
from usagewatch.providers.copilot import API_URL, CopilotProvider

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PREMIUM_USED = 60.0


def test_copilot_oauth_request_uses_token_scheme():
    adapter = CopilotProvider(ProviderSettings(id="copilot"))

    request = adapter.build_request(SourceKind.OAUTH, Credentials(secret="octocat:gho_abc"))

    assert request.url == API_URL
    assert request.headers["Authorization"] == "token gho_abc"
    assert "Editor-Version" in request.headers


def test_copilot_cli_request_runs_gh():
    adapter = CopilotProvider(ProviderSettings(id="copilot"))

    request = adapter.build_request(SourceKind.CLI, Credentials())

    assert isinstance(request, CliUsageRequest)
    assert request.argv == ("gh", "api", "copilot_internal/user")


def test_copilot_parse_skips_unlimited_quotas():
    adapter = CopilotProvider(ProviderSettings(id="copilot"))
    body = json.dumps(
        {
            "copilot_plan": "individual",
            "login": "octocat",
            "quota_reset_date": "2026-04-01",
            "quota_snapshots": {
                "premium_interactions": {"entitlement": 300, "remaining": 240, "unlimited": False},
                "chat": {"unlimited": True},
                "completions": {"entitlement": 0, "percent_remaining": 100.0, "unlimited": False},
            },
        }
    ).encode()

    raw = adapter.parse_response(SourceKind.OAUTH, body, now=NOW)

    assert [item.label for item in raw.windows] == ["premium", "completions"]
    assert raw.windows[0].used == PREMIUM_USED
    assert raw.windows[0].limit == 300
    assert raw.windows[1].used == 0
    assert raw.account_email == "octocat"


def test_copilot_token_from_hosts_file():
    adapter = CopilotProvider(ProviderSettings(id="copilot"))

    credentials = adapter.token_from_file(
        "hosts.json", {"github.com": {"user": "octocat", "oauth_token": "gho_file"}}
    )

    assert credentials.secret == "gho_file"
    assert credentials.account_label == "octocat"
