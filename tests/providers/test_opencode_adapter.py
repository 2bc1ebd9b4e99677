import json
from datetime import datetime, timedelta, timezone

import pytest

from usagewatch.core.config import ProviderSettings
from usagewatch.core.exceptions import AuthFailureError, ParseFailureError, SourceUnavailableError
from usagewatch.core.models import SourceKind
from usagewatch.providers.base import Credentials
from usagewatch.providers.opencode import SUBSCRIPTION_SERVER_ID, OpenCodeProvider

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
ROLLING_USED = 42.0
WEEKLY_USED = 7.5


@pytest.fixture
def adapter() -> OpenCodeProvider:
    return OpenCodeProvider(ProviderSettings(id="opencode", options={"workspace_id": "wrk_1"}))


def test_request_targets_subscription_server_function(adapter):
    request = adapter.build_request(SourceKind.WEB, Credentials(cookies={"auth": "abc"}))

    assert SUBSCRIPTION_SERVER_ID in request.url
    assert "wrk_1" in request.url
    assert request.headers["Cookie"] == "auth=abc"


def test_request_requires_workspace():
    adapter = OpenCodeProvider(ProviderSettings(id="opencode"))

    with pytest.raises(SourceUnavailableError):
        adapter.build_request(SourceKind.WEB, Credentials(cookies={"auth": "abc"}))


def test_parse_nested_json(adapter):
    body = json.dumps(
        {
            "result": {
                "rollingUsage": {"usagePercent": ROLLING_USED, "resetInSec": 3600},
                "weeklyUsage": {"usagePercent": 0.075, "resetInSec": 86400},
            }
        }
    ).encode()

    raw = adapter.parse_response(SourceKind.WEB, body, now=NOW)

    assert [item.label for item in raw.windows] == ["5h", "weekly"]
    assert raw.windows[0].used == ROLLING_USED
    assert raw.windows[0].resets_at == NOW + timedelta(hours=1)
    assert raw.windows[1].used == pytest.approx(WEEKLY_USED)


def test_parse_serialized_javascript_fallback(adapter):
    body = b'$R[0]={rollingUsage:{usagePercent:12,resetInSec:60},weeklyUsage:{usagePercent:3}}'

    raw = adapter.parse_response(SourceKind.WEB, body, now=NOW)

    assert raw.windows[0].used == 12
    assert raw.windows[0].resets_at == NOW + timedelta(seconds=60)
    assert raw.windows[1].resets_at == NOW


def test_signed_out_page_is_auth_failure(adapter):
    with pytest.raises(AuthFailureError):
        adapter.parse_response(SourceKind.WEB, b"<html>Please sign in</html>", now=NOW)


def test_unknown_payload_is_parse_failure(adapter):
    with pytest.raises(ParseFailureError):
        adapter.parse_response(SourceKind.WEB, b'{"status": "ok"}', now=NOW)
