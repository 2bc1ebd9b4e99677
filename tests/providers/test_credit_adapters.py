import json
from datetime import datetime, timezone

import pytest

from usagewatch.core.config import ProviderSettings
from usagewatch.core.exceptions import ParseFailureError, SourceUnavailableError
from usagewatch.core.models import SourceKind
from usagewatch.providers.amp import AmpProvider
from usagewatch.providers.augment import AugmentProvider
from usagewatch.providers.base import Credentials
from usagewatch.providers.kimi import KimiProvider
from usagewatch.providers.minimax import MiniMaxProvider
from usagewatch.providers.synthetic import SyntheticProvider
from usagewatch.providers.zai import ZaiProvider

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _body(payload: dict) -> bytes:
    return json.dumps(payload).encode()


def test_zai_parses_monthly_credits():
    adapter = ZaiProvider(ProviderSettings(id="zai"))

    raw = adapter.parse_response(
        SourceKind.OAUTH,
        _body({"used_credits": 12, "credit_limit": 50, "period_end": "2026-04-01T00:00:00Z", "plan": "pro"}),
        now=NOW,
    )

    window = raw.windows[0]
    assert (window.label, window.used, window.limit) == ("monthly", 12, 50)
    assert window.resets_at == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert raw.plan == "pro"


def test_minimax_requires_group_id():
    adapter = MiniMaxProvider(ProviderSettings(id="minimax"))

    with pytest.raises(SourceUnavailableError):
        adapter.build_request(SourceKind.OAUTH, Credentials(secret="key"))

    configured = MiniMaxProvider(ProviderSettings(id="minimax", options={"group_id": 1234}))
    request = configured.build_request(SourceKind.OAUTH, Credentials(secret="key"))
    assert request.params == {"group_id": "1234"}
    assert request.headers["Authorization"] == "Bearer key"


def test_minimax_error_status_is_parse_failure():
    adapter = MiniMaxProvider(ProviderSettings(id="minimax"))

    with pytest.raises(ParseFailureError):
        adapter.parse_response(
            SourceKind.OAUTH, _body({"base_resp": {"status_code": 1004, "status_msg": "auth"}})
        )


def test_kimi_uses_auth_cookie_and_parses_two_windows():
    adapter = KimiProvider(ProviderSettings(id="kimi"))

    request = adapter.build_request(SourceKind.WEB, Credentials(cookies={"kimi-auth": "jwt"}))
    assert request.headers["Authorization"] == "Bearer jwt"

    raw = adapter.parse_response(
        SourceKind.WEB,
        _body(
            {
                "quota": {
                    "rate_limit_used": 3,
                    "rate_limit_total": 20,
                    "weekly_used": 40,
                    "weekly_limit": 200,
                }
            }
        ),
        now=NOW,
    )
    assert [window.label for window in raw.windows] == ["5h", "weekly"]
    assert raw.windows[0].window_minutes == 300


def test_kimi_without_cookie_is_unavailable():
    adapter = KimiProvider(ProviderSettings(id="kimi"))

    with pytest.raises(SourceUnavailableError):
        adapter.build_request(SourceKind.WEB, Credentials())


def test_amp_without_limit_reports_session_only():
    adapter = AmpProvider(ProviderSettings(id="amp"))

    raw = adapter.parse_response(
        SourceKind.OAUTH, _body({"completionsUsed": 17, "periodStart": "2026-03-01T00:00:00Z"})
    )

    assert raw.windows == ()
    assert raw.session is not None
    assert raw.session.used == 17
    assert raw.session.limit is None


def test_amp_with_limit_reports_window():
    adapter = AmpProvider(ProviderSettings(id="amp"))

    request = adapter.build_request(SourceKind.OAUTH, Credentials(secret="sgp_abc"))
    raw = adapter.parse_response(SourceKind.OAUTH, _body({"completionsUsed": 17, "completionsLimit": 500}))

    assert request.headers["Authorization"] == "token sgp_abc"
    assert raw.windows[0].limit == 500


def test_augment_web_limit_is_used_plus_available():
    adapter = AugmentProvider(ProviderSettings(id="augment"))

    raw = adapter.parse_response(
        SourceKind.WEB,
        _body({"usageUnitsUsedThisBillingCycle": 300, "usageUnitsAvailable": 700}),
    )

    assert raw.windows[0].used == 300
    assert raw.windows[0].limit == 1000


def test_synthetic_token_from_file_and_parse():
    adapter = SyntheticProvider(ProviderSettings(id="synthetic"))

    credentials = adapter.token_from_file("config.json", {"apiKey": "syn-key"})
    raw = adapter.parse_response(SourceKind.OAUTH, _body({"usage": 10, "limit": 100, "tier": "free"}))

    assert credentials is not None and credentials.secret == "syn-key"
    assert raw.windows[0].label == "tokens"
    assert raw.plan == "free"


def test_missing_fields_become_parse_failure():
    adapter = SyntheticProvider(ProviderSettings(id="synthetic"))

    with pytest.raises(ParseFailureError):
        adapter.parse_response(SourceKind.OAUTH, _body({"usage": 10}))
