import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from pydantic import SecretStr

from usagewatch.browser.cookies import CookieBundle
from usagewatch.core.config import FetchSettings, ProviderSettings
from usagewatch.core.exceptions import AllSourcesFailedError, BrowserNotFoundError, StoreLockedError
from usagewatch.core.models import SourceKind, SourcePreference
from usagewatch.core.outcomes import AuthFailure, Cancelled, ParseFailure, SourceUnavailable, Timeout
from usagewatch.fetch import plan as plan_module
from usagewatch.fetch import transport
from usagewatch.fetch.plan import FetchPlan, candidate_sources
from usagewatch.providers.claude import ClaudeProvider
from usagewatch.providers.codex import CodexProvider
from usagewatch.providers.copilot import CopilotProvider
from usagewatch.providers.cursor import CursorProvider
from usagewatch.storage.token_accounts import CredentialKind, CredentialRecord, TokenAccountStore

WEB_TIMEOUT = 0.2
CLAUDE_USAGE = {
    "five_hour": {"utilization": 20, "resets_at": "2099-01-01T00:00:00Z"},
    "seven_day": {"utilization": 5},
}
CURSOR_USAGE = {
    "billingCycleEnd": "2099-01-01T00:00:00Z",
    "individualUsage": {"plan": {"totalPercentUsed": 30}},
}


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("CLAUDE_CODE_OAUTH_TOKEN", "CODEX_ACCESS_TOKEN", "COPILOT_GITHUB_TOKEN", "GH_TOKEN", "GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def events(monkeypatch) -> list:
    captured: list[tuple[str, str, dict]] = []

    def capture_event(kind: str, level: str, **fields) -> None:
        captured.append((kind, level, fields))

    monkeypatch.setattr(plan_module, "record_event", capture_event)
    return captured


@pytest.fixture
def store(tmp_path) -> TokenAccountStore:
    instance = TokenAccountStore(tmp_path / "accounts.json")
    instance.load()
    return instance


def _settings(**overrides) -> FetchSettings:
    values = {
        "web_timeout": WEB_TIMEOUT,
        "oauth_timeout": 2.0,
        "cli_timeout": 2.0,
        "cookie_retry_backoff": 0,
        "browsers": ["chrome"],
    }
    values.update(overrides)
    return FetchSettings(**values)


def _recorder(calls: list):
    def record(provider_id, label, sample, horizon):
        calls.append((provider_id, label, sample))
        return (sample,)

    return record


def _plan(store, handler, *, extractor=None, settings=None, samples=None) -> FetchPlan:
    def no_browser(browser, domain, names):
        raise BrowserNotFoundError(browser)

    return FetchPlan(
        store,
        settings or _settings(),
        cookie_extractor=extractor or no_browser,
        http_transport=httpx.MockTransport(handler),
        sample_recorder=_recorder(samples if samples is not None else []),
    )


def _json_response(payload: dict, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(payload).encode())


def test_candidate_sources_auto_order_and_explicit_choice():
    claude = ClaudeProvider(ProviderSettings(id="claude"))
    copilot = CopilotProvider(ProviderSettings(id="copilot"))

    assert candidate_sources(claude) == [SourceKind.OAUTH, SourceKind.WEB]
    assert candidate_sources(copilot) == [SourceKind.OAUTH, SourceKind.CLI]
    assert candidate_sources(claude, SourcePreference.CLI) == [SourceKind.CLI]


@pytest.mark.asyncio
async def test_auto_falls_back_from_rejected_oauth_to_web(monkeypatch, store, events):
    monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "sk-ant-oat01-expiredtoken")
    seen_hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_hosts.append(request.url.host)
        if request.url.host == "api.anthropic.com":
            return httpx.Response(401)
        assert request.url.path == "/api/organizations/org-7/usage"
        return _json_response(CLAUDE_USAGE)

    def extractor(browser, domain, names):
        return CookieBundle(browser, domain, {"sessionKey": "sk-ant-sid01-x", "lastActiveOrg": "org-7"})

    samples: list = []
    fetch_plan = _plan(store, handler, extractor=extractor, samples=samples)

    snapshot = await fetch_plan.fetch(ClaudeProvider(ProviderSettings(id="claude")))

    assert snapshot.source is SourceKind.WEB
    assert [item.label for item in snapshot.windows] == ["5h", "weekly"]
    assert seen_hosts == ["api.anthropic.com", "claude.ai"]
    kinds = [item[0] for item in events]
    assert kinds == ["source_failed", "source_switched"]
    assert events[0][2]["error_code"] == "auth_failure"
    assert events[1][2]["source_to"] == "web"
    assert samples[0][:2] == ("claude", "5h")
    assert snapshot.pace is not None
    assert not snapshot.pace.is_known


@pytest.mark.asyncio
async def test_explicit_cli_without_binary_fails_immediately(monkeypatch, store, events):
    monkeypatch.setattr(transport, "which", lambda binary: None)

    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("no HTTP expected")

    fetch_plan = _plan(store, handler)

    with pytest.raises(AllSourcesFailedError) as excinfo:
        await fetch_plan.fetch(
            CopilotProvider(ProviderSettings(id="copilot")), SourcePreference.CLI
        )

    outcomes = excinfo.value.outcomes
    assert len(outcomes) == 1
    assert isinstance(outcomes[0], SourceUnavailable)
    assert outcomes[0].reason == "cli binary not found"
    assert [item[0] for item in events] == ["source_failed", "provider_exhausted"]


@pytest.mark.asyncio
async def test_explicit_unsupported_source_does_not_switch(store, events):
    fetch_plan = _plan(store, lambda request: httpx.Response(500))

    with pytest.raises(AllSourcesFailedError) as excinfo:
        await fetch_plan.fetch(ClaudeProvider(ProviderSettings(id="claude")), SourcePreference.CLI)

    assert [item.source for item in excinfo.value.outcomes] == [SourceKind.CLI]
    assert isinstance(excinfo.value.outcomes[0], SourceUnavailable)


@pytest.mark.asyncio
async def test_stored_cookie_account_is_used_for_web(store, events):
    store.upsert(
        CredentialRecord(
            provider="cursor",
            label="work",
            kind=CredentialKind.COOKIE,
            secret=SecretStr("user%3A%3Asession"),
            obtained_at=datetime.now(timezone.utc),
        )
    )
    cookies_seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        cookies_seen.append(request.headers["Cookie"])
        return _json_response(CURSOR_USAGE)

    snapshot = await _plan(store, handler).fetch(CursorProvider(ProviderSettings(id="cursor")))

    assert snapshot.account_label == "work"
    assert cookies_seen == ["WorkosCursorSessionToken=user%3A%3Asession"]


@pytest.mark.asyncio
async def test_expired_stored_token_is_auth_failure(store, events):
    store.upsert(
        CredentialRecord(
            provider="codex",
            label="personal",
            kind=CredentialKind.TOKEN,
            secret=SecretStr("eyJ.token"),
            obtained_at=datetime.now(timezone.utc) - timedelta(days=2),
            expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
    )

    with pytest.raises(AllSourcesFailedError) as excinfo:
        await _plan(store, lambda request: httpx.Response(200)).fetch(
            CodexProvider(ProviderSettings(id="codex"))
        )

    outcome = excinfo.value.outcomes[0]
    assert isinstance(outcome, AuthFailure)
    assert outcome.reauth_required


@pytest.mark.asyncio
async def test_unexpected_shape_is_parse_failure(monkeypatch, store, events):
    monkeypatch.setenv("CODEX_ACCESS_TOKEN", "eyJ.token")

    with pytest.raises(AllSourcesFailedError) as excinfo:
        await _plan(store, lambda request: _json_response({"unexpected": True})).fetch(
            CodexProvider(ProviderSettings(id="codex"))
        )

    assert isinstance(excinfo.value.outcomes[0], ParseFailure)


@pytest.mark.asyncio
async def test_locked_cookie_store_is_retried_once(store, events):
    calls: list[str] = []

    def extractor(browser, domain, names):
        calls.append(browser)
        if len(calls) == 1:
            raise StoreLockedError(browser)
        return CookieBundle(browser, domain, {"WorkosCursorSessionToken": "tok"})

    snapshot = await _plan(
        store, lambda request: _json_response(CURSOR_USAGE), extractor=extractor
    ).fetch(CursorProvider(ProviderSettings(id="cursor")))

    assert calls == ["chrome", "chrome"]
    assert snapshot.source is SourceKind.WEB


@pytest.mark.asyncio
async def test_browser_cookies_are_cleared_after_attempt(store, events):
    bundles: list[CookieBundle] = []

    def extractor(browser, domain, names):
        bundle = CookieBundle(browser, domain, {"WorkosCursorSessionToken": "tok"})
        bundles.append(bundle)
        return bundle

    await _plan(store, lambda request: _json_response(CURSOR_USAGE), extractor=extractor).fetch(
        CursorProvider(ProviderSettings(id="cursor"))
    )

    assert bundles and not bundles[0]


@pytest.mark.asyncio
async def test_hanging_web_probe_times_out(store, events):
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200)  # pragma: no cover

    def extractor(browser, domain, names):
        return CookieBundle(browser, domain, {"WorkosCursorSessionToken": "tok"})

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(AllSourcesFailedError) as excinfo:
        await _plan(store, handler, extractor=extractor).fetch(
            CursorProvider(ProviderSettings(id="cursor"))
        )
    elapsed = loop.time() - started

    assert isinstance(excinfo.value.outcomes[0], Timeout)
    assert elapsed < WEB_TIMEOUT * 2 + 0.5


@pytest.mark.asyncio
async def test_previous_snapshot_keeps_reset_time_monotonic(monkeypatch, store, events):
    monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "sk-ant-oat01-token")
    payloads = [
        {"five_hour": {"utilization": 20, "resets_at": "2099-01-01T05:00:00Z"}},
        {"five_hour": {"utilization": 25, "resets_at": "2099-01-01T04:59:00Z"}},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return _json_response(payloads.pop(0))

    fetch_plan = _plan(store, handler)
    adapter = ClaudeProvider(ProviderSettings(id="claude"))

    first = await fetch_plan.fetch(adapter)
    second = await fetch_plan.fetch(adapter, previous=first)

    assert second.source is SourceKind.OAUTH
    assert second.windows[0].resets_at == first.windows[0].resets_at
    assert second.windows[0].used == 25


@pytest.mark.asyncio
async def test_unexpected_error_in_oauth_falls_back_to_web(monkeypatch, store, events):
    monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "sk-ant-oat01-token")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.anthropic.com":
            raise RuntimeError("boom")
        return _json_response(CLAUDE_USAGE)

    def extractor(browser, domain, names):
        return CookieBundle(browser, domain, {"sessionKey": "sk-ant-sid01-x", "lastActiveOrg": "org-7"})

    snapshot = await _plan(store, handler, extractor=extractor).fetch(
        ClaudeProvider(ProviderSettings(id="claude"))
    )

    assert snapshot.source is SourceKind.WEB
    assert events[0][2]["error_code"] == "unavailable"


@pytest.mark.asyncio
async def test_unexpected_error_in_web_probe_is_a_typed_outcome(store, events):
    def extractor(browser, domain, names):
        return CookieBundle(browser, domain, {"WorkosCursorSessionToken": "vü"})

    with pytest.raises(AllSourcesFailedError) as excinfo:
        await _plan(store, lambda request: _json_response(CURSOR_USAGE), extractor=extractor).fetch(
            CursorProvider(ProviderSettings(id="cursor"))
        )

    outcome = excinfo.value.outcomes[0]
    assert isinstance(outcome, SourceUnavailable)
    assert outcome.reason == "unexpected error: UnicodeEncodeError"


@pytest.mark.asyncio
async def test_naive_stored_expiry_still_allows_fallback(store, events):
    store.upsert(
        CredentialRecord(
            provider="claude",
            label="work",
            kind=CredentialKind.TOKEN,
            secret=SecretStr("sk-ant-oat01-stored"),
            obtained_at=datetime(2026, 1, 1),
            expires_at=datetime(2099, 1, 1),
        )
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.anthropic.com":
            return httpx.Response(401)
        return _json_response(CLAUDE_USAGE)

    def extractor(browser, domain, names):
        return CookieBundle(browser, domain, {"sessionKey": "sk-ant-sid01-x", "lastActiveOrg": "org-7"})

    snapshot = await _plan(store, handler, extractor=extractor).fetch(
        ClaudeProvider(ProviderSettings(id="claude"))
    )

    assert snapshot.source is SourceKind.WEB
    assert events[0][2]["error_code"] == "auth_failure"


@pytest.mark.asyncio
async def test_shutdown_cancels_inflight_oauth_attempt(monkeypatch, store, events):
    monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "sk-ant-oat01-token")

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200)  # pragma: no cover

    fetch_plan = _plan(store, handler)
    loop = asyncio.get_running_loop()
    loop.call_later(0.1, fetch_plan.shutdown)
    started = loop.time()

    with pytest.raises(AllSourcesFailedError) as excinfo:
        await fetch_plan.fetch(ClaudeProvider(ProviderSettings(id="claude")))
    elapsed = loop.time() - started

    assert [type(item) for item in excinfo.value.outcomes] == [Cancelled]
    assert elapsed < 1.0
