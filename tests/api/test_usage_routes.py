from datetime import datetime, timezone
from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

import usagewatch.main as app_main
from usagewatch.api import usage
from usagewatch.core.config import AppConfig, ProviderSettings
from usagewatch.core.models import RawWindow, SourceKind, UsageSnapshot
from usagewatch.core.outcomes import AuthFailure
from usagewatch.core.rate_window import normalize_window
from usagewatch.fetch.service import ProviderFailure
from usagewatch.main import app
from usagewatch.providers.registry import ProviderRegistry

FETCHED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot() -> UsageSnapshot:
    return UsageSnapshot(
        provider="claude",
        source=SourceKind.OAUTH,
        windows=(normalize_window(RawWindow(label="5h", used=130, limit=100)),),
        fetched_at=FETCHED_AT,
    )


class _FakeService:
    def __init__(self) -> None:
        config = AppConfig(
            providers=[ProviderSettings(id="claude"), ProviderSettings(id="cursor", enabled=False)]
        )
        self.registry = ProviderRegistry(config)
        self.results = [
            _snapshot(),
            ProviderFailure(
                provider="codex",
                message="all sources failed",
                outcomes=(AuthFailure(SourceKind.OAUTH, "HTTP 401"),),
            ),
        ]

    async def fetch_all(self):
        return self.results

    def latest(self):
        return {item.provider: item for item in self.results}

    async def fetch_provider(self, provider_id):
        return self.results[0]

    def shutdown(self) -> None:
        return None


@pytest.fixture
def client(monkeypatch):
    service = _FakeService()
    monkeypatch.setattr(usage, "get_service", lambda: service)
    monkeypatch.setattr(app_main, "get_service", lambda: service)
    monkeypatch.setattr(app_main, "init_db", lambda *args, **kwargs: None)
    monkeypatch.setattr(app_main, "prune_samples", lambda *args, **kwargs: 0)
    monkeypatch.setattr(app_main, "load_config", lambda: service.registry.config)

    with TestClient(app) as test_client:
        yield test_client


def test_list_usage_serializes_snapshots_and_failures(client):
    response = client.get("/api/usage")

    assert response.status_code == HTTPStatus.OK
    results = response.json()["results"]
    ok, failed = results
    assert ok["status"] == "ok"
    window = ok["windows"][0]
    assert window["used_percent"] == 100.0
    assert window["raw_used"] == 130
    assert window["confidence"] == "estimated"
    assert failed["status"] == "error"
    assert failed["attempts"][0] == {
        "source": "oauth",
        "outcome": "auth_failure",
        "detail": "oauth: credential rejected (HTTP 401)",
        "reauth_required": True,
    }


def test_cached_usage_without_refresh(client):
    response = client.get("/api/usage", params={"refresh": "false"})

    assert len(response.json()["results"]) == 2


def test_provider_usage_unknown_provider(client):
    response = client.get("/api/usage/netscape")

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_provider_usage(client):
    response = client.get("/api/usage/claude")

    assert response.json()["provider"] == "claude"


def test_list_providers_marks_enabled(client):
    response = client.get("/api/providers")

    providers = {item["key"]: item for item in response.json()["providers"]}
    assert providers["claude"]["enabled"] is True
    assert providers["cursor"]["enabled"] is False
    assert providers["cursor"]["sources"] == ["web"]
