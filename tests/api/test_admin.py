from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from pydantic import SecretStr

from usagewatch.api import admin
from usagewatch.core.config import AppConfig, ProviderSettings
from usagewatch.providers.registry import ProviderRegistry
from usagewatch.storage.token_accounts import CredentialKind, TokenAccountStore


@pytest.fixture
def store(tmp_path, monkeypatch) -> TokenAccountStore:
    instance = TokenAccountStore(tmp_path / "accounts.json")
    instance.load()
    registry = ProviderRegistry(AppConfig(providers=[ProviderSettings(id="claude")]))
    service = SimpleNamespace(registry=registry, plan=SimpleNamespace(store=instance))
    monkeypatch.setattr(admin, "get_service", lambda: service)
    monkeypatch.setattr(admin, "record_event", lambda *args, **kwargs: None)
    return instance


def test_upsert_then_list_accounts(store):
    admin.upsert_account("claude", admin.AccountPayload(label="work", secret=SecretStr("sk-ant-oat01-abc")))
    admin.upsert_account(
        "claude", admin.AccountPayload(label="browser", secret=SecretStr("sessionKey=sk-ant-sid01-x"))
    )

    result = admin.list_accounts("claude")

    assert result["active"] == "browser"
    kinds = {item["label"]: item["kind"] for item in result["accounts"]}
    assert kinds == {"work": CredentialKind.TOKEN.value, "browser": CredentialKind.COOKIE.value}
    assert all("secret" not in item for item in result["accounts"])


def test_select_and_delete_account(store):
    admin.upsert_account("claude", admin.AccountPayload(label="a", secret=SecretStr("tok-a")))
    admin.upsert_account("claude", admin.AccountPayload(label="b", secret=SecretStr("tok-b")))

    assert admin.select_account("claude", "a") == {"status": "ok", "active": "a"}
    assert store.active_label("claude") == "a"

    admin.delete_account("claude", "a")
    assert admin.list_accounts("claude")["active"] is None


def test_unknown_account_is_404(store):
    with pytest.raises(HTTPException) as excinfo:
        admin.select_account("claude", "missing")

    assert excinfo.value.status_code == 404


def test_unknown_provider_is_404(store):
    with pytest.raises(HTTPException) as excinfo:
        admin.list_accounts("netscape")

    assert excinfo.value.status_code == 404


def test_blank_secret_is_rejected(store):
    with pytest.raises(HTTPException) as excinfo:
        admin.upsert_account("claude", admin.AccountPayload(label="x", secret=SecretStr("  ")))

    assert excinfo.value.status_code == 400


def test_list_events_clamps_limit(monkeypatch, store):
    captured: dict = {}

    def fake_list(limit: int, provider_id: str | None = None):
        captured["limit"] = limit
        return []

    monkeypatch.setattr(admin, "list_recent_events", fake_list)

    assert admin.list_events(limit=1000) == {"events": []}
    assert captured["limit"] == 100
    admin.list_events(limit=0)
    assert captured["limit"] == 1


def test_naive_expiry_is_stored_as_utc(store):
    admin.upsert_account(
        "claude",
        admin.AccountPayload(
            label="work", secret=SecretStr("sk-ant-oat01-abc"), expires_at=datetime(2030, 1, 1)
        ),
    )

    account = admin.list_accounts("claude")["accounts"][0]

    assert account["expired"] is False
    assert datetime.fromisoformat(account["expires_at"]) == datetime(2030, 1, 1, tzinfo=timezone.utc)
