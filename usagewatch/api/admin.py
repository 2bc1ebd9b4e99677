"""Admin endpoints for stored accounts and recent events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, SecretStr

from usagewatch.core.exceptions import UnknownAccountError
from usagewatch.fetch.service import get_service
from usagewatch.storage.token_accounts import CredentialKind, CredentialRecord, infer_kind
from usagewatch.telemetry.events import list_recent_events, record_event

router = APIRouter(prefix="/admin")


class AccountPayload(BaseModel):
    label: str
    secret: SecretStr
    kind: CredentialKind | None = None
    expires_at: datetime | None = None


def _require_provider(provider_id: str) -> None:
    if provider_id not in get_service().registry.known_keys():
        raise HTTPException(status_code=404, detail="Unknown provider")


def _account_view(record: CredentialRecord, active_label: str | None) -> dict:
    return {
        "label": record.label,
        "kind": record.kind.value,
        "obtained_at": record.obtained_at.isoformat(),
        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        "expired": record.is_expired(),
        "active": record.label == active_label,
    }


@router.get("/accounts/{provider_id}")
def list_accounts(provider_id: str) -> dict:
    _require_provider(provider_id)
    store = get_service().plan.store
    active_label = store.active_label(provider_id)
    return {
        "provider": provider_id,
        "active": active_label,
        "accounts": [_account_view(item, active_label) for item in store.records(provider_id)],
    }


@router.post("/accounts/{provider_id}")
def upsert_account(provider_id: str, payload: Annotated[AccountPayload, Body()]) -> dict:
    _require_provider(provider_id)
    label = payload.label.strip()
    secret = payload.secret.get_secret_value().strip()
    if not label or not secret:
        raise HTTPException(status_code=400, detail="Missing label or secret")

    record = CredentialRecord(
        provider=provider_id,
        label=label,
        kind=payload.kind or infer_kind(secret),
        secret=SecretStr(secret),
        obtained_at=datetime.now(timezone.utc),
        expires_at=payload.expires_at,
    )
    get_service().plan.store.upsert(record)
    record_event(
        "account_saved",
        "INFO",
        provider_id=provider_id,
        message=f"Account '{label}' saved via admin",
        meta={"kind": record.kind.value},
    )
    return {"status": "ok"}


@router.delete("/accounts/{provider_id}/{label}")
def delete_account(provider_id: str, label: str) -> dict:
    _require_provider(provider_id)
    try:
        get_service().plan.store.remove(provider_id, label)
    except UnknownAccountError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    record_event(
        "account_removed",
        "INFO",
        provider_id=provider_id,
        message=f"Account '{label}' removed via admin",
    )
    return {"status": "ok"}


@router.post("/accounts/{provider_id}/{label}/select")
def select_account(provider_id: str, label: str) -> dict:
    _require_provider(provider_id)
    try:
        get_service().plan.store.select_active(provider_id, label)
    except UnknownAccountError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"status": "ok", "active": label}


@router.get("/events")
def list_events(limit: int = 25, provider_id: str | None = None) -> dict:
    """Return recent fetch events, newest first."""
    limit_value = max(1, min(limit, 100))
    events = list_recent_events(limit=limit_value, provider_id=provider_id)
    return {"events": events}
