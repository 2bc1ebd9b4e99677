"""Read endpoints for provider usage snapshots."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from usagewatch.core.models import UsageSnapshot
from usagewatch.fetch.service import ProviderFailure, ProviderResult, get_service

router = APIRouter(prefix="/api")


def snapshot_to_dict(snapshot: UsageSnapshot) -> Dict[str, Any]:
    payload = snapshot.model_dump(mode="json")
    for window, data in zip(snapshot.windows, payload["windows"]):
        data["used_percent"] = round(window.used_percent, 2)
        data["remaining"] = window.remaining
    if snapshot.session is not None:
        payload["session"]["remaining"] = snapshot.session.remaining
    return payload


def result_to_dict(result: ProviderResult) -> Dict[str, Any]:
    if isinstance(result, ProviderFailure):
        return {"status": "error", **result.to_dict()}
    return {"status": "ok", **snapshot_to_dict(result)}


@router.get("/providers")
def list_providers() -> dict:
    service = get_service()
    enabled = {settings.id for settings in service.registry.providers()}
    return {
        "providers": [
            {**identity.model_dump(mode="json"), "enabled": identity.key in enabled}
            for identity in service.registry.identities()
        ]
    }


@router.get("/usage")
async def list_usage(refresh: bool = True) -> dict:
    """Refresh every enabled provider, or return the last results when ``refresh`` is false."""
    service = get_service()
    if refresh:
        results = await service.fetch_all()
    else:
        results = list(service.latest().values())
    return {"results": [result_to_dict(item) for item in results]}


@router.get("/usage/{provider_id}")
async def provider_usage(provider_id: str) -> dict:
    service = get_service()
    if provider_id not in service.registry.known_keys():
        raise HTTPException(status_code=404, detail="Unknown provider")
    result = await service.fetch_provider(provider_id)
    return result_to_dict(result)


__all__ = ["result_to_dict", "router", "snapshot_to_dict"]
