"""Event recording helpers for fetch telemetry."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select

from usagewatch.core.redactor import redact
from usagewatch.logging import get_cycle_id
from usagewatch.storage.database import session_scope
from usagewatch.storage.models import UsageEvent

logger = logging.getLogger("usagewatch.events")

_EVENTS_ENABLED = os.getenv("EVENTS_ENABLED", "true").lower() in {"1", "true", "yes"}


_RETENTION_DAYS = 2  # keep today + yesterday
_MESSAGE_LIMIT = 512


def _current_retention_cutoff() -> datetime:
    """Return the UTC timestamp cutoff for events to retain."""
    now_utc = datetime.now(timezone.utc)
    start_of_today = datetime(now_utc.year, now_utc.month, now_utc.day, tzinfo=timezone.utc)
    return start_of_today - timedelta(days=_RETENTION_DAYS - 1)


def _prune_old_events(session) -> None:
    cutoff = _current_retention_cutoff()
    session.execute(delete(UsageEvent).where(UsageEvent.ts < cutoff))


def record_event(
    kind: str,
    level: str,
    *,
    message: str | None = None,
    cycle_id: str | None = None,
    meta: Dict[str, Any] | None = None,
    **fields: Any,
) -> None:
    """Persist a high-value event for later inspection."""
    if not _EVENTS_ENABLED:
        return

    event = UsageEvent(
        ts=datetime.now(timezone.utc),
        level=level.upper(),
        kind=kind,
        cycle_id=cycle_id or get_cycle_id(),
        message=redact(message)[:_MESSAGE_LIMIT] if message else None,
        provider_id=fields.get("provider_id"),
        source_from=fields.get("source_from"),
        source_to=fields.get("source_to"),
        error_code=fields.get("error_code"),
        meta=json.dumps(meta, ensure_ascii=True, default=str) if meta else None,
    )

    try:
        with session_scope() as session:
            session.add(event)
            _prune_old_events(session)
    except Exception:
        logger.exception(
            "Failed to record event", extra={"event": "event_persist_error", "kind": kind}
        )


def list_recent_events(limit: int = 50, provider_id: str | None = None) -> List[Dict[str, Any]]:
    """Return recent events ordered newest first."""
    if not _EVENTS_ENABLED:
        return []

    cutoff = _current_retention_cutoff()

    with session_scope() as session:
        _prune_old_events(session)

        stmt = select(UsageEvent).where(UsageEvent.ts >= cutoff)
        if provider_id:
            stmt = stmt.where(UsageEvent.provider_id == provider_id)
        stmt = stmt.order_by(UsageEvent.ts.desc()).limit(limit)
        rows = session.scalars(stmt).all()

    events: List[Dict[str, Any]] = []
    for row in rows:
        meta_value: Optional[Dict[str, Any] | str | None]
        if row.meta:
            try:
                meta_value = json.loads(row.meta)
            except json.JSONDecodeError:
                meta_value = row.meta
        else:
            meta_value = None

        events.append(
            {
                "id": row.id,
                "timestamp": row.ts.isoformat() if row.ts else None,
                "level": row.level,
                "kind": row.kind,
                "cycle_id": row.cycle_id,
                "provider_id": row.provider_id,
                "source_from": row.source_from,
                "source_to": row.source_to,
                "error_code": row.error_code,
                "message": row.message,
                "meta": meta_value,
            }
        )
    return events


__all__ = ["list_recent_events", "record_event"]
