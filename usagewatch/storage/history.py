"""Persistence of pace samples per (provider, window label)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Tuple

from sqlalchemy import delete, select

from usagewatch.core.models import UsagePaceSample
from usagewatch.core.usage_pace import append_sample
from usagewatch.storage.database import session_scope
from usagewatch.storage.models import PaceSampleRow

logger = logging.getLogger("usagewatch.history")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def load_samples(provider_id: str, window_label: str) -> Tuple[UsagePaceSample, ...]:
    with session_scope() as session:
        return _load(session, provider_id, window_label)


def _load(session, provider_id: str, window_label: str) -> Tuple[UsagePaceSample, ...]:
    stmt = (
        select(PaceSampleRow)
        .where(PaceSampleRow.provider_id == provider_id)
        .where(PaceSampleRow.window_label == window_label)
        .order_by(PaceSampleRow.ts)
    )
    return tuple(
        UsagePaceSample(timestamp=_aware(row.ts), used=row.used)
        for row in session.scalars(stmt).all()
    )


def record_sample(
    provider_id: str,
    window_label: str,
    sample: UsagePaceSample,
    horizon: timedelta,
) -> Tuple[UsagePaceSample, ...]:
    """Append ``sample`` to the stored series and return the retained series."""

    with session_scope() as session:
        existing = _load(session, provider_id, window_label)
        updated = append_sample(existing, sample, horizon)
        if updated == existing:
            return updated
        session.execute(
            delete(PaceSampleRow)
            .where(PaceSampleRow.provider_id == provider_id)
            .where(PaceSampleRow.window_label == window_label)
            .where(PaceSampleRow.ts < updated[0].timestamp)
        )
        session.add(
            PaceSampleRow(
                provider_id=provider_id,
                window_label=window_label,
                ts=sample.timestamp,
                used=sample.used,
            )
        )
    if existing and sample.used < existing[-1].used:
        logger.info(
            "Pace series restarted",
            extra={"event": "pace_restart", "provider": provider_id, "window": window_label},
        )
    return updated


def prune_samples(horizon: timedelta, now: datetime | None = None) -> int:
    """Drop samples older than ``horizon`` across every series."""
    cutoff = (now or datetime.now(timezone.utc)) - horizon
    with session_scope() as session:
        result = session.execute(delete(PaceSampleRow).where(PaceSampleRow.ts < cutoff))
        return result.rowcount or 0


__all__ = ["load_samples", "prune_samples", "record_sample"]
