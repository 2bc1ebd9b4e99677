"""Session-scoped quota tracking and depleted/restored detection."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from usagewatch.core.models import RawSession, SessionQuotaState

DEPLETED_THRESHOLD = 0.0001


class SessionTransition(str, Enum):
    NONE = "none"
    DEPLETED = "depleted"
    RESTORED = "restored"


def is_new_session(raw: RawSession, previous: SessionQuotaState | None) -> bool:
    if previous is None:
        return True
    if raw.session_id and previous.session_id and raw.session_id != previous.session_id:
        return True
    if (
        raw.started_at is not None
        and previous.session_started_at is not None
        and raw.started_at != previous.session_started_at
    ):
        return True
    return raw.used < previous.used


def update_session(
    raw: RawSession | None,
    previous: SessionQuotaState | None,
    observed_at: datetime,
) -> SessionQuotaState | None:
    """Build the session state for this poll.

    The start time is carried forward from ``previous`` unless the provider
    signals a new session.
    """

    if raw is None:
        return None
    if previous is None or is_new_session(raw, previous):
        started_at = raw.started_at or observed_at
    else:
        started_at = previous.session_started_at or raw.started_at
    return SessionQuotaState(
        used=max(0.0, raw.used),
        limit=raw.limit,
        session_started_at=started_at,
        session_id=raw.session_id or (previous.session_id if previous else None),
    )


def is_depleted(remaining: float | None) -> bool:
    return remaining is not None and remaining <= DEPLETED_THRESHOLD


def detect_transition(previous_remaining: float | None, current_remaining: float | None) -> SessionTransition:
    """Compare two remaining-percent readings. Unknown readings never transition."""

    if previous_remaining is None or current_remaining is None:
        return SessionTransition.NONE
    was_depleted = is_depleted(previous_remaining)
    now_depleted = is_depleted(current_remaining)
    if not was_depleted and now_depleted:
        return SessionTransition.DEPLETED
    if was_depleted and not now_depleted:
        return SessionTransition.RESTORED
    return SessionTransition.NONE


__all__ = [
    "DEPLETED_THRESHOLD",
    "SessionTransition",
    "detect_transition",
    "is_depleted",
    "is_new_session",
    "update_session",
]
