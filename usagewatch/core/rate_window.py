"""Normalize raw rate-limit figures into rolling window state."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from usagewatch.core.models import Confidence, RateWindowState, RawWindow

logger = logging.getLogger("usagewatch.windows")


def normalize_window(raw: RawWindow) -> RateWindowState:
    """Turn a single raw triple into display state.

    Over-reported usage is clamped to the limit for display and the window is
    marked estimated; ``raw_used`` keeps the reported figure for pace maths.
    """

    raw_used = max(0.0, float(raw.used))
    limit = max(0.0, float(raw.limit))
    used = raw_used
    confidence = raw.confidence
    if limit > 0 and raw_used > limit:
        used = limit
        confidence = Confidence.ESTIMATED
    return RateWindowState(
        label=raw.label,
        used=used,
        raw_used=raw_used,
        limit=limit,
        resets_at=raw.resets_at,
        confidence=confidence,
        window_minutes=raw.window_minutes,
    )


def merge_observation(previous: RateWindowState | None, current: RateWindowState) -> RateWindowState:
    """Keep ``resets_at`` monotonic across polls of the same window.

    A reset time that moves backwards while usage did not drop is jitter from
    the provider and the previous value is kept. A usage drop is a provider-side
    reset and the new value is accepted as is.
    """

    if previous is None or previous.label != current.label:
        return current
    if previous.resets_at is None or current.resets_at is None:
        return current
    if current.resets_at >= previous.resets_at:
        return current
    if current.raw_used < previous.raw_used:
        logger.info(
            "Window reset detected",
            extra={"event": "window_reset", "window": current.label},
        )
        return current
    return current.model_copy(update={"resets_at": previous.resets_at})


def normalize_windows(
    raw_windows: Iterable[RawWindow],
    previous: Sequence[RateWindowState] = (),
) -> tuple[RateWindowState, ...]:
    """Normalize every raw window keeping the adapter's declaration order.

    Overlapping windows (a 5 hour and a weekly figure) stay distinct entries.
    A label repeated inside one response keeps its first occurrence.
    """

    previous_by_label = {item.label: item for item in previous}
    seen: set[str] = set()
    states: list[RateWindowState] = []
    for raw in raw_windows:
        if raw.label in seen:
            continue
        seen.add(raw.label)
        state = normalize_window(raw)
        states.append(merge_observation(previous_by_label.get(raw.label), state))
    return tuple(states)


__all__ = ["merge_observation", "normalize_window", "normalize_windows"]
