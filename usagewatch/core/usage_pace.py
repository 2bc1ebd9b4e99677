"""Consumption velocity and exhaustion projection over a short sample history."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from usagewatch.core.models import PaceProjection, PaceStage, RateWindowState, UsagePaceSample

DEFAULT_WINDOW_MINUTES = 7 * 24 * 60


def append_sample(
    samples: Sequence[UsagePaceSample],
    sample: UsagePaceSample,
    horizon: timedelta,
) -> tuple[UsagePaceSample, ...]:
    """Return a new series with ``sample`` appended.

    Timestamps must strictly increase; an older or equal timestamp is ignored.
    A drop in usage means the window reset, so the series restarts. Samples
    older than ``horizon`` relative to the newest are evicted.
    """

    series = list(samples)
    if series:
        last = series[-1]
        if sample.timestamp <= last.timestamp:
            return tuple(series)
        if sample.used < last.used:
            series = []
    series.append(sample)
    cutoff = sample.timestamp - horizon
    return tuple(item for item in series if item.timestamp >= cutoff)


def velocity(samples: Sequence[UsagePaceSample]) -> float | None:
    """Used units per second between the earliest and latest sample, or None if unknown."""

    if len(samples) < 2:
        return None
    earliest, latest = samples[0], samples[-1]
    elapsed = (latest.timestamp - earliest.timestamp).total_seconds()
    if elapsed <= 0:
        return None
    return (latest.used - earliest.used) / elapsed


def project_exhaustion(samples: Sequence[UsagePaceSample], limit: float) -> datetime | None:
    rate = velocity(samples)
    if rate is None or rate <= 0:
        return None
    latest = samples[-1]
    remaining = limit - latest.used
    if remaining <= 0:
        return latest.timestamp
    return latest.timestamp + timedelta(seconds=remaining / rate)


def stage_for_delta(delta: float) -> PaceStage:
    magnitude = abs(delta)
    ahead = delta >= 0
    if magnitude <= 2.0:
        return PaceStage.ON_TRACK
    if magnitude <= 6.0:
        return PaceStage.SLIGHTLY_AHEAD if ahead else PaceStage.SLIGHTLY_BEHIND
    if magnitude <= 12.0:
        return PaceStage.AHEAD if ahead else PaceStage.BEHIND
    return PaceStage.FAR_AHEAD if ahead else PaceStage.FAR_BEHIND


def expected_usage(
    window: RateWindowState,
    now: datetime,
    default_window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> tuple[float, PaceStage] | None:
    """Compare actual usage with the share of the window already elapsed.

    Returns ``(expected_percent, stage)`` or None when the window has no reset
    time, already reset, or the figures are inconsistent.
    """

    if window.resets_at is None:
        return None
    minutes = window.window_minutes or default_window_minutes
    if minutes <= 0:
        return None
    duration = minutes * 60.0
    until_reset = (window.resets_at - now).total_seconds()
    if until_reset <= 0 or until_reset > duration:
        return None
    elapsed = min(max(duration - until_reset, 0.0), duration)
    expected = min(max(elapsed / duration * 100.0, 0.0), 100.0)
    actual = window.used_percent
    if elapsed == 0 and actual > 0:
        return None
    return expected, stage_for_delta(actual - expected)


def project(
    window_label: str,
    samples: Sequence[UsagePaceSample],
    limit: float,
    *,
    window: RateWindowState | None = None,
    now: datetime | None = None,
) -> PaceProjection:
    rate = velocity(samples)
    expected_percent: float | None = None
    stage: PaceStage | None = None
    if window is not None and now is not None:
        expectation = expected_usage(window, now)
        if expectation is not None:
            expected_percent, stage = expectation
    return PaceProjection(
        window_label=window_label,
        velocity=rate,
        exhausts_at=project_exhaustion(samples, limit),
        stage=stage,
        expected_percent=expected_percent,
    )


__all__ = [
    "append_sample",
    "expected_usage",
    "project",
    "project_exhaustion",
    "stage_for_delta",
    "velocity",
]
