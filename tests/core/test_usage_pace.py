from datetime import datetime, timedelta, timezone

import pytest

from usagewatch.core.models import PaceStage, RawWindow, UsagePaceSample
from usagewatch.core.rate_window import normalize_window
from usagewatch.core.usage_pace import (
    append_sample,
    expected_usage,
    project,
    project_exhaustion,
    velocity,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HORIZON = timedelta(hours=6)
EXPECTED_RATE = 0.2


def _at(seconds: float, used: float) -> UsagePaceSample:
    return UsagePaceSample(timestamp=T0 + timedelta(seconds=seconds), used=used)


def test_single_sample_is_unknown():
    samples = (_at(0, 10),)

    assert velocity(samples) is None
    assert project_exhaustion(samples, 100) is None
    assert not project("5h", samples, 100).is_known


def test_two_samples_project_exhaustion():
    samples = (_at(0, 10), _at(100, 30))

    assert velocity(samples) == pytest.approx(EXPECTED_RATE)
    # 70 units left at 0.2/s after t=100
    assert project_exhaustion(samples, 100) == T0 + timedelta(seconds=450)


def test_flat_usage_never_exhausts():
    samples = (_at(0, 10), _at(100, 10))

    assert velocity(samples) == 0
    assert project_exhaustion(samples, 100) is None


def test_at_limit_exhausts_now():
    samples = (_at(0, 10), _at(100, 100))

    assert project_exhaustion(samples, 100) == T0 + timedelta(seconds=100)


def test_append_ignores_non_increasing_timestamps():
    samples = (_at(0, 10), _at(10, 12))

    assert append_sample(samples, _at(10, 20), HORIZON) == samples
    assert append_sample(samples, _at(5, 20), HORIZON) == samples


def test_append_restarts_series_on_usage_drop():
    samples = (_at(0, 50), _at(10, 60))

    assert append_sample(samples, _at(20, 1), HORIZON) == (_at(20, 1),)


def test_append_evicts_samples_outside_horizon():
    samples = (_at(0, 1), _at(3600, 2))
    later = _at(7 * 3600, 3)

    assert append_sample(samples, later, HORIZON) == (_at(3600, 2), later)


def test_expected_usage_stage():
    # Half of a 5 hour window elapsed, 80% used.
    window = normalize_window(
        RawWindow(
            label="5h",
            used=80,
            limit=100,
            resets_at=T0 + timedelta(minutes=150),
            window_minutes=300,
        )
    )

    expected, stage = expected_usage(window, T0)

    assert expected == pytest.approx(50.0)
    assert stage is PaceStage.FAR_AHEAD


def test_expected_usage_unknown_without_reset_time():
    window = normalize_window(RawWindow(label="5h", used=10, limit=100))

    assert expected_usage(window, T0) is None
