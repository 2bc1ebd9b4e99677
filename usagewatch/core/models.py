"""Canonical usage data types shared by adapters, the fetch pipeline and the API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class SourceKind(str, Enum):
    WEB = "web"
    CLI = "cli"
    OAUTH = "oauth"


class SourcePreference(str, Enum):
    AUTO = "auto"
    WEB = "web"
    CLI = "cli"
    OAUTH = "oauth"


class Confidence(str, Enum):
    EXACT = "exact"
    ESTIMATED = "estimated"


class PaceStage(str, Enum):
    ON_TRACK = "on_track"
    SLIGHTLY_AHEAD = "slightly_ahead"
    AHEAD = "ahead"
    FAR_AHEAD = "far_ahead"
    SLIGHTLY_BEHIND = "slightly_behind"
    BEHIND = "behind"
    FAR_BEHIND = "far_behind"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ProviderIdentity(_Frozen):
    key: str
    display_name: str
    sources: tuple[SourceKind, ...]
    icon_key: str
    dashboard_url: str | None = None


class RawWindow(_Frozen):
    label: str
    used: float
    limit: float
    resets_at: datetime | None = None
    confidence: Confidence = Confidence.EXACT
    window_minutes: int | None = None


class RawSession(_Frozen):
    used: float
    limit: float | None = None
    started_at: datetime | None = None
    session_id: str | None = None


class RawUsageResponse(_Frozen):
    """Fields parsed out of one provider response, before normalization."""

    windows: tuple[RawWindow, ...] = ()
    session: RawSession | None = None
    account_email: str | None = None
    plan: str | None = None


class RateWindowState(_Frozen):
    label: str
    used: float
    raw_used: float
    limit: float
    resets_at: datetime | None = None
    confidence: Confidence = Confidence.EXACT
    window_minutes: int | None = None

    @property
    def used_percent(self) -> float:
        if self.limit <= 0:
            return 0.0
        return min(100.0, self.used / self.limit * 100.0)

    @property
    def remaining(self) -> float:
        return max(0.0, self.limit - self.used)


class SessionQuotaState(_Frozen):
    used: float
    limit: float | None = None
    session_started_at: datetime | None = None
    session_id: str | None = None

    @property
    def remaining(self) -> float | None:
        if self.limit is None:
            return None
        return max(0.0, self.limit - self.used)


class UsagePaceSample(_Frozen):
    timestamp: datetime
    used: float


class PaceProjection(_Frozen):
    window_label: str
    velocity: float | None = None
    exhausts_at: datetime | None = None
    stage: PaceStage | None = None
    expected_percent: float | None = None

    @property
    def is_known(self) -> bool:
        return self.velocity is not None


class UsageSnapshot(_Frozen):
    provider: str
    account_label: str | None = None
    source: SourceKind
    windows: tuple[RateWindowState, ...] = ()
    session: SessionQuotaState | None = None
    pace: PaceProjection | None = None
    fetched_at: datetime
    plan: str | None = None
    account_email: str | None = None

    def window(self, label: str) -> RateWindowState | None:
        return next((item for item in self.windows if item.label == label), None)


__all__ = [
    "Confidence",
    "PaceProjection",
    "PaceStage",
    "ProviderIdentity",
    "RateWindowState",
    "RawSession",
    "RawUsageResponse",
    "RawWindow",
    "SessionQuotaState",
    "SourceKind",
    "SourcePreference",
    "UsagePaceSample",
    "UsageSnapshot",
]
