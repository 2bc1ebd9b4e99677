"""Per-source attempt outcomes recorded by the fetch pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from usagewatch.core.models import RawUsageResponse, SourceKind


@dataclass(frozen=True)
class Success:
    source: SourceKind
    raw: RawUsageResponse
    account_label: str | None = None
    label = "success"

    def describe(self) -> str:
        return f"{self.source.value}: ok"


@dataclass(frozen=True)
class SourceUnavailable:
    source: SourceKind
    reason: str
    label = "unavailable"

    def describe(self) -> str:
        return f"{self.source.value}: {self.reason}"


@dataclass(frozen=True)
class Timeout:
    source: SourceKind
    seconds: float
    label = "timeout"

    def describe(self) -> str:
        return f"{self.source.value}: timed out after {self.seconds:g}s"


@dataclass(frozen=True)
class AuthFailure:
    source: SourceKind
    reason: str
    reauth_required: bool = True
    label = "auth_failure"

    def describe(self) -> str:
        return f"{self.source.value}: credential rejected ({self.reason})"


@dataclass(frozen=True)
class ParseFailure:
    source: SourceKind
    reason: str
    label = "parse_failure"

    def describe(self) -> str:
        return f"{self.source.value}: unexpected response ({self.reason})"


@dataclass(frozen=True)
class Cancelled:
    source: SourceKind
    label = "cancelled"

    def describe(self) -> str:
        return f"{self.source.value}: cancelled"


@dataclass(frozen=True)
class AlreadyRunning:
    source: SourceKind
    label = "already_running"

    def describe(self) -> str:
        return f"{self.source.value}: a probe is already running"


FetchAttemptOutcome = Union[
    Success, SourceUnavailable, Timeout, AuthFailure, ParseFailure, Cancelled, AlreadyRunning
]


def outcome_to_dict(outcome: FetchAttemptOutcome) -> dict:
    data = {"source": outcome.source.value, "outcome": outcome.label, "detail": outcome.describe()}
    if isinstance(outcome, AuthFailure):
        data["reauth_required"] = outcome.reauth_required
    return data


__all__ = [
    "AlreadyRunning",
    "AuthFailure",
    "Cancelled",
    "FetchAttemptOutcome",
    "ParseFailure",
    "SourceUnavailable",
    "Success",
    "Timeout",
    "outcome_to_dict",
]
