"""Custom exception types."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from usagewatch.core.outcomes import FetchAttemptOutcome


class UsageWatchError(Exception):
    """Base class for every failure raised by the usage engine."""

    def __init__(self, provider_id: str, message: str = "Usage fetch failed") -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.message = message


class SourceUnavailableError(UsageWatchError):
    """Raised when a source cannot be attempted (no credential, missing binary)."""

    def __init__(self, provider_id: str, message: str = "Source unavailable") -> None:
        super().__init__(provider_id, message)


class FetchTimeoutError(UsageWatchError):
    """Raised when an attempt exceeds its time budget."""

    def __init__(self, provider_id: str, message: str = "Timed out") -> None:
        super().__init__(provider_id, message)


class AuthFailureError(UsageWatchError):
    """Raised when the provider rejects the credential."""

    def __init__(self, provider_id: str, message: str = "Credential rejected") -> None:
        super().__init__(provider_id, message)


class ParseFailureError(UsageWatchError):
    """Raised when a response does not have the expected shape."""

    def __init__(self, provider_id: str, message: str = "Unexpected response shape") -> None:
        super().__init__(provider_id, message)


class AlreadyRunningError(UsageWatchError):
    """Raised when a second web probe is started for a provider."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(provider_id, message="A web probe is already running")


class UnknownAccountError(UsageWatchError):
    """Raised when selecting an account label that is not stored."""

    def __init__(self, provider_id: str, label: str) -> None:
        super().__init__(provider_id, message=f"Unknown account label: {label}")
        self.label = label


class CookieExtractionError(UsageWatchError):
    """Base for browser cookie store failures."""

    def __init__(self, browser: str, message: str) -> None:
        super().__init__(browser, message)
        self.browser = browser


class BrowserNotFoundError(CookieExtractionError):
    def __init__(self, browser: str, message: str = "Browser cookie store not found") -> None:
        super().__init__(browser, message)


class StoreLockedError(CookieExtractionError):
    def __init__(self, browser: str, message: str = "Browser cookie store is locked") -> None:
        super().__init__(browser, message)


class DecryptionFailedError(CookieExtractionError):
    def __init__(self, browser: str, message: str = "Cookie decryption failed") -> None:
        super().__init__(browser, message)


class AllSourcesFailedError(UsageWatchError):
    """Raised when every candidate source of a provider failed."""

    def __init__(self, provider_id: str, outcomes: Sequence["FetchAttemptOutcome"]) -> None:
        self.outcomes = tuple(outcomes)
        summary = "; ".join(outcome.describe() for outcome in self.outcomes)
        super().__init__(provider_id, message=summary or "No sources to try")


class ConfigurationError(UsageWatchError):
    """Raised when a provider is not configured or has no adapter."""

    def __init__(self, provider_id: str, message: str = "Provider not configured") -> None:
        super().__init__(provider_id, message)
