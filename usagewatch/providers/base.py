"""Provider adapter interfaces."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Tuple, Union

from pydantic import BaseModel, ConfigDict

from usagewatch.core.config import ProviderSettings
from usagewatch.core.exceptions import ParseFailureError, SourceUnavailableError
from usagewatch.core.models import ProviderIdentity, RawUsageResponse, SourceKind


class HttpUsageRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    url: str
    headers: Dict[str, str] = {}
    params: Dict[str, str] = {}
    json_body: Dict[str, Any] | None = None

    def __repr_args__(self):
        # Header values carry credentials.
        for name, value in super().__repr_args__():
            if name == "headers":
                yield name, sorted(self.headers)
            else:
                yield name, value


class CliUsageRequest(BaseModel):
    """Either a command to run (``argv``) or a local report file to read (``path``)."""

    model_config = ConfigDict(frozen=True)

    argv: Tuple[str, ...] = ()
    path: str | None = None


UsageRequest = Union[HttpUsageRequest, CliUsageRequest]


@dataclass(frozen=True)
class Credentials:
    """Credential material copied out for a single attempt."""

    secret: str = field(default="", repr=False)
    cookies: Mapping[str, str] = field(default_factory=dict, repr=False)
    extra: Mapping[str, str] = field(default_factory=dict, repr=False)
    account_label: str | None = None
    expires_at: datetime | None = None
    origin: str = "none"

    @property
    def cookie_header(self) -> str:
        if self.cookies:
            return "; ".join(f"{name}={value}" for name, value in self.cookies.items())
        return self.secret


class ProviderAdapter:
    """Abstract provider adapter.

    Adapters only build requests and parse bodies; transport, timeouts and
    credential lookup live in the fetch pipeline.
    """

    provider_id: str
    display_name: str
    icon_key: str | None = None
    dashboard_url: str | None = None
    sources: Tuple[SourceKind, ...] = ()

    # web
    cookie_domain: str | None = None
    cookie_names: Tuple[str, ...] = ()
    # oauth
    token_env_vars: Tuple[str, ...] = ()
    token_files: Tuple[str, ...] = ()
    # cli: a binary to run, or local report files to read
    cli_binary: str | None = None
    report_globs: Tuple[str, ...] = ()

    def __init__(self, settings: ProviderSettings) -> None:
        self._settings = settings
        self._options: Dict[str, Any] = dict(settings.options)

    @property
    def primary_cookie(self) -> str | None:
        return self.cookie_names[0] if self.cookie_names else None

    def identity(self) -> ProviderIdentity:
        return ProviderIdentity(
            key=self.provider_id,
            display_name=self.display_name,
            sources=self.supported_sources(),
            icon_key=self.icon_key or self.provider_id,
            dashboard_url=self.dashboard_url,
        )

    def supported_sources(self) -> Tuple[SourceKind, ...]:
        return tuple(self.sources)

    def build_request(self, source: SourceKind, credentials: Credentials) -> UsageRequest:
        self._require_source(source)
        if source is SourceKind.OAUTH:
            return self._oauth_request(credentials)
        if source is SourceKind.WEB:
            return self._web_request(credentials)
        return self._cli_request(credentials)

    def parse_response(
        self, source: SourceKind, body: bytes, *, now: datetime | None = None
    ) -> RawUsageResponse:
        self._require_source(source)
        try:
            return self._parse(source, body, now or datetime.now(timezone.utc))
        except ParseFailureError:
            raise
        except (KeyError, TypeError, ValueError, IndexError, AttributeError) as exc:
            raise ParseFailureError(
                self.provider_id, f"{type(exc).__name__}: {exc}"
            ) from exc

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        """Pull an access token out of a parsed local credential file."""
        return None

    def _require_source(self, source: SourceKind) -> None:
        if source not in self.supported_sources():
            raise SourceUnavailableError(
                self.provider_id, f"{source.value} is not supported by {self.display_name}"
            )

    def _oauth_request(self, credentials: Credentials) -> UsageRequest:
        raise NotImplementedError

    def _web_request(self, credentials: Credentials) -> UsageRequest:
        raise NotImplementedError

    def _cli_request(self, credentials: Credentials) -> UsageRequest:
        raise NotImplementedError

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        raise NotImplementedError

    def _json(self, body: bytes) -> Dict[str, Any]:
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ParseFailureError(self.provider_id, "response is not JSON") from exc
        if not isinstance(data, dict):
            raise ParseFailureError(self.provider_id, "expected a JSON object")
        return data
