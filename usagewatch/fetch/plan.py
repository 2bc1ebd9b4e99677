"""Ordered source fallback for a single provider fetch."""

from __future__ import annotations

import asyncio
import glob
import json
import logging
import os
import pathlib
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Sequence, Tuple

import httpx

from usagewatch.browser.cookies import CookieBundle, extract
from usagewatch.core.config import FetchSettings
from usagewatch.core.exceptions import (
    AllSourcesFailedError,
    AlreadyRunningError,
    AuthFailureError,
    CookieExtractionError,
    FetchTimeoutError,
    ParseFailureError,
    SourceUnavailableError,
    StoreLockedError,
)
from usagewatch.core.models import (
    RawUsageResponse,
    SourceKind,
    SourcePreference,
    UsagePaceSample,
    UsageSnapshot,
)
from usagewatch.core.outcomes import (
    AlreadyRunning,
    AuthFailure,
    Cancelled,
    FetchAttemptOutcome,
    ParseFailure,
    SourceUnavailable,
    Success,
    Timeout,
)
from usagewatch.core.rate_window import normalize_windows
from usagewatch.core.redactor import redact_payload
from usagewatch.core.session_quota import SessionTransition, detect_transition, update_session
from usagewatch.core.usage_pace import project
from usagewatch.fetch import transport
from usagewatch.fetch.watchdog import ProbeContext, ProbeState, WebProbeWatchdog
from usagewatch.providers.base import (
    CliUsageRequest,
    Credentials,
    ProviderAdapter,
    UsageRequest,
)
from usagewatch.storage import history
from usagewatch.storage.token_accounts import (
    CredentialKind,
    TokenAccountStore,
    normalize_cookie_header,
    strip_bearer,
)
from usagewatch.telemetry.events import record_event

logger = logging.getLogger("usagewatch.fetch")

# Auto mode tries the cheapest, most reliable source first.
AUTO_PRIORITY: Tuple[SourceKind, ...] = (SourceKind.OAUTH, SourceKind.CLI, SourceKind.WEB)

CookieExtractor = Callable[[str, str, Sequence[str]], CookieBundle]
SampleRecorder = Callable[[str, str, UsagePaceSample, timedelta], Tuple[UsagePaceSample, ...]]


class _Shutdown(Exception):
    pass


def candidate_sources(
    adapter: ProviderAdapter, preference: SourcePreference = SourcePreference.AUTO
) -> List[SourceKind]:
    """Sources to attempt, in order.

    An explicit preference yields exactly that source even when the adapter
    does not support it, so the attempt reports why instead of silently
    switching.
    """
    if preference is SourcePreference.AUTO:
        supported = adapter.supported_sources()
        return [source for source in AUTO_PRIORITY if source in supported]
    return [SourceKind(preference.value)]


def parse_cookie_header(header: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for part in header.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name:
            cookies[name.strip()] = value.strip()
    return cookies


def _consume(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class FetchPlan:
    """Resolve credentials, run each candidate source, and build the snapshot."""

    def __init__(
        self,
        store: TokenAccountStore,
        settings: FetchSettings | None = None,
        *,
        watchdog: WebProbeWatchdog | None = None,
        cookie_extractor: CookieExtractor = extract,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sample_recorder: SampleRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or FetchSettings()
        self._watchdog = watchdog or WebProbeWatchdog(self._settings.watchdog_ceiling_factor)
        self._extract = cookie_extractor
        self._http_transport = http_transport
        self._record_sample = sample_recorder or history.record_sample
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def store(self) -> TokenAccountStore:
        return self._store

    @property
    def watchdog(self) -> WebProbeWatchdog:
        return self._watchdog

    def shutdown(self) -> None:
        self._watchdog.shutdown()

    async def fetch(
        self,
        adapter: ProviderAdapter,
        preference: SourcePreference = SourcePreference.AUTO,
        *,
        account: str | None = None,
        web_timeout: float | None = None,
        previous: UsageSnapshot | None = None,
    ) -> UsageSnapshot:
        """Try each candidate source until one succeeds.

        Raises :class:`AllSourcesFailedError` carrying one outcome per
        attempted source when none does.
        """
        provider_id = adapter.provider_id
        outcomes: List[FetchAttemptOutcome] = []
        for source in candidate_sources(adapter, preference):
            if outcomes:
                self._report_switch(provider_id, outcomes[-1], source)
            outcome = await self._attempt(adapter, source, account, web_timeout)
            if isinstance(outcome, Success):
                return self._build_snapshot(adapter, outcome, previous)
            self._report_failure(provider_id, outcome)
            outcomes.append(outcome)
            if isinstance(outcome, Cancelled):
                break

        error = AllSourcesFailedError(provider_id, outcomes)
        logger.error(
            "All sources failed",
            extra={
                "event": "provider_exhausted",
                "provider": provider_id,
                "outcomes": [item.label for item in outcomes],
            },
        )
        record_event(
            "provider_exhausted",
            "ERROR",
            provider_id=provider_id,
            message=error.message,
            meta={"attempts": [item.describe() for item in outcomes]},
        )
        raise error

    async def _attempt(
        self,
        adapter: ProviderAdapter,
        source: SourceKind,
        account: str | None,
        web_timeout: float | None,
    ) -> FetchAttemptOutcome:
        timeout = self._timeout_for(source, web_timeout)
        try:
            if source not in adapter.supported_sources():
                raise SourceUnavailableError(
                    adapter.provider_id, f"{source.value} is not supported by {adapter.display_name}"
                )
            if source is SourceKind.WEB:
                return await self._attempt_web(adapter, account, timeout)

            credentials = await self._resolve(adapter, source, account)
            request = adapter.build_request(source, credentials)
            body = await self._bounded(
                adapter.provider_id, self._execute(adapter.provider_id, request, timeout), timeout
            )
            raw = self._parse(adapter, source, body)
            return Success(source, raw, credentials.account_label)
        except SourceUnavailableError as exc:
            return SourceUnavailable(source, exc.message)
        except CookieExtractionError as exc:
            return SourceUnavailable(source, exc.message)
        except AuthFailureError as exc:
            return AuthFailure(source, exc.message)
        except FetchTimeoutError:
            return Timeout(source, timeout)
        except ParseFailureError as exc:
            return ParseFailure(source, exc.message)
        except AlreadyRunningError:
            return AlreadyRunning(source)
        except _Shutdown:
            return Cancelled(source)
        except Exception as exc:
            logger.exception(
                "Unexpected error during source attempt",
                extra={
                    "event": "source_error",
                    "provider": adapter.provider_id,
                    "source": source.value,
                },
            )
            return SourceUnavailable(source, f"unexpected error: {type(exc).__name__}")

    async def _attempt_web(
        self, adapter: ProviderAdapter, account: str | None, timeout: float
    ) -> FetchAttemptOutcome:
        stored = self._stored_credentials(adapter, SourceKind.WEB, account)
        provider_id = adapter.provider_id
        ceiling = timeout * self._settings.watchdog_ceiling_factor

        async def probe(context: ProbeContext) -> Tuple[str | None, bytes]:
            bundle: CookieBundle | None = None
            try:
                if stored is not None:
                    credentials = stored
                else:
                    bundle = await self._browser_cookies(adapter, context)
                    credentials = Credentials(cookies=bundle.values, origin=f"browser:{bundle.browser}")
                context.token.raise_if_cancelled()
                request = adapter.build_request(SourceKind.WEB, credentials)
                body = await self._execute(
                    provider_id, request, ceiling, progress=context.report_progress
                )
                return credentials.account_label, body
            finally:
                if bundle is not None:
                    bundle.clear()

        result = await self._watchdog.start(provider_id, timeout, probe)
        if result.state is ProbeState.TIMED_OUT:
            return Timeout(SourceKind.WEB, round(result.elapsed, 3))
        if result.state is ProbeState.CANCELLED:
            return Cancelled(SourceKind.WEB)
        if result.error is not None:
            raise result.error
        account_label, body = result.value
        raw = self._parse(adapter, SourceKind.WEB, body)
        return Success(SourceKind.WEB, raw, account_label)

    async def _execute(
        self,
        provider_id: str,
        request: UsageRequest,
        timeout: float,
        *,
        progress: Callable[[int], None] | None = None,
    ) -> bytes:
        if isinstance(request, CliUsageRequest):
            return await transport.execute_cli(provider_id, request, timeout)
        return await transport.execute_http(
            provider_id, request, timeout, progress=progress, transport=self._http_transport
        )

    async def _bounded(self, provider_id: str, coro, timeout: float) -> bytes:
        """Await ``coro`` under ``timeout`` while honouring shutdown."""
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._watchdog.shutdown_token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        task.add_done_callback(_consume)
        if waiter in done:
            raise _Shutdown()
        raise FetchTimeoutError(provider_id, f"timed out after {timeout:g}s")

    def _parse(self, adapter: ProviderAdapter, source: SourceKind, body: bytes) -> RawUsageResponse:
        try:
            return adapter.parse_response(source, body, now=self._clock())
        except ParseFailureError as exc:
            logger.warning(
                "Unexpected response shape",
                extra={
                    "event": "parse_failure",
                    "provider": adapter.provider_id,
                    "source": source.value,
                    "reason": exc.message,
                    "payload": redact_payload(body),
                },
            )
            raise

    # credentials

    def _timeout_for(self, source: SourceKind, web_timeout: float | None) -> float:
        if source is SourceKind.WEB:
            return web_timeout or self._settings.web_timeout
        if source is SourceKind.CLI:
            return self._settings.cli_timeout
        return self._settings.oauth_timeout

    def _stored_credentials(
        self, adapter: ProviderAdapter, source: SourceKind, account: str | None
    ) -> Credentials | None:
        provider_id = adapter.provider_id
        if account:
            record = self._store.get(provider_id, account)
            if record is None:
                raise SourceUnavailableError(provider_id, f"account '{account}' not found")
        else:
            record = self._store.active(provider_id)
        if record is None:
            return None
        wants_cookie = source is SourceKind.WEB
        if (record.kind is CredentialKind.COOKIE) != wants_cookie:
            return None
        if record.is_expired(self._clock()):
            raise AuthFailureError(provider_id, f"stored credential '{record.label}' expired")
        secret = record.secret.get_secret_value()
        if wants_cookie:
            header = normalize_cookie_header(secret, adapter.primary_cookie)
            return Credentials(
                secret=header,
                cookies=parse_cookie_header(header),
                account_label=record.label,
                expires_at=record.expires_at,
                origin="store",
            )
        return Credentials(
            secret=strip_bearer(secret),
            account_label=record.label,
            expires_at=record.expires_at,
            origin="store",
        )

    async def _resolve(
        self, adapter: ProviderAdapter, source: SourceKind, account: str | None
    ) -> Credentials:
        if source is SourceKind.CLI:
            return await self._cli_credentials(adapter)

        credentials = self._stored_credentials(adapter, source, account)
        if credentials is None and not account:
            credentials = self._env_credentials(adapter) or await self._file_credentials(adapter)
        if credentials is None or not credentials.secret:
            raise SourceUnavailableError(adapter.provider_id, "no oauth token or api key found")
        if credentials.expires_at is not None and credentials.expires_at <= self._clock():
            raise AuthFailureError(adapter.provider_id, "access token expired")
        return credentials

    def _env_credentials(self, adapter: ProviderAdapter) -> Credentials | None:
        for name in adapter.token_env_vars:
            value = os.getenv(name)
            if value and value.strip():
                return Credentials(secret=strip_bearer(value), origin=f"env:{name}")
        return None

    async def _file_credentials(self, adapter: ProviderAdapter) -> Credentials | None:
        for pattern in adapter.token_files:
            path = pathlib.Path(pattern).expanduser()
            if not path.is_file():
                continue
            try:
                text = await asyncio.to_thread(path.read_text, encoding="utf-8")
                data = json.loads(text)
            except (OSError, UnicodeDecodeError, json.JSONDecodeError):
                logger.debug(
                    "Unreadable credential file",
                    extra={"event": "token_file_unreadable", "provider": adapter.provider_id, "path": str(path)},
                )
                continue
            if not isinstance(data, dict):
                continue
            credentials = adapter.token_from_file(str(path), data)
            if credentials is not None and credentials.secret:
                return credentials
        return None

    async def _cli_credentials(self, adapter: ProviderAdapter) -> Credentials:
        provider_id = adapter.provider_id
        if adapter.cli_binary:
            if transport.which(adapter.cli_binary) is None:
                raise SourceUnavailableError(provider_id, "cli binary not found")
            return Credentials(origin="cli")
        path = await asyncio.to_thread(_first_report_file, adapter.report_globs)
        if path is None:
            # The adapter may still know a configured path.
            return Credentials(origin="report")
        return Credentials(extra={"path": path}, origin="report")

    async def _browser_cookies(self, adapter: ProviderAdapter, context: ProbeContext) -> CookieBundle:
        provider_id = adapter.provider_id
        if not adapter.cookie_domain:
            raise SourceUnavailableError(provider_id, "no browser cookie domain")
        failures: List[str] = []
        for browser in self._settings.browsers:
            context.token.raise_if_cancelled()
            try:
                bundle = await self._extract_with_retry(browser, adapter)
            except CookieExtractionError as exc:
                failures.append(f"{browser}: {exc.message}")
                continue
            if any(bundle.get(name) for name in adapter.cookie_names):
                return bundle
            bundle.clear()
        logger.info(
            "No browser session found",
            extra={"event": "cookies_missing", "provider": provider_id, "browsers": failures},
        )
        raise SourceUnavailableError(provider_id, "no signed-in browser session found")

    async def _extract_with_retry(self, browser: str, adapter: ProviderAdapter) -> CookieBundle:
        args = (browser, adapter.cookie_domain, adapter.cookie_names)
        try:
            return await asyncio.to_thread(self._extract, *args)
        except StoreLockedError:
            logger.info(
                "Cookie store locked, retrying once",
                extra={"event": "cookie_store_locked", "provider": adapter.provider_id, "browser": browser},
            )
            await asyncio.sleep(self._settings.cookie_retry_backoff)
            return await asyncio.to_thread(self._extract, *args)

    # snapshot

    def _build_snapshot(
        self, adapter: ProviderAdapter, outcome: Success, previous: UsageSnapshot | None
    ) -> UsageSnapshot:
        provider_id = adapter.provider_id
        now = self._clock()
        raw = outcome.raw
        windows = normalize_windows(raw.windows, previous.windows if previous else ())
        session = update_session(raw.session, previous.session if previous else None, now)

        pace = None
        if windows:
            primary = windows[0]
            sample = UsagePaceSample(timestamp=now, used=primary.raw_used)
            horizon = timedelta(hours=self._settings.pace_horizon_hours)
            try:
                samples = self._record_sample(provider_id, primary.label, sample, horizon)
            except Exception:
                logger.exception(
                    "Failed to record pace sample",
                    extra={"event": "pace_persist_error", "provider": provider_id},
                )
                samples = (sample,)
            pace = project(primary.label, samples, primary.limit, window=primary, now=now)

        snapshot = UsageSnapshot(
            provider=provider_id,
            account_label=outcome.account_label,
            source=outcome.source,
            windows=windows,
            session=session,
            pace=pace,
            fetched_at=now,
            plan=raw.plan,
            account_email=raw.account_email,
        )
        self._report_transition(previous, snapshot)
        return snapshot

    # reporting

    def _report_failure(self, provider_id: str, outcome: FetchAttemptOutcome) -> None:
        level = logging.INFO if isinstance(outcome, (SourceUnavailable, Cancelled)) else logging.WARNING
        logger.log(
            level,
            "Source attempt failed",
            extra={
                "event": "source_failed",
                "provider": provider_id,
                "source": outcome.source.value,
                "outcome": outcome.label,
                "detail": outcome.describe(),
            },
        )
        record_event(
            "source_failed",
            logging.getLevelName(level),
            provider_id=provider_id,
            source_from=outcome.source.value,
            error_code=outcome.label,
            message=outcome.describe(),
        )

    def _report_switch(self, provider_id: str, failed: FetchAttemptOutcome, target: SourceKind) -> None:
        logger.info(
            "Switching source",
            extra={
                "event": "source_switched",
                "provider": provider_id,
                "from": failed.source.value,
                "to": target.value,
                "reason": failed.label,
            },
        )
        record_event(
            "source_switched",
            "INFO",
            provider_id=provider_id,
            source_from=failed.source.value,
            source_to=target.value,
            error_code=failed.label,
        )

    def _report_transition(self, previous: UsageSnapshot | None, current: UsageSnapshot) -> None:
        if previous is None or not previous.windows or not current.windows:
            return
        transition = detect_transition(
            _remaining_percent(previous), _remaining_percent(current)
        )
        if transition is SessionTransition.NONE:
            return
        kind = f"session_{transition.value}"
        logger.info(
            "Quota %s", transition.value,
            extra={"event": kind, "provider": current.provider, "window": current.windows[0].label},
        )
        record_event(kind, "INFO", provider_id=current.provider, message=f"{current.windows[0].label} quota {transition.value}")


def _remaining_percent(snapshot: UsageSnapshot) -> float | None:
    primary = snapshot.windows[0]
    if primary.limit <= 0:
        return None
    return 100.0 - primary.used_percent


def _first_report_file(patterns: Sequence[str]) -> str | None:
    matches: List[str] = []
    for pattern in patterns:
        matches.extend(item for item in glob.glob(os.path.expanduser(pattern)) if os.path.isfile(item))
    if not matches:
        return None
    return max(matches, key=os.path.getmtime)


__all__ = ["AUTO_PRIORITY", "FetchPlan", "candidate_sources", "parse_cookie_header"]
