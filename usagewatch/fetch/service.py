"""Concurrent refresh of every enabled provider."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple, Union

from usagewatch.core.config import AppConfig, ProviderSettings, load_config
from usagewatch.core.exceptions import AllSourcesFailedError, ConfigurationError
from usagewatch.core.models import UsageSnapshot
from usagewatch.core.outcomes import FetchAttemptOutcome, outcome_to_dict
from usagewatch.fetch.plan import FetchPlan
from usagewatch.logging import reset_cycle_id, set_cycle_id
from usagewatch.providers.registry import ProviderRegistry
from usagewatch.storage.token_accounts import TokenAccountStore

logger = logging.getLogger("usagewatch.service")


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    message: str
    outcomes: Tuple[FetchAttemptOutcome, ...] = ()

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "error": self.message,
            "attempts": [outcome_to_dict(item) for item in self.outcomes],
        }


ProviderResult = Union[UsageSnapshot, ProviderFailure]
ResultCallback = Callable[[ProviderResult], None]


class UsageService:
    """Fans out one fetch per enabled provider; a slow provider never blocks another."""

    def __init__(self, registry: ProviderRegistry, plan: FetchPlan) -> None:
        self._registry = registry
        self._plan = plan
        self._latest: Dict[str, ProviderResult] = {}
        self._snapshots: Dict[str, UsageSnapshot] = {}

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def plan(self) -> FetchPlan:
        return self._plan

    def latest(self) -> Dict[str, ProviderResult]:
        return dict(self._latest)

    def shutdown(self) -> None:
        self._plan.shutdown()

    async def fetch_provider(self, provider: ProviderSettings | str) -> ProviderResult:
        try:
            settings = self._registry.settings(provider) if isinstance(provider, str) else provider
            adapter = self._registry.get_adapter(settings)
        except ConfigurationError as exc:
            return ProviderFailure(provider=exc.provider_id, message=exc.message)

        try:
            result: ProviderResult = await self._plan.fetch(
                adapter,
                settings.source,
                account=settings.account,
                web_timeout=settings.web_timeout,
                previous=self._snapshots.get(settings.id),
            )
        except AllSourcesFailedError as exc:
            result = ProviderFailure(
                provider=settings.id, message=exc.message, outcomes=tuple(exc.outcomes)
            )
        else:
            self._snapshots[settings.id] = result
        self._latest[settings.id] = result
        return result

    async def fetch_all(
        self,
        on_result: ResultCallback | None = None,
        *,
        timeout: float | None = None,
    ) -> List[ProviderResult]:
        """Refresh every enabled provider concurrently.

        Results are returned in configuration order; ``on_result`` sees each
        one as soon as it is available.
        """
        providers = list(self._registry.providers())
        if not providers:
            return []
        overall = timeout or self._registry.config.fetch.overall_timeout
        semaphore = asyncio.Semaphore(len(providers))
        token = set_cycle_id(uuid.uuid4().hex[:12])
        try:
            logger.info(
                "Refresh cycle started",
                extra={"event": "cycle_started", "providers": [item.id for item in providers]},
            )

            async def run(settings: ProviderSettings) -> ProviderResult:
                async with semaphore:
                    try:
                        result = await self.fetch_provider(settings)
                    except Exception:
                        logger.exception(
                            "Provider fetch crashed",
                            extra={"event": "provider_crashed", "provider": settings.id},
                        )
                        result = ProviderFailure(provider=settings.id, message="internal error")
                if on_result is not None:
                    on_result(result)
                return result

            tasks = {settings.id: asyncio.create_task(run(settings)) for settings in providers}
            _, pending = await asyncio.wait(tasks.values(), timeout=overall)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            results: List[ProviderResult] = []
            for settings in providers:
                task = tasks[settings.id]
                if task.cancelled():
                    result = ProviderFailure(
                        provider=settings.id, message=f"refresh exceeded {overall:g}s"
                    )
                    self._latest[settings.id] = result
                    if on_result is not None:
                        on_result(result)
                else:
                    result = task.result()
                results.append(result)

            logger.info(
                "Refresh cycle finished",
                extra={
                    "event": "cycle_finished",
                    "succeeded": sum(isinstance(item, UsageSnapshot) for item in results),
                    "failed": sum(isinstance(item, ProviderFailure) for item in results),
                },
            )
            return results
        finally:
            reset_cycle_id(token)


def build_service(config: AppConfig | None = None) -> UsageService:
    config = config or load_config()
    store = TokenAccountStore(
        config.storage.resolved_accounts_path(),
        legacy_path=config.storage.resolved_legacy_path(),
    )
    store.load()
    return UsageService(ProviderRegistry(config), FetchPlan(store, config.fetch))


_service: UsageService | None = None


def get_service() -> UsageService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


def set_service(service: UsageService | None) -> None:
    global _service
    _service = service


__all__ = [
    "ProviderFailure",
    "ProviderResult",
    "UsageService",
    "build_service",
    "get_service",
    "set_service",
]
