"""Static table of provider adapters and their per-config instances."""

from __future__ import annotations

from typing import Dict, Iterable, List, Type

from usagewatch.core.config import AppConfig, ProviderSettings, load_config
from usagewatch.core.exceptions import ConfigurationError
from usagewatch.core.models import ProviderIdentity

from .amp import AmpProvider
from .augment import AugmentProvider
from .base import ProviderAdapter
from .claude import ClaudeProvider
from .codex import CodexProvider
from .copilot import CopilotProvider
from .cursor import CursorProvider
from .gemini import GeminiProvider
from .jetbrains import JetBrainsProvider
from .kimi import KimiProvider
from .minimax import MiniMaxProvider
from .opencode import OpenCodeProvider
from .synthetic import SyntheticProvider
from .zai import ZaiProvider


class ProviderRegistry:
    """Registry handling provider adapters and configuration."""

    _adapter_map: Dict[str, Type[ProviderAdapter]] = {
        "claude": ClaudeProvider,
        "codex": CodexProvider,
        "cursor": CursorProvider,
        "copilot": CopilotProvider,
        "gemini": GeminiProvider,
        "zai": ZaiProvider,
        "minimax": MiniMaxProvider,
        "kimi": KimiProvider,
        "amp": AmpProvider,
        "augment": AugmentProvider,
        "opencode": OpenCodeProvider,
        "synthetic": SyntheticProvider,
        "jetbrains": JetBrainsProvider,
    }

    def __init__(self, config: AppConfig | None = None) -> None:
        self._config = config or load_config()
        self._instances: Dict[str, ProviderAdapter] = {}

    @property
    def config(self) -> AppConfig:
        return self._config

    @classmethod
    def known_keys(cls) -> List[str]:
        return list(cls._adapter_map)

    def providers(self) -> Iterable[ProviderSettings]:
        return self._config.enabled_providers()

    def settings(self, provider_id: str) -> ProviderSettings:
        settings = self._config.provider(provider_id)
        if settings is None:
            if provider_id not in self._adapter_map:
                raise ConfigurationError(provider_id, message="Unknown provider")
            settings = ProviderSettings(id=provider_id, enabled=False)
        return settings

    def get_adapter(self, provider: ProviderSettings | str) -> ProviderAdapter:
        settings = self.settings(provider) if isinstance(provider, str) else provider
        if settings.id not in self._instances:
            adapter_cls = self._adapter_map.get(settings.id)
            if not adapter_cls:
                raise ConfigurationError(settings.id, message="No adapter configured")
            self._instances[settings.id] = adapter_cls(settings)
        return self._instances[settings.id]

    def identities(self) -> List[ProviderIdentity]:
        return [self.get_adapter(settings).identity() for settings in self._config.providers]


__all__ = ["ProviderRegistry"]
