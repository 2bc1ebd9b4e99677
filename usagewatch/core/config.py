"""Application configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field

from usagewatch.core.models import SourcePreference

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "providers.yaml"


class ProviderSettings(BaseModel):
    id: str
    enabled: bool = True
    source: SourcePreference = SourcePreference.AUTO
    account: str | None = None
    web_timeout: float | None = Field(default=None, gt=0)
    options: Dict[str, Any] = Field(default_factory=dict)


class FetchSettings(BaseModel):
    web_timeout: float = Field(default=15.0, gt=0)
    oauth_timeout: float = Field(default=20.0, gt=0)
    cli_timeout: float = Field(default=30.0, gt=0)
    watchdog_ceiling_factor: float = Field(default=2.0, ge=1.0)
    cookie_retry_backoff: float = Field(default=0.5, ge=0)
    browsers: List[str] = Field(
        default_factory=lambda: ["chrome", "firefox", "edge", "brave", "chromium", "safari"]
    )
    pace_horizon_hours: float = Field(default=6.0, gt=0)
    overall_timeout: float | None = Field(default=None, gt=0)


class StorageSettings(BaseModel):
    accounts_path: pathlib.Path = pathlib.Path("~/.config/usagewatch/token_accounts.json")
    legacy_path: pathlib.Path | None = pathlib.Path("~/.config/usagewatch/credentials.json")
    database_path: pathlib.Path | None = None

    def resolved_accounts_path(self) -> pathlib.Path:
        return self.accounts_path.expanduser()

    def resolved_database_path(self) -> pathlib.Path | None:
        return self.database_path.expanduser() if self.database_path else None

    def resolved_legacy_path(self) -> pathlib.Path | None:
        return self.legacy_path.expanduser() if self.legacy_path else None


class AppConfig(BaseModel):
    providers: List[ProviderSettings]
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    def provider(self, provider_id: str) -> ProviderSettings | None:
        return next((item for item in self.providers if item.id == provider_id), None)

    def enabled_providers(self) -> List[ProviderSettings]:
        return [item for item in self.providers if item.enabled]


def _config_path() -> pathlib.Path:
    override = os.getenv("USAGEWATCH_CONFIG")
    return pathlib.Path(override) if override else DEFAULT_CONFIG_PATH


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> AppConfig:
    """Load provider configuration from YAML."""
    config_path = path or _config_path()
    raw = yaml.safe_load(config_path.read_text()) or {}
    return AppConfig(**raw)
