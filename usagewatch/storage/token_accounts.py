"""Multi-account credential store persisted as a JSON file."""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator

from usagewatch.core.exceptions import UnknownAccountError

logger = logging.getLogger("usagewatch.accounts")

STORE_VERSION = 1
LEGACY_LABEL = "default"


class CredentialKind(str, Enum):
    TOKEN = "token"
    COOKIE = "cookie"
    API_KEY = "api_key"


class CredentialRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    label: str
    kind: CredentialKind
    secret: SecretStr
    obtained_at: datetime
    expires_at: datetime | None = None

    @field_validator("obtained_at", "expires_at")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        # Naive timestamps are stored as UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return self.expires_at <= current

    def to_storage(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "kind": self.kind.value,
            "secret": self.secret.get_secret_value(),
            "obtained_at": self.obtained_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def infer_kind(secret: str) -> CredentialKind:
    """Guess the credential kind of a bare legacy secret."""
    value = secret.strip()
    lowered = value.lower()
    if lowered.startswith("cookie:") or "=" in value.rstrip("="):
        return CredentialKind.COOKIE
    if lowered.startswith(("sk-ant-oat", "bearer ", "eyj", "gho_", "ghu_")):
        return CredentialKind.TOKEN
    if lowered.startswith("sk-") or lowered.startswith("sgp_"):
        return CredentialKind.API_KEY
    return CredentialKind.TOKEN


def normalize_cookie_header(value: str, cookie_name: str | None = None) -> str:
    """Return a ``name=value; ...`` header from a stored cookie secret.

    A bare session value is paired with ``cookie_name`` when the provider
    declares a primary cookie.
    """
    trimmed = value.strip()
    if trimmed.lower().startswith("cookie:"):
        trimmed = trimmed[len("cookie:"):].strip()
    if "=" in trimmed or not cookie_name:
        return trimmed
    return f"{cookie_name}={trimmed}"


def strip_bearer(value: str) -> str:
    trimmed = value.strip()
    if trimmed.lower().startswith("bearer "):
        return trimmed[7:].strip()
    return trimmed


@dataclass(frozen=True)
class _StoreState:
    accounts: Mapping[str, Tuple[CredentialRecord, ...]] = field(default_factory=dict)
    # A missing key means "most recently added"; None means no active credential.
    active: Mapping[str, str | None] = field(default_factory=dict)


class TokenAccountStore:
    """Registry of per-provider, per-label credentials.

    Writers serialize on a single lock and publish a fresh state object;
    readers never lock and always see a complete snapshot.
    """

    def __init__(self, path: pathlib.Path, legacy_path: pathlib.Path | None = None) -> None:
        self._path = pathlib.Path(path)
        self._legacy_path = pathlib.Path(legacy_path) if legacy_path else None
        self._lock = threading.Lock()
        self._state = _StoreState()

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def load(self) -> None:
        """Read the store from disk, migrating a legacy flat layout once."""
        with self._lock:
            if self._path.exists():
                raw = json.loads(self._path.read_text() or "{}")
                if _is_legacy_shape(raw):
                    state = _migrate(raw, _mtime(self._path))
                    self._persist(state)
                    logger.info(
                        "Migrated legacy credential file in place",
                        extra={"event": "accounts_migrated", "providers": sorted(state.accounts)},
                    )
                else:
                    state = _parse(raw)
            elif self._legacy_path is not None and self._legacy_path.exists():
                raw = json.loads(self._legacy_path.read_text() or "{}")
                state = _migrate(raw, _mtime(self._legacy_path))
                self._persist(state)
                logger.info(
                    "Migrated legacy credential file",
                    extra={
                        "event": "accounts_migrated",
                        "providers": sorted(state.accounts),
                        "legacy_path": str(self._legacy_path),
                    },
                )
            else:
                state = _StoreState()
            self._state = state

    def providers(self) -> List[str]:
        return sorted(self._state.accounts)

    def accounts(self, provider: str) -> List[str]:
        return [record.label for record in self._state.accounts.get(provider, ())]

    def records(self, provider: str) -> List[CredentialRecord]:
        return [record.model_copy() for record in self._state.accounts.get(provider, ())]

    def active_label(self, provider: str) -> str | None:
        return _active_label(self._state, provider)

    def active(self, provider: str) -> CredentialRecord | None:
        state = self._state
        label = _active_label(state, provider)
        if label is None:
            return None
        for record in state.accounts.get(provider, ()):
            if record.label == label:
                return record.model_copy()
        return None

    def get(self, provider: str, label: str) -> CredentialRecord | None:
        for record in self._state.accounts.get(provider, ()):
            if record.label == label:
                return record.model_copy()
        return None

    def upsert(self, record: CredentialRecord) -> None:
        with self._lock:
            state = self._state
            existing = list(state.accounts.get(record.provider, ()))
            active = dict(state.active)
            for index, item in enumerate(existing):
                if item.label == record.label:
                    existing[index] = record
                    break
            else:
                existing.append(record)
                if record.provider in active and active[record.provider] is None:
                    del active[record.provider]
            accounts = dict(state.accounts)
            accounts[record.provider] = tuple(existing)
            self._commit(_StoreState(accounts=accounts, active=active))

    def remove(self, provider: str, label: str) -> None:
        with self._lock:
            state = self._state
            existing = state.accounts.get(provider, ())
            if not any(item.label == label for item in existing):
                raise UnknownAccountError(provider, label)
            was_active = _active_label(state, provider) == label
            remaining = tuple(item for item in existing if item.label != label)
            accounts = dict(state.accounts)
            active = dict(state.active)
            if remaining:
                accounts[provider] = remaining
                if was_active:
                    active[provider] = None
            else:
                accounts.pop(provider, None)
                active.pop(provider, None)
            self._commit(_StoreState(accounts=accounts, active=active))

    def select_active(self, provider: str, label: str) -> None:
        with self._lock:
            state = self._state
            if not any(item.label == label for item in state.accounts.get(provider, ())):
                raise UnknownAccountError(provider, label)
            active = dict(state.active)
            active[provider] = label
            self._commit(_StoreState(accounts=state.accounts, active=active))

    def _commit(self, state: _StoreState) -> None:
        self._persist(state)
        self._state = state

    def _persist(self, state: _StoreState) -> None:
        payload = {
            "version": STORE_VERSION,
            "accounts": {
                provider: [record.to_storage() for record in records]
                for provider, records in sorted(state.accounts.items())
            },
            "active": dict(sorted(state.active.items())),
        }
        _atomic_write(self._path, json.dumps(payload, indent=2, ensure_ascii=True))


def _active_label(state: _StoreState, provider: str) -> str | None:
    records = state.accounts.get(provider, ())
    if not records:
        return None
    if provider in state.active:
        return state.active[provider]
    return records[-1].label


def _is_legacy_shape(raw: Any) -> bool:
    if not isinstance(raw, dict) or not raw:
        return False
    if "accounts" in raw and isinstance(raw.get("accounts"), dict):
        return False
    return all(isinstance(value, str) for value in raw.values())


def _migrate(raw: Mapping[str, Any], obtained_at: datetime) -> _StoreState:
    accounts: Dict[str, Tuple[CredentialRecord, ...]] = {}
    for provider, secret in raw.items():
        if not isinstance(secret, str) or not secret.strip():
            logger.warning(
                "Skipping unreadable legacy credential",
                extra={"event": "accounts_migration_skip", "provider": provider},
            )
            continue
        accounts[provider] = (
            CredentialRecord(
                provider=provider,
                label=LEGACY_LABEL,
                kind=infer_kind(secret),
                secret=SecretStr(secret.strip()),
                obtained_at=obtained_at,
            ),
        )
    return _StoreState(accounts=accounts, active={})


def _parse(raw: Mapping[str, Any]) -> _StoreState:
    accounts: Dict[str, Tuple[CredentialRecord, ...]] = {}
    for provider, entries in (raw.get("accounts") or {}).items():
        records: List[CredentialRecord] = []
        seen: set[str] = set()
        for entry in entries or []:
            label = entry.get("label")
            if not label or label in seen:
                continue
            seen.add(label)
            records.append(
                CredentialRecord(
                    provider=provider,
                    label=label,
                    kind=CredentialKind(entry.get("kind", CredentialKind.TOKEN.value)),
                    secret=SecretStr(entry.get("secret", "")),
                    obtained_at=_parse_ts(entry.get("obtained_at")) or datetime.now(timezone.utc),
                    expires_at=_parse_ts(entry.get("expires_at")),
                )
            )
        if records:
            accounts[provider] = tuple(records)
    active = {
        provider: label
        for provider, label in (raw.get("active") or {}).items()
        if provider in accounts
        and (label is None or any(item.label == label for item in accounts[provider]))
    }
    return _StoreState(accounts=accounts, active=active)


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _mtime(path: pathlib.Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def _atomic_write(path: pathlib.Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


__all__ = [
    "CredentialKind",
    "CredentialRecord",
    "TokenAccountStore",
    "infer_kind",
    "normalize_cookie_header",
    "strip_bearer",
]
