"""JetBrains AI Assistant adapter reading the IDE's local quota file."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime

from usagewatch.core.exceptions import ParseFailureError, SourceUnavailableError
from usagewatch.core.models import Confidence, RawUsageResponse, RawWindow, SourceKind

from .base import CliUsageRequest, Credentials, ProviderAdapter
from .utils import parse_timestamp

DEFAULT_CREDIT_LIMIT = 1000.0

_USED_KEYS = {"usedCredits", "used_credits", "creditsUsed"}
_LIMIT_KEYS = {"creditLimit", "credit_limit", "creditsLimit", "monthlyLimit"}
_RESET_KEYS = {"nextRefill", "resetDate", "refillDate"}

_CONFIG_ROOTS = ("~/.config/JetBrains", "~/Library/Application Support/JetBrains")
_FILE_NAMES = ("ai-assistant.xml", "aiAssistant.xml", "ai.xml")


class JetBrainsProvider(ProviderAdapter):
    provider_id = "jetbrains"
    display_name = "JetBrains AI"
    dashboard_url = "https://www.jetbrains.com/ai/"
    sources = (SourceKind.CLI,)

    report_globs = tuple(
        f"{root}/*/options/{name}" for root in _CONFIG_ROOTS for name in _FILE_NAMES
    )

    def _cli_request(self, credentials: Credentials) -> CliUsageRequest:
        path = credentials.extra.get("path") or self._options.get("config_path")
        if not path:
            raise SourceUnavailableError(self.provider_id, "report file not found")
        return CliUsageRequest(path=str(path))

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        try:
            root = ET.fromstring(body)
        except ET.ParseError as exc:
            raise ParseFailureError(self.provider_id, "quota file is not valid XML") from exc

        used: float | None = None
        limit: float | None = None
        resets_at = None
        for option in root.iter("option"):
            name = option.get("name")
            value = option.get("value")
            if name is None or value is None:
                continue
            if name in _USED_KEYS:
                used = float(value)
            elif name in _LIMIT_KEYS:
                limit = float(value)
            elif name in _RESET_KEYS:
                resets_at = parse_timestamp(value)

        if used is None:
            raise ParseFailureError(self.provider_id, "no used-credit option in quota file")
        confidence = Confidence.EXACT
        if limit is None:
            limit = DEFAULT_CREDIT_LIMIT
            confidence = Confidence.ESTIMATED
        window = RawWindow(
            label="monthly",
            used=used,
            limit=limit,
            resets_at=resets_at,
            confidence=confidence,
        )
        return RawUsageResponse(windows=(window,), plan="JetBrains AI")
