"""Gemini CLI quota adapter (Code Assist quota buckets)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from usagewatch.core.exceptions import ParseFailureError
from usagewatch.core.models import RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import bearer, parse_timestamp

QUOTA_URL = "https://cloudcode-pa.googleapis.com/v1internal:retrieveUserQuota"


class GeminiProvider(ProviderAdapter):
    provider_id = "gemini"
    display_name = "Gemini"
    dashboard_url = "https://aistudio.google.com/usage"
    sources = (SourceKind.OAUTH,)

    token_files = ("~/.gemini/oauth_creds.json",)

    def token_from_file(self, filename: str, data: Mapping[str, Any]) -> Credentials | None:
        token = data.get("access_token")
        if not token:
            return None
        return Credentials(
            secret=token,
            expires_at=parse_timestamp(data.get("expiry_date")),
            origin="file",
        )

    def _oauth_request(self, credentials: Credentials) -> HttpUsageRequest:
        body: dict[str, Any] = {}
        project = self._options.get("project_id")
        if project:
            body["project"] = project
        headers = bearer(credentials.secret)
        headers["Content-Type"] = "application/json"
        return HttpUsageRequest(method="POST", url=QUOTA_URL, headers=headers, json_body=body)

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        buckets = data.get("buckets")
        if not isinstance(buckets, list) or not buckets:
            raise ParseFailureError(self.provider_id, "no quota buckets")

        windows = []
        for bucket in buckets:
            if not isinstance(bucket, dict) or bucket.get("remainingFraction") is None:
                continue
            label = bucket.get("modelId") or bucket.get("tokenType") or f"bucket{len(windows) + 1}"
            remaining = float(bucket["remainingFraction"])
            windows.append(
                RawWindow(
                    label=label,
                    used=round((1.0 - remaining) * 100.0, 4),
                    limit=100.0,
                    resets_at=parse_timestamp(bucket.get("resetTime")),
                    window_minutes=1440,
                )
            )
        if not windows:
            raise ParseFailureError(self.provider_id, "quota buckets carry no remainingFraction")
        return RawUsageResponse(windows=tuple(windows))
