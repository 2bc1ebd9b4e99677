"""Cursor usage adapter (dashboard usage summary, WorkOS session cookie)."""

from __future__ import annotations

from datetime import datetime

from usagewatch.core.exceptions import ParseFailureError
from usagewatch.core.models import RawSession, RawUsageResponse, RawWindow, SourceKind

from .base import Credentials, HttpUsageRequest, ProviderAdapter
from .utils import number, parse_timestamp

USAGE_URL = "https://cursor.com/api/usage-summary"


class CursorProvider(ProviderAdapter):
    provider_id = "cursor"
    display_name = "Cursor"
    dashboard_url = "https://cursor.com/dashboard?tab=usage"
    sources = (SourceKind.WEB,)

    cookie_domain = "cursor.com"
    cookie_names = ("WorkosCursorSessionToken",)

    def _web_request(self, credentials: Credentials) -> HttpUsageRequest:
        return HttpUsageRequest(
            url=USAGE_URL,
            headers={
                "Cookie": credentials.cookie_header,
                "Accept": "application/json",
                "Referer": "https://cursor.com/dashboard?tab=usage",
            },
        )

    def _parse(self, source: SourceKind, body: bytes, now: datetime) -> RawUsageResponse:
        data = self._json(body)
        plan = (data.get("individualUsage") or {}).get("plan")
        if not isinstance(plan, dict):
            raise ParseFailureError(self.provider_id, "missing individualUsage.plan")

        resets_at = parse_timestamp(data.get("billingCycleEnd"))
        cycle_start = parse_timestamp(data.get("billingCycleStart"))
        windows = [
            RawWindow(
                label="total",
                used=number(plan, "totalPercentUsed"),
                limit=100.0,
                resets_at=resets_at,
            )
        ]
        for key, label in (("autoPercentUsed", "auto"), ("apiPercentUsed", "api")):
            if plan.get(key) is not None:
                windows.append(
                    RawWindow(label=label, used=float(plan[key]), limit=100.0, resets_at=resets_at)
                )

        session = None
        if plan.get("used") is not None:
            limit = plan.get("limit")
            session = RawSession(
                used=float(plan["used"]),
                limit=float(limit) if limit is not None else None,
                started_at=cycle_start,
                session_id=data.get("billingCycleStart"),
            )
        return RawUsageResponse(
            windows=tuple(windows),
            session=session,
            plan=data.get("membershipType"),
        )
