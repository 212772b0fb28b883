"""Budget gate that switches the orchestrator to cache-only (degraded) mode."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

from flask import current_app

from .engine_settings import EngineSettings
from .plan_analytics import monthly_spend, today_ai_calls

UNGATED_DAILY_TIERS = {"premium", "enterprise"}
_QUOTA_FLAG = "upstream_quota_exhausted_on"


class BudgetExhausted(Exception):
    """No AI budget left and no cached plan can safely be served."""


@dataclass(frozen=True)
class BudgetStatus:
    exhausted: bool
    reason: str | None = None


def mark_quota_exhausted(today: date | None = None) -> None:
    """Remember an upstream quota error until the end of the (UTC) day."""

    current_app.extensions[_QUOTA_FLAG] = today or datetime.now(timezone.utc).date()


def clear_quota_flag() -> None:
    current_app.extensions.pop(_QUOTA_FLAG, None)


def budget_status(settings: EngineSettings, user_tier: str = "free") -> BudgetStatus:
    today = datetime.now(timezone.utc).date()
    if current_app.extensions.get(_QUOTA_FLAG) == today:
        return BudgetStatus(True, "Upstream quota exhausted")
    if user_tier not in UNGATED_DAILY_TIERS and today_ai_calls() >= settings.daily_ai_limit:
        return BudgetStatus(True, "Daily AI limit reached")
    if monthly_spend() >= settings.monthly_budget_usd:
        return BudgetStatus(True, "Monthly budget exceeded")
    return BudgetStatus(False)
