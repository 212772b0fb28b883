"""Decision log and cache/cost performance reporting."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import PlanDecisionLog
from ..utils import commit_with_retry

DECISION_AI = "ai"
DECISION_CACHE_EXACT = "cache_exact"
DECISION_CACHE_ADAPTED = "cache_adapted"


def log_decision(
    *,
    user_id: int | None,
    week_number: int | None,
    decision: str,
    response_time_ms: int,
    cached_plan_id: int | None = None,
    similarity: float | None = None,
    reasons: List[str] | None = None,
    adaptations_count: int = 0,
    estimated_cost_usd: float = 0.0,
    actual_cost_usd: float = 0.0,
    success: bool = True,
    error: str | None = None,
) -> None:
    current_app.logger.info(
        "Plan decision %s for user %s week %s (similarity=%s, cost=%.4f, %sms)",
        decision,
        user_id,
        week_number,
        similarity,
        actual_cost_usd,
        response_time_ms,
        extra={
            "user_id": user_id,
            "week_number": week_number,
            "source": decision,
            "similarity": similarity,
        },
    )

    def _write():
        db.session.add(
            PlanDecisionLog(
                user_id=user_id,
                week_number=week_number,
                decision=decision,
                cached_plan_id=cached_plan_id,
                similarity=similarity,
                reasons=reasons or [],
                adaptations_count=adaptations_count,
                response_time_ms=response_time_ms,
                estimated_cost_usd=estimated_cost_usd,
                actual_cost_usd=actual_cost_usd,
                success=success,
                error=error,
            )
        )

    commit_with_retry(_write)


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def today_ai_calls(now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    return (
        db.session.query(func.count(PlanDecisionLog.id))
        .filter(
            PlanDecisionLog.decision == DECISION_AI,
            PlanDecisionLog.created_at >= _start_of_day(now),
        )
        .scalar()
        or 0
    )


def monthly_spend(now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    month_start = _start_of_day(now).replace(day=1)
    total = (
        db.session.query(func.sum(PlanDecisionLog.actual_cost_usd))
        .filter(PlanDecisionLog.created_at >= month_start)
        .scalar()
    )
    return float(total or 0.0)


def analytics_report(days: int = 7, cost_per_generation_usd: float = 0.08) -> Dict[str, Any]:
    since = datetime.now(timezone.utc) - timedelta(days=max(1, days))
    logs = PlanDecisionLog.query.filter(PlanDecisionLog.created_at >= since).all()
    total = len(logs)
    by_decision = {DECISION_AI: 0, DECISION_CACHE_EXACT: 0, DECISION_CACHE_ADAPTED: 0}
    for log in logs:
        by_decision[log.decision] = by_decision.get(log.decision, 0) + 1
    total_cost = sum(log.actual_cost_usd or 0.0 for log in logs)
    similarities = [log.similarity for log in logs if log.similarity is not None]
    hits = by_decision[DECISION_CACHE_EXACT] + by_decision[DECISION_CACHE_ADAPTED]
    return {
        "period_days": days,
        "total_requests": total,
        "ai_calls": by_decision[DECISION_AI],
        "exact_hits": by_decision[DECISION_CACHE_EXACT],
        "adapted_hits": by_decision[DECISION_CACHE_ADAPTED],
        "avg_response_time_ms": round(sum(log.response_time_ms for log in logs) / total) if total else 0,
        "total_cost_usd": round(total_cost, 4),
        "cost_savings_usd": round(total * cost_per_generation_usd - total_cost, 4),
        "hit_rate": round(hits / total, 4) if total else 0.0,
        "avg_similarity": round(sum(similarities) / len(similarities), 4) if similarities else 0.0,
        "success_rate": round(sum(1 for log in logs if log.success) / total, 4) if total else 0.0,
    }
