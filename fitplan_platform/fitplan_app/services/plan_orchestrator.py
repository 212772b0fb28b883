"""Decide how a week plan is served: cached as-is, cached and adapted, or generated."""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping

from flask import current_app

from ..metrics import record_decision
from ..models.plan_cache import CACHE_SOURCE_ADAPTED, CACHE_SOURCE_AI
from . import plan_cache
from .ai_client import get_ai_client
from .cost_guard import BudgetExhausted, budget_status, mark_quota_exhausted
from .engine_settings import EngineSettings, get_engine_settings
from .generation_pipeline import STRATEGY_CHUNKED, QuotaExceeded, generate_week_plan
from .plan_adapter import adapt_plan, rebase_dates, serving_hazard
from .plan_analytics import (
    DECISION_AI,
    DECISION_CACHE_ADAPTED,
    DECISION_CACHE_EXACT,
    log_decision,
)
from .planning_context import week_start_date
from .similarity import SimilarityResult, score_contexts


@dataclass
class WeekResult:
    plan: Dict[str, Any]
    source: str
    cost_usd: float = 0.0
    similarity: float | None = None
    adaptations: List[str] = field(default_factory=list)
    cached_plan_id: int | None = None
    response_time_ms: int = 0
    model: str | None = None


@dataclass
class _Candidate:
    record: Any
    similarity: SimilarityResult


def _best_candidate(context: Mapping[str, Any], week_number: int, settings: EngineSettings) -> _Candidate | None:
    best: _Candidate | None = None
    for record in plan_cache.find_candidates(context, week_number, limit=settings.candidate_limit):
        result = score_contexts(context, record.context, settings.similarity)
        if best is None or result.score > best.similarity.score:
            best = _Candidate(record, result)
    return best


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _finish(
    result: WeekResult,
    *,
    started: float,
    user_id: int | None,
    week_number: int,
    reasons: List[str],
    estimated_cost: float,
) -> WeekResult:
    result.response_time_ms = _elapsed_ms(started)
    log_decision(
        user_id=user_id,
        week_number=week_number,
        decision=result.source,
        response_time_ms=result.response_time_ms,
        cached_plan_id=result.cached_plan_id,
        similarity=result.similarity,
        reasons=reasons,
        adaptations_count=len(result.adaptations),
        estimated_cost_usd=estimated_cost,
        actual_cost_usd=result.cost_usd,
    )
    record_decision(result.source, result.response_time_ms / 1000)
    return result


def _try_adapt(
    candidate: _Candidate,
    context: Mapping[str, Any],
    week_number: int,
    settings: EngineSettings,
    min_similarity: float,
) -> WeekResult | None:
    adapted = adapt_plan(
        candidate.record.plan_json,
        candidate.record.context,
        context,
        candidate.similarity.score,
        settings,
        start_date=week_start_date(context, week_number),
        min_similarity=min_similarity,
    )
    if adapted is None:
        return None
    plan_cache.save_plan(context, week_number, adapted.plan, source=CACHE_SOURCE_ADAPTED)
    return WeekResult(
        plan=adapted.plan,
        source=DECISION_CACHE_ADAPTED,
        similarity=candidate.similarity.score,
        adaptations=adapted.adaptations,
        cached_plan_id=candidate.record.id,
    )


def generate_week(
    context: Mapping[str, Any],
    week_number: int,
    *,
    user_id: int | None = None,
    user_tier: str = "free",
    strategy: str = STRATEGY_CHUNKED,
    settings: EngineSettings | None = None,
    client=None,
    sleep: Callable[[float], None] = time.sleep,
) -> WeekResult:
    """Serve one week for `context`, writing any fresh generation through to the cache."""

    settings = settings or get_engine_settings()
    started = time.perf_counter()
    logger = current_app.logger
    candidate = _best_candidate(context, week_number, settings)
    reasons: List[str] = []
    if candidate:
        reasons.append(f"best_similarity={candidate.similarity.score:.3f}")
        reasons.extend(f"mismatch:{name}" for name in candidate.similarity.mismatches)

    hazard = serving_hazard(candidate.record.context, context) if candidate else None
    if hazard:
        reasons.append(f"exact_blocked:{hazard}")

    if candidate and not hazard and candidate.similarity.score >= settings.exact_threshold:
        plan_cache.increment_access_count(candidate.record.id)
        plan = rebase_dates(copy.deepcopy(candidate.record.plan_json), week_start_date(context, week_number))
        result = WeekResult(
            plan=plan,
            source=DECISION_CACHE_EXACT,
            similarity=candidate.similarity.score,
            cached_plan_id=candidate.record.id,
        )
        return _finish(result, started=started, user_id=user_id, week_number=week_number, reasons=reasons, estimated_cost=0.0)

    budget = budget_status(settings, user_tier)
    if budget.exhausted:
        reasons.append(f"degraded:{budget.reason}")
        logger.warning("Budget gate active (%s); serving week %s from cache only", budget.reason, week_number)
        adapted = (
            _try_adapt(candidate, context, week_number, settings, settings.low_threshold)
            if candidate
            else None
        )
        if adapted is None:
            raise BudgetExhausted(f"{budget.reason}; no safe cached plan for week {week_number}")
        return _finish(adapted, started=started, user_id=user_id, week_number=week_number, reasons=reasons, estimated_cost=0.0)

    if candidate and candidate.similarity.score >= settings.adapt_threshold:
        adapted = _try_adapt(candidate, context, week_number, settings, settings.adapt_threshold)
        if adapted is not None:
            plan_cache.increment_access_count(candidate.record.id)
            return _finish(adapted, started=started, user_id=user_id, week_number=week_number, reasons=reasons, estimated_cost=0.0)
        reasons.append("adaptation_rejected")

    client = client or get_ai_client()
    try:
        generated = generate_week_plan(
            context,
            week_number,
            settings=settings,
            client=client,
            strategy=strategy,
            sleep=sleep,
            user_id=user_id,
        )
    except Exception as exc:
        if isinstance(exc, QuotaExceeded):
            mark_quota_exhausted()
        log_decision(
            user_id=user_id,
            week_number=week_number,
            decision=DECISION_AI,
            response_time_ms=_elapsed_ms(started),
            similarity=candidate.similarity.score if candidate else None,
            reasons=reasons,
            estimated_cost_usd=settings.cost_per_generation_usd,
            success=False,
            error=str(exc)[:1000],
        )
        raise
    plan_cache.save_plan(
        context,
        week_number,
        generated.plan,
        source=CACHE_SOURCE_AI,
        model=generated.model,
        cost_usd=generated.cost_usd,
        tokens_used=generated.tokens_used,
    )
    result = WeekResult(
        plan=generated.plan,
        source=DECISION_AI,
        cost_usd=generated.cost_usd,
        similarity=candidate.similarity.score if candidate else None,
        model=generated.model,
    )
    return _finish(
        result,
        started=started,
        user_id=user_id,
        week_number=week_number,
        reasons=reasons,
        estimated_cost=settings.cost_per_generation_usd,
    )
