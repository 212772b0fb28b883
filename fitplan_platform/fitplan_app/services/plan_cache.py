"""Repository of previously generated week plans."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping

from sqlalchemy import func, or_, update

from ..extensions import db
from ..models import CachedPlan
from ..models.plan_cache import CACHE_SOURCE_ADAPTED, CACHE_SOURCE_AI
from ..utils import commit_with_retry
from .fingerprint import compound_key, exact_hash, semantic_fingerprint, semantic_hash


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def save_plan(
    context: Mapping[str, Any],
    week_number: int,
    plan: Mapping[str, Any],
    *,
    source: str = CACHE_SOURCE_AI,
    model: str | None = None,
    cost_usd: float = 0.0,
    tokens_used: int = 0,
) -> CachedPlan:
    """Write-through insert; an identical context for the same week replaces the stored plan."""

    fingerprint = semantic_fingerprint(context)
    key = exact_hash(context)

    def _write() -> CachedPlan:
        record = CachedPlan.query.filter_by(exact_hash=key, week_number=week_number).first()
        if record is None:
            record = CachedPlan(exact_hash=key, week_number=week_number, access_count=0)
            db.session.add(record)
        record.semantic_hash = semantic_hash(fingerprint)
        record.compound_key = compound_key(context)
        record.phase = plan.get("phase")
        record.fingerprint = fingerprint
        record.context = dict(context)
        record.plan_json = dict(plan)
        record.source = source
        record.model = model
        record.cost_usd = cost_usd
        record.tokens_used = tokens_used
        record.last_used_at = _utcnow()
        return record

    return commit_with_retry(_write)


def preload_plan(context: Mapping[str, Any], week_number: int, plan: Mapping[str, Any]) -> CachedPlan:
    """Seed the cache with a curated plan (e.g. hand-reviewed archetypes)."""

    return save_plan(context, week_number, plan, source=CACHE_SOURCE_AI, cost_usd=0.0)


def find_exact_match(context: Mapping[str, Any], week_number: int) -> CachedPlan | None:
    return CachedPlan.query.filter_by(
        exact_hash=exact_hash(context), week_number=week_number
    ).first()


def has_cached_plan(context: Mapping[str, Any], week_number: int) -> bool:
    return find_exact_match(context, week_number) is not None


def find_candidates(context: Mapping[str, Any], week_number: int, limit: int = 20) -> List[CachedPlan]:
    """Exact match first, then semantic-hash matches, then compound-key neighbours."""

    fingerprint = semantic_fingerprint(context)
    candidates: List[CachedPlan] = []
    seen: set[int] = set()

    def _extend(records):
        for record in records:
            if record.id not in seen and len(candidates) < limit:
                seen.add(record.id)
                candidates.append(record)

    exact = find_exact_match(context, week_number)
    if exact:
        _extend([exact])
    _extend(
        CachedPlan.query.filter(
            CachedPlan.week_number == week_number,
            or_(
                CachedPlan.semantic_hash == semantic_hash(fingerprint),
                CachedPlan.compound_key == compound_key(context),
            ),
        )
        .order_by(
            (CachedPlan.semantic_hash == semantic_hash(fingerprint)).desc(),
            CachedPlan.access_count.desc(),
        )
        .limit(limit)
        .all()
    )
    return candidates


def increment_access_count(record_id: int) -> None:
    """Single UPDATE so concurrent hits never lose an increment."""

    def _write():
        db.session.execute(
            update(CachedPlan)
            .where(CachedPlan.id == record_id)
            .values(access_count=CachedPlan.access_count + 1, last_used_at=_utcnow())
            .execution_options(synchronize_session=False)
        )

    commit_with_retry(_write)


def cleanup_old_plans(ttl_days: int = 90) -> int:
    cutoff = _utcnow() - timedelta(days=ttl_days)

    def _write() -> int:
        return CachedPlan.query.filter(CachedPlan.last_used_at < cutoff).delete(
            synchronize_session=False
        )

    return commit_with_retry(_write) or 0


def cache_stats() -> Dict[str, Any]:
    total, archetypes, avg_access = db.session.query(
        func.count(CachedPlan.id),
        func.count(func.distinct(CachedPlan.semantic_hash)),
        func.avg(CachedPlan.access_count),
    ).one()
    by_source = dict(
        db.session.query(CachedPlan.source, func.count(CachedPlan.id)).group_by(CachedPlan.source).all()
    )
    return {
        "total_plans": total or 0,
        "unique_archetypes": archetypes or 0,
        "avg_access_count": round(float(avg_access or 0), 2),
        "ai_generated": by_source.get(CACHE_SOURCE_AI, 0),
        "adapted": by_source.get(CACHE_SOURCE_ADAPTED, 0),
    }
