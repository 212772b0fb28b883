"""Background completion of the weeks that follow week 1."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Tuple

from flask import current_app
from werkzeug.exceptions import NotFound

from ..extensions import db
from ..models import GenerationLog, TrainingPlan, User, WeeklyPlan
from ..models.planning import PLAN_ACTIVE, WEEK_ERROR
from ..services.generation_pipeline import QuotaExceeded
from ..services.plan_events import notify_plan_regenerated
from ..services.plan_persistence import active_plan
from ..services.planning_service import run_week, user_tier
from ..services.week_state import (
    WeekConflict,
    WeekSuperseded,
    claim_week,
    mark_pending,
    stale_generating_weeks,
)
from ..utils import commit_with_retry

# One continuation per user: user_id -> (plan_id, thread)
_CONTINUATIONS: Dict[int, Tuple[int, threading.Thread]] = {}
_CONTINUATION_LOCK = threading.Lock()


def _log_failed_week(user_id: int, week_number: int, exc: Exception) -> None:
    def _write():
        db.session.add(
            GenerationLog(
                user_id=user_id,
                week_number=week_number,
                purpose="background_week",
                model=None,
                attempt=0,
                success=False,
                error=f"{type(exc).__name__}: {exc}"[:2000],
                tokens_used=0,
                cost_usd=0.0,
                duration_ms=0,
            )
        )

    commit_with_retry(_write)


def _failed_week_count(plan_id: int) -> int:
    return WeeklyPlan.query.filter_by(plan_id=plan_id, generation_status=WEEK_ERROR).count()


def generate_remaining_weeks(
    user_id: int,
    plan_id: int,
    start_week: int = 2,
    *,
    tier: str = "free",
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, List[int]]:
    """Walk the plan's weeks in order; one failing week never stops the rest."""

    summary: Dict[str, List[int]] = {"generated": [], "failed": [], "skipped": []}
    plan = db.session.get(TrainingPlan, plan_id)
    if plan is None:
        return summary

    logger = current_app.logger
    inter_week_delay = float(current_app.config.get("PLAN_INTER_WEEK_DELAY_SEC", 5))
    quota_backoff = float(current_app.config.get("PLAN_QUOTA_BACKOFF_SEC", 30))
    context = plan.context
    total_weeks = plan.total_weeks

    for week_number in range(max(1, start_week), total_weeks + 1):
        db.session.refresh(plan)
        if plan.status != PLAN_ACTIVE:
            logger.info("Plan %s was archived; stopping continuation for user %s", plan_id, user_id)
            return summary
        try:
            week = claim_week(user_id, week_number, plan_id=plan_id)
        except (WeekConflict, NotFound):
            summary["skipped"].append(week_number)
            continue

        try:
            run_week(user_id, week_number, context, week_id=week.id, tier=tier)
            summary["generated"].append(week_number)
        except WeekSuperseded:
            summary["skipped"].append(week_number)
            continue
        except Exception as exc:
            logger.exception("Background generation of week %s for user %s failed", week_number, user_id)
            db.session.rollback()
            summary["failed"].append(week_number)
            _log_failed_week(user_id, week_number, exc)
            if isinstance(exc, QuotaExceeded) and quota_backoff:
                sleep(quota_backoff)

        if week_number < total_weeks and inter_week_delay:
            sleep(inter_week_delay)

    if plan.is_regeneration and (summary["generated"] or summary["failed"] or start_week > total_weeks):
        failed = _failed_week_count(plan_id)
        notify_plan_regenerated(user_id, plan_id, total_weeks, failed)
        logger.info(
            "Regenerated plan %s for user %s complete (%s failed weeks)", plan_id, user_id, failed
        )
    return summary


def _run_continuation_async(app, user_id: int, plan_id: int, start_week: int, tier: str) -> bool:
    def _runner():
        try:
            with app.app_context():
                try:
                    generate_remaining_weeks(user_id, plan_id, start_week, tier=tier)
                finally:
                    db.session.remove()
        finally:
            with _CONTINUATION_LOCK:
                entry = _CONTINUATIONS.get(user_id)
                if entry and entry[1] is threading.current_thread():
                    _CONTINUATIONS.pop(user_id, None)

    with _CONTINUATION_LOCK:
        entry = _CONTINUATIONS.get(user_id)
        if entry and entry[0] == plan_id and entry[1].is_alive():
            return False
        thread = threading.Thread(target=_runner, name=f"plan-weeks-{user_id}", daemon=True)
        _CONTINUATIONS[user_id] = (plan_id, thread)
    thread.start()
    return True


def dispatch_remaining_weeks(user_id: int, plan_id: int, start_week: int = 2, *, tier: str = "free") -> bool:
    """Run the continuation synchronously in tests, on a daemon thread otherwise."""

    app = current_app._get_current_object()
    if app.config.get("TESTING") or app.config.get("PLAN_JOBS_SYNC"):
        generate_remaining_weeks(user_id, plan_id, start_week, tier=tier)
        return True
    return _run_continuation_async(app, user_id, plan_id, start_week, tier)


def requeue_stale_weeks(max_age_seconds: int | None = None) -> List[Tuple[int, int]]:
    """Release weeks stuck in ``generating`` after a crash and resume their owners."""

    if max_age_seconds is None:
        max_age_seconds = int(current_app.config.get("PLAN_STALE_GENERATING_SECONDS", 900))
    released = mark_pending(stale_generating_weeks(max_age_seconds))
    if not released:
        return released

    first_week: Dict[int, int] = {}
    for user_id, week_number in released:
        first_week[user_id] = min(week_number, first_week.get(user_id, week_number))
    current_app.logger.warning("Requeued %s stale weeks for %s users", len(released), len(first_week))
    for user_id, week_number in first_week.items():
        plan = active_plan(user_id)
        if plan is None:
            continue
        tier = user_tier(db.session.get(User, user_id))
        dispatch_remaining_weeks(user_id, plan.id, start_week=week_number, tier=tier)
    return released


def schedule_stale_week_sweep(app) -> None:
    """On server start, release and resume weeks whose worker died mid-generation."""

    if app.config.get("TESTING"):
        return

    @app.before_request
    def _requeue_stale_weeks():  # pragma: no cover - startup hook
        if app.extensions.get("plan_sweep_done"):
            return
        app.extensions["plan_sweep_done"] = True
        try:
            requeue_stale_weeks()
        except Exception as exc:
            db.session.rollback()
            current_app.logger.warning("Stale week sweep failed: %s", exc)


__all__ = [
    "dispatch_remaining_weeks",
    "generate_remaining_weeks",
    "requeue_stale_weeks",
    "schedule_stale_week_sweep",
]
