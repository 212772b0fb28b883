"""Plan lifecycle operations used by the HTTP layer, the CLI and the background scheduler."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping

from flask import current_app
from werkzeug.exceptions import BadRequest, Conflict, NotFound

from ..extensions import db
from ..models import TrainingPlan, User, WeeklyPlan
from ..models.planning import WEEK_ERROR, WEEK_GENERATED, WEEK_GENERATING, WEEK_PENDING
from .engine_settings import get_engine_settings
from .generation_pipeline import STRATEGY_CHUNKED, STRATEGY_FULL_WEEK
from .plan_analytics import analytics_report
from .plan_cache import cache_stats
from .plan_orchestrator import WeekResult, generate_week
from .plan_persistence import active_plan, persist_week, start_plan
from .plan_prompts import training_days_for_week
from .planning_context import WEEKDAYS, build_planning_context
from .week_state import active_week, claim_week, describe, mark_failed, status_of


class PlanNotFound(NotFound):
    """The user has no active training plan."""

    description = "No active training plan"


class WeekNotReady(Conflict):
    """The requested week exists but has not been generated yet."""


def _resolve_today() -> date:
    return datetime.now(timezone.utc).date()


def _require_plan(user_id: int) -> TrainingPlan:
    plan = active_plan(user_id)
    if plan is None:
        raise PlanNotFound()
    return plan


def user_tier(user: User | None) -> str:
    return (getattr(user, "tier", None) or "free").lower()


def serialize_week(row: WeeklyPlan, result: WeekResult | None = None) -> Dict[str, Any]:
    status = status_of(row)
    data = {
        "week_number": row.week_number,
        "phase": row.phase,
        "start_date": row.start_date.isoformat() if row.start_date else None,
        "end_date": row.end_date.isoformat() if row.end_date else None,
        "source": row.source,
        **describe(status),
        "plan": row.plan_json if status.name == WEEK_GENERATED else None,
    }
    if result is not None:
        data["decision"] = {
            "source": result.source,
            "similarity": result.similarity,
            "adaptations": result.adaptations,
            "cost_usd": result.cost_usd,
            "response_time_ms": result.response_time_ms,
            "model": result.model,
        }
    return data


def run_week(
    user_id: int,
    week_number: int,
    context: Mapping[str, Any],
    *,
    week_id: int | None = None,
    tier: str = "free",
    strategy: str = STRATEGY_CHUNKED,
) -> WeekResult:
    """Produce and store a week the caller has already claimed.

    ``week_id`` is the row returned by ``claim_week``; results and failures are only
    written to that row while the claim still holds.
    """

    try:
        result = generate_week(
            context,
            week_number,
            user_id=user_id,
            user_tier=tier,
            strategy=strategy,
        )
    except Exception as exc:
        db.session.rollback()
        mark_failed(user_id, week_number, str(exc), week_id=week_id)
        raise
    persist_week(
        user_id, week_number, result.plan, context=context, source=result.source, week_id=week_id
    )
    return result


def _start_and_generate_first_week(
    user: User,
    answers: Mapping[str, Any],
    *,
    is_regeneration: bool,
    strategy: str,
) -> Dict[str, Any]:
    from ..tasks.plan_tasks import dispatch_remaining_weeks  # local import to avoid circular dependency

    context = build_planning_context(user.id, answers, today=_resolve_today())
    plan = start_plan(user.id, context, is_regeneration=is_regeneration)
    plan_id = plan.id
    week = claim_week(user.id, 1)
    result = run_week(user.id, 1, context, week_id=week.id, tier=user_tier(user), strategy=strategy)
    dispatch_remaining_weeks(user.id, plan_id, start_week=2, tier=user_tier(user))

    plan = db.session.get(TrainingPlan, plan_id)
    return {
        "plan_id": plan.id,
        "version": plan.version,
        "total_weeks": plan.total_weeks,
        "anomalies": context["meta"]["anomalies"],
        "week": serialize_week(active_week(user.id, 1), result),
        "status": plan_status(user.id),
    }


def init_plan(user: User, answers: Mapping[str, Any]) -> Dict[str, Any]:
    """Create a plan from onboarding answers; week 1 is ready on return, the rest is queued."""

    return _start_and_generate_first_week(
        user, answers, is_regeneration=False, strategy=STRATEGY_CHUNKED
    )


def regenerate_plan(user: User, answers: Mapping[str, Any]) -> Dict[str, Any]:
    """Archive the active plan and rebuild it; week 1 uses a single full-week request."""

    _require_plan(user.id)
    current_app.logger.info("Regenerating plan for user %s", user.id, extra={"user_id": user.id})
    return _start_and_generate_first_week(
        user, answers, is_regeneration=True, strategy=STRATEGY_FULL_WEEK
    )


def generate_week_for_user(user: User, week_number: int) -> Dict[str, Any]:
    plan = _require_plan(user.id)
    if not 1 <= week_number <= plan.total_weeks:
        raise NotFound(f"Week {week_number} not found")
    row = claim_week(user.id, week_number, allow_from=(WEEK_PENDING, WEEK_ERROR))
    result = run_week(user.id, week_number, plan.context, week_id=row.id, tier=user_tier(user))
    db.session.refresh(row)
    return serialize_week(row, result)


def retry_week(user: User, week_number: int) -> Dict[str, Any]:
    plan = _require_plan(user.id)
    row = active_week(user.id, week_number)
    if row is None:
        raise NotFound(f"Week {week_number} not found")
    if row.generation_status != WEEK_ERROR:
        raise BadRequest(f"Week {week_number} is {row.generation_status}; only failed weeks can be retried")
    row = claim_week(user.id, week_number, allow_from=(WEEK_ERROR,))
    result = run_week(user.id, week_number, plan.context, week_id=row.id, tier=user_tier(user))
    db.session.refresh(row)
    return serialize_week(row, result)


def get_week(user_id: int, week_number: int) -> Dict[str, Any]:
    _require_plan(user_id)
    row = active_week(user_id, week_number)
    if row is None:
        raise NotFound(f"Week {week_number} not found")
    status = status_of(row)
    if status.name != WEEK_GENERATED:
        raise WeekNotReady(f"Week {week_number} is {status.name}")
    return serialize_week(row)


def plan_status(user_id: int) -> Dict[str, Any]:
    plan = _require_plan(user_id)
    weeks: List[Dict[str, Any]] = []
    counts = {WEEK_GENERATED: 0, WEEK_PENDING: 0, WEEK_GENERATING: 0, WEEK_ERROR: 0}
    for row in plan.weeks:
        described = describe(status_of(row))
        counts[described["status"]] += 1
        weeks.append({"week_number": row.week_number, **described})
    return {
        "plan_id": plan.id,
        "version": plan.version,
        "total_weeks": plan.total_weeks,
        "generated_weeks": counts[WEEK_GENERATED],
        "pending_weeks": counts[WEEK_PENDING] + counts[WEEK_GENERATING],
        "failed_weeks": counts[WEEK_ERROR],
        "weeks": weeks,
        "is_complete": counts[WEEK_GENERATED] == plan.total_weeks,
    }


def _skeleton_days(row: WeeklyPlan, context: Mapping[str, Any]) -> List[Dict[str, Any]]:
    if row.generation_status == WEEK_GENERATED and row.plan_json:
        days = []
        for day in row.plan_json.get("days") or []:
            workout = day.get("workout") or {}
            days.append(
                {
                    "date": day.get("date"),
                    "day_of_week": day.get("day_of_week"),
                    "has_workout": bool(day.get("is_training_day") and workout),
                    "workout_type": workout.get("workout_type"),
                    "workout_duration": workout.get("duration_minutes"),
                    "target_calories": (day.get("nutrition") or {}).get("target_calories"),
                }
            )
        return days

    # Not generated yet: project the schedule from the context.
    training_dates = set(training_days_for_week(context, row.start_date))
    calories = context["targets"]["calories"]
    days = []
    for offset in range(7):
        current = row.start_date + timedelta(days=offset)
        is_training = current.isoformat() in training_dates
        days.append(
            {
                "date": current.isoformat(),
                "day_of_week": WEEKDAYS[current.weekday()],
                "has_workout": is_training,
                "workout_type": None,
                "workout_duration": context["training"]["session_duration"] if is_training else None,
                "target_calories": calories["training_day"] if is_training else calories["rest_day"],
            }
        )
    return days


def plan_skeleton(user_id: int, today: date | None = None) -> Dict[str, Any]:
    """Calendar outline of every week without the day content."""

    plan = _require_plan(user_id)
    today = today or _resolve_today()
    end_date = plan.start_date + timedelta(days=7 * plan.total_weeks - 1)
    elapsed = (today - plan.start_date).days
    current_week = min(plan.total_weeks, max(1, elapsed // 7 + 1))
    return {
        "plan_id": plan.id,
        "total_weeks": plan.total_weeks,
        "current_week": current_week,
        "start_date": plan.start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "weeks": [
            {
                "week_number": row.week_number,
                "phase": row.phase,
                "status": status_of(row).name,
                "start_date": row.start_date.isoformat(),
                "end_date": row.end_date.isoformat(),
                "days": _skeleton_days(row, plan.context),
            }
            for row in plan.weeks
        ],
    }


def cache_overview(days: int = 7) -> Dict[str, Any]:
    settings = get_engine_settings()
    return {
        "cache": cache_stats(),
        "performance": analytics_report(days, settings.cost_per_generation_usd),
    }
