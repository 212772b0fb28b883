"""Write plan versions and generated weeks to the relational store."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Mapping

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..metrics import record_week_status
from ..models import Meal, TrainingPlan, UserGoals, UserProfile, WeeklyPlan, Workout
from ..models.planning import PLAN_ACTIVE, PLAN_ARCHIVED, WEEK_GENERATED, WEEK_PENDING
from ..models.user import utcnow
from ..utils import commit_with_retry
from .planning_context import phase_for_week, week_start_date
from .plan_events import publish_week_status
from .week_state import WeekSuperseded, active_week, complete_claim, mark_failed


def active_plan(user_id: int) -> TrainingPlan | None:
    return (
        TrainingPlan.query.filter_by(user_id=user_id, status=PLAN_ACTIVE)
        .order_by(TrainingPlan.version.desc())
        .first()
    )


def start_plan(user_id: int, context: Mapping[str, Any], *, is_regeneration: bool = False) -> TrainingPlan:
    """Archive the active plan (rows are kept) and open a new version with pending weeks."""

    planning = context["planning"]
    total_weeks = int(planning.get("total_weeks") or context["objective"]["target_timeline"])

    def _write() -> TrainingPlan:
        now = utcnow()
        for previous in TrainingPlan.query.filter_by(user_id=user_id, status=PLAN_ACTIVE).all():
            previous.status = PLAN_ARCHIVED
            previous.archived_at = now
            for week in previous.weeks:
                week.status = PLAN_ARCHIVED
        latest = (
            db.session.query(func.max(TrainingPlan.version))
            .filter(TrainingPlan.user_id == user_id)
            .scalar()
        )
        plan = TrainingPlan(
            user_id=user_id,
            version=(latest or 0) + 1,
            status=PLAN_ACTIVE,
            context=dict(context),
            total_weeks=total_weeks,
            start_date=week_start_date(context, 1),
            is_regeneration=is_regeneration,
        )
        db.session.add(plan)
        for week_number in range(1, total_weeks + 1):
            start = week_start_date(context, week_number)
            plan.weeks.append(
                WeeklyPlan(
                    user_id=user_id,
                    week_number=week_number,
                    status=PLAN_ACTIVE,
                    phase=phase_for_week(planning["phases"], week_number),
                    start_date=start,
                    end_date=start + timedelta(days=6),
                    generation_status=WEEK_PENDING,
                )
            )
        return plan

    plan = commit_with_retry(_write)
    current_app.logger.info(
        "Started plan v%s for user %s (%s weeks%s)",
        plan.version,
        user_id,
        total_weeks,
        ", regeneration" if is_regeneration else "",
    )
    return plan


def _as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _sync_workouts(row: WeeklyPlan, user_id: int, days) -> None:
    training: Dict[date, Mapping[str, Any]] = {}
    for day in days:
        day_date = _as_date(day.get("date"))
        if day_date and day.get("is_training_day") and day.get("workout"):
            training[day_date] = day["workout"]

    existing = {workout.date: workout for workout in row.workouts}
    for day_date, workout in existing.items():
        if day_date not in training:
            db.session.delete(workout)
    for day_date, payload in training.items():
        workout = existing.get(day_date)
        if workout is None:
            workout = Workout(weekly_plan_id=row.id, user_id=user_id, date=day_date)
            db.session.add(workout)
        workout.title = payload.get("title")
        workout.workout_type = payload.get("workout_type")
        workout.duration_minutes = payload.get("duration_minutes")
        workout.intensity = payload.get("intensity")
        workout.exercises = list(payload.get("exercises") or [])


def _replace_meals(row: WeeklyPlan, user_id: int, days) -> None:
    Meal.query.filter_by(weekly_plan_id=row.id).delete(synchronize_session=False)
    for day in days:
        day_date = _as_date(day.get("date"))
        if day_date is None:
            continue
        meals = (day.get("nutrition") or {}).get("meals") or []
        for position, meal in enumerate(meals):
            db.session.add(
                Meal(
                    weekly_plan_id=row.id,
                    user_id=user_id,
                    date=day_date,
                    position=position,
                    meal_type=meal.get("meal_type"),
                    name=meal.get("name") or meal.get("meal_type") or "meal",
                    calories=int(meal.get("calories") or 0),
                    protein=float(meal.get("protein") or 0),
                    carbs=float(meal.get("carbs") or 0),
                    fat=float(meal.get("fat") or 0),
                    fiber=float(meal.get("fiber") or 0),
                    ingredients=list(meal.get("ingredients") or []),
                )
            )


def _upsert_user_snapshot(user_id: int, context: Mapping[str, Any]) -> None:
    biometrics = context["biometrics"]
    training = context["training"]
    nutrition = context["nutrition"]
    objective = context["objective"]
    targets = context["targets"]

    profile = UserProfile.query.filter_by(user_id=user_id).first()
    if profile is None:
        profile = UserProfile(user_id=user_id)
        db.session.add(profile)
    profile.age = biometrics.get("age")
    profile.gender = biometrics.get("gender")
    profile.weight_kg = biometrics.get("weight")
    profile.height_cm = biometrics.get("height")
    profile.body_fat = biometrics.get("body_fat")
    profile.activity_level = context["activity"].get("daily_activity_level")
    profile.experience_level = training.get("experience_level")
    profile.sport_type = training.get("sport_type")
    profile.days_per_week = training.get("days_per_week")
    profile.session_duration = training.get("session_duration")
    profile.diet_type = nutrition.get("diet_type")
    profile.meals_per_day = nutrition.get("meals_per_day")
    profile.allergies = list(nutrition.get("allergies") or [])
    profile.intolerances = list(nutrition.get("intolerances") or [])
    profile.excluded_foods = list(nutrition.get("excluded_foods") or [])

    goals = UserGoals.query.filter_by(user_id=user_id).first()
    if goals is None:
        goals = UserGoals(user_id=user_id)
        db.session.add(goals)
    goals.primary_goal = objective.get("primary_goal")
    goals.target_timeline_weeks = objective.get("target_timeline")
    goals.has_competition = bool(objective.get("has_competition"))
    goals.competition_type = objective.get("competition_type")
    goals.target_date = _as_date(objective.get("target_date"))
    goals.training_day_calories = targets["calories"].get("training_day")
    goals.rest_day_calories = targets["calories"].get("rest_day")
    goals.protein_g = targets["macros"].get("protein")
    goals.carbs_g = targets["macros"].get("carbs")
    goals.fat_g = targets["macros"].get("fat")
    goals.fiber_g = targets["macros"].get("fiber")


def persist_week(
    user_id: int,
    week_number: int,
    plan: Mapping[str, Any],
    *,
    context: Mapping[str, Any],
    source: str,
    week_id: int | None = None,
) -> WeeklyPlan:
    """Store a generated week as one unit.

    The write only lands on a row that is still ``generating`` inside an active plan;
    ``week_id`` pins the row the caller claimed, otherwise the active week is used.
    A lost claim raises WeekSuperseded and leaves every row untouched. Any other
    failure marks the week ``error`` and is re-raised.
    """

    if week_id is None:
        current = active_week(user_id, week_number)
        if current is None:
            raise LookupError(f"No active week {week_number} for user {user_id}")
        week_id = current.id
    days = list(plan.get("days") or [])

    def _write() -> WeeklyPlan:
        row = db.session.get(WeeklyPlan, week_id)
        if row is None:
            raise LookupError(f"No week {week_id} for user {user_id}")
        payload = dict(plan)
        stored = complete_claim(
            week_id,
            payload,
            source,
            phase=payload.get("phase"),
            start_date=_as_date(payload.get("start_date")),
            end_date=_as_date(payload.get("end_date")),
        )
        if not stored:
            raise WeekSuperseded(week_number)
        _sync_workouts(row, user_id, days)
        _replace_meals(row, user_id, days)
        if week_number == 1:
            _upsert_user_snapshot(user_id, context)
        return row

    try:
        row = commit_with_retry(_write)
    except WeekSuperseded:
        current_app.logger.info(
            "Discarded week %s for user %s: its claim was superseded", week_number, user_id
        )
        raise
    except Exception as exc:
        db.session.rollback()
        mark_failed(user_id, week_number, f"Persisting week failed: {exc}", week_id=week_id)
        raise

    record_week_status(WEEK_GENERATED)
    publish_week_status(user_id, week_number, WEEK_GENERATED)
    current_app.logger.info(
        "Persisted week %s for user %s from %s",
        week_number,
        user_id,
        source,
        extra={"user_id": user_id, "week_number": week_number, "source": source},
    )
    return row
