"""Tests for plan versions and week persistence."""

from __future__ import annotations

import pytest

from fitplan_app.models import Meal, TrainingPlan, UserGoals, UserProfile, WeeklyPlan, Workout
from fitplan_app.services.plan_persistence import active_plan, persist_week, start_plan
from fitplan_app.services.planning_context import build_planning_context
from fitplan_app.services.week_state import (
    Generated,
    WeekSuperseded,
    active_week,
    claim_week,
    mark_failed,
    status_of,
)


@pytest.fixture()
def context(app_with_db, user_id, answers):
    return build_planning_context(user_id, answers())


def test_start_plan_creates_pending_weeks(context, user_id):
    plan = start_plan(user_id, context)

    assert plan.version == 1
    assert plan.total_weeks == 12
    assert [week.generation_status for week in plan.weeks] == ["pending"] * 12
    assert plan.weeks[0].phase == "base"
    assert plan.weeks[-1].phase == "taper"
    assert plan.weeks[1].start_date.isoformat() == "2026-01-12"


def test_persisting_twice_keeps_one_copy(context, user_id, week_plan):
    plan = start_plan(user_id, context)
    week = week_plan(context)

    claim_week(user_id, 1)
    persist_week(user_id, 1, week, context=context, source="ai")
    claim_week(user_id, 1, allow_from=("generated",))
    persist_week(user_id, 1, week, context=context, source="cache_exact")

    rows = WeeklyPlan.query.filter_by(plan_id=plan.id, week_number=1).all()
    assert len(rows) == 1
    assert rows[0].source == "cache_exact"
    assert isinstance(status_of(rows[0]), Generated)
    assert Meal.query.filter_by(weekly_plan_id=rows[0].id).count() == 14
    assert Workout.query.filter_by(weekly_plan_id=rows[0].id).count() == 4


def test_first_week_snapshots_the_user(context, user_id, week_plan):
    start_plan(user_id, context)
    claim_week(user_id, 1)
    persist_week(user_id, 1, week_plan(context), context=context, source="ai")

    profile = UserProfile.query.filter_by(user_id=user_id).one()
    goals = UserGoals.query.filter_by(user_id=user_id).one()
    assert profile.weight_kg == 80
    assert profile.days_per_week == 4
    assert goals.primary_goal == "cut"
    assert goals.training_day_calories == 2428


def test_later_weeks_do_not_touch_the_profile(context, user_id, week_plan):
    start_plan(user_id, context)
    row = claim_week(user_id, 2)
    persist_week(user_id, 2, week_plan(context, 2), context=context, source="ai", week_id=row.id)
    assert UserProfile.query.filter_by(user_id=user_id).count() == 0
    assert active_week(user_id, 2).start_date.isoformat() == "2026-01-12"


def test_regeneration_archives_previous_version(context, user_id, week_plan):
    first = start_plan(user_id, context)
    claim_week(user_id, 1)
    persist_week(user_id, 1, week_plan(context), context=context, source="ai")

    second = start_plan(user_id, context, is_regeneration=True)

    archived = TrainingPlan.query.filter_by(id=first.id).one()
    assert archived.status == "archived"
    assert archived.archived_at is not None
    assert {week.status for week in archived.weeks} == {"archived"}
    assert archived.weeks[0].plan_json is not None
    assert second.version == 2
    assert second.is_regeneration is True
    assert active_plan(user_id).id == second.id
    assert active_week(user_id, 1).plan_id == second.id


def test_persisting_without_active_week_fails(context, user_id, week_plan):
    with pytest.raises(LookupError):
        persist_week(user_id, 1, week_plan(context), context=context, source="ai")


def test_unclaimed_week_is_not_written(context, user_id, week_plan):
    start_plan(user_id, context)

    with pytest.raises(WeekSuperseded):
        persist_week(user_id, 3, week_plan(context, 3), context=context, source="ai")

    row = active_week(user_id, 3)
    assert row.generation_status == "pending"
    assert row.plan_json is None
    assert Meal.query.count() == 0


def test_result_claimed_before_regeneration_is_discarded(context, user_id, week_plan):
    first = start_plan(user_id, context)
    claimed = claim_week(user_id, 2)
    second = start_plan(user_id, context, is_regeneration=True)

    with pytest.raises(WeekSuperseded):
        persist_week(
            user_id, 2, week_plan(context, 2), context=context, source="ai", week_id=claimed.id
        )
    with pytest.raises(WeekSuperseded):
        persist_week(user_id, 2, week_plan(context, 2), context=context, source="ai")

    replacement = active_week(user_id, 2)
    assert replacement.plan_id == second.id
    assert replacement.generation_status == "pending"
    assert replacement.plan_json is None
    old = WeeklyPlan.query.filter_by(plan_id=first.id, week_number=2).one()
    assert old.plan_json is None
    assert Meal.query.count() == 0


def test_failure_after_regeneration_leaves_new_plan_alone(context, user_id):
    start_plan(user_id, context)
    claimed = claim_week(user_id, 2)
    start_plan(user_id, context, is_regeneration=True)

    assert mark_failed(user_id, 2, "All models failed", week_id=claimed.id) is False
    assert active_week(user_id, 2).generation_status == "pending"
    assert active_week(user_id, 2).generation_error is None
