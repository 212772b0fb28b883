"""Tests for background week continuation and the stale-week sweep."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from fitplan_app.extensions import db
from fitplan_app.models import GenerationLog
from fitplan_app.services import planning_service
from fitplan_app.services.ai_client import UpstreamError
from fitplan_app.services.plan_events import plan_event_broker
from fitplan_app.services.plan_persistence import start_plan
from fitplan_app.services.planning_context import build_planning_context
from fitplan_app.services.week_state import active_week, claim_week
from fitplan_app.tasks.plan_tasks import generate_remaining_weeks, requeue_stale_weeks


def _fatal():
    return UpstreamError("invalid argument", status_code=400)


@pytest.fixture()
def context(app_with_db, user_id, answers):
    return build_planning_context(user_id, answers())


def test_failing_week_does_not_stop_the_rest(context, user_id, planner):
    plan = start_plan(user_id, context)
    planner.script = [_fatal(), _fatal()]

    summary = generate_remaining_weeks(user_id, plan.id, start_week=2)

    assert summary == {"generated": list(range(3, 13)), "failed": [2], "skipped": []}
    failed = active_week(user_id, 2)
    assert failed.generation_status == "error"
    assert failed.generation_error.startswith("Failed to generate days 1-2")
    assert active_week(user_id, 12).generation_status == "generated"
    assert active_week(user_id, 1).generation_status == "pending"
    log = GenerationLog.query.filter_by(purpose="background_week").one()
    assert log.week_number == 2
    assert log.success is False
    assert log.error.startswith("GenerationFailed")


def test_claimed_weeks_are_skipped(context, user_id, planner):
    plan = start_plan(user_id, context)
    claim_week(user_id, 11)

    summary = generate_remaining_weeks(user_id, plan.id, start_week=10)

    assert summary == {"generated": [10, 12], "failed": [], "skipped": [11]}
    assert active_week(user_id, 11).generation_status == "generating"


def test_archived_plan_stops_continuation(context, user_id, planner):
    first = start_plan(user_id, context)
    start_plan(user_id, context, is_regeneration=True)

    summary = generate_remaining_weeks(user_id, first.id, start_week=2)

    assert summary == {"generated": [], "failed": [], "skipped": []}
    assert planner.calls == []


def test_regeneration_during_a_week_discards_its_result(context, user_id, planner, answers, monkeypatch):
    first = start_plan(user_id, context)
    generate = planning_service.generate_week
    replacements = []

    def _regenerate_first(*args, **kwargs):
        if not replacements:
            stricter = build_planning_context(user_id, answers(nutrition={"allergies": ["peanut"]}))
            replacements.append(start_plan(user_id, stricter, is_regeneration=True))
        return generate(*args, **kwargs)

    monkeypatch.setattr("fitplan_app.services.planning_service.generate_week", _regenerate_first)

    summary = generate_remaining_weeks(user_id, first.id, start_week=2)

    assert summary == {"generated": [], "failed": [], "skipped": [2]}
    week = active_week(user_id, 2)
    assert week.plan_id == replacements[0].id
    assert week.generation_status == "pending"
    assert week.plan_json is None


def test_weeks_are_spaced_out(app_with_db, context, user_id, planner):
    app_with_db.config["PLAN_INTER_WEEK_DELAY_SEC"] = 1.5
    plan = start_plan(user_id, context)
    sleeps: list[float] = []

    generate_remaining_weeks(user_id, plan.id, start_week=11, sleep=sleeps.append)

    assert sleeps == [1.5]


def test_regenerated_plan_announces_completion(context, user_id, planner):
    plan = start_plan(user_id, context, is_regeneration=True)
    listener = plan_event_broker.subscribe()
    try:
        generate_remaining_weeks(user_id, plan.id, start_week=12)
        messages = []
        while not listener.empty():
            messages.append(json.loads(listener.get_nowait()))
    finally:
        plan_event_broker.unsubscribe(listener)

    regenerated = [message for message in messages if message["type"] == "plan_regenerated"]
    assert len(regenerated) == 1
    assert regenerated[0]["payload"] == {
        "user_id": user_id,
        "plan_id": plan.id,
        "total_weeks": 12,
        "failed_weeks": 0,
    }


def test_first_plan_does_not_announce_regeneration(context, user_id, planner):
    plan = start_plan(user_id, context)
    listener = plan_event_broker.subscribe()
    try:
        generate_remaining_weeks(user_id, plan.id, start_week=12)
        types = []
        while not listener.empty():
            types.append(json.loads(listener.get_nowait())["type"])
    finally:
        plan_event_broker.unsubscribe(listener)
    assert "plan_regenerated" not in types


def test_stale_weeks_are_requeued_and_resumed(context, user_id, planner):
    start_plan(user_id, context)
    row = claim_week(user_id, 11)
    row.generation_started_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db.session.commit()

    released = requeue_stale_weeks(600)

    assert released == [(user_id, 11)]
    assert active_week(user_id, 11).generation_status == "generated"
    assert active_week(user_id, 12).generation_status == "generated"
    assert active_week(user_id, 10).generation_status == "pending"


def test_fresh_generating_weeks_are_left_alone(context, user_id, planner):
    start_plan(user_id, context)
    claim_week(user_id, 3)

    assert requeue_stale_weeks(600) == []
    assert active_week(user_id, 3).generation_status == "generating"
    assert planner.calls == []
