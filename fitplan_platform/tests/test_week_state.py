"""Tests for week claims and state transitions."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.exceptions import NotFound

from fitplan_app.extensions import db
from fitplan_app.services.plan_events import plan_event_broker
from fitplan_app.services.plan_persistence import start_plan
from fitplan_app.services.planning_context import build_planning_context
from fitplan_app.services.week_state import (
    Error,
    Generating,
    Pending,
    WeekConflict,
    active_week,
    claim_week,
    describe,
    mark_failed,
    mark_pending,
    stale_generating_weeks,
    status_of,
)


@pytest.fixture()
def plan(app_with_db, user_id, answers):
    return start_plan(user_id, build_planning_context(user_id, answers()))


def test_claim_is_exclusive(plan, user_id):
    row = claim_week(user_id, 1)
    assert isinstance(status_of(row), Generating)

    with pytest.raises(WeekConflict) as excinfo:
        claim_week(user_id, 1)
    assert excinfo.value.status == "generating"
    assert str(excinfo.value) == "Week 1 is already generating"


def test_claim_missing_week(plan, user_id):
    with pytest.raises(NotFound):
        claim_week(user_id, 40)


def test_failed_week_can_be_claimed_again(plan, user_id):
    claim_week(user_id, 2)
    mark_failed(user_id, 2, "All models failed: overloaded")

    row = active_week(user_id, 2)
    assert describe(status_of(row)) == {
        "status": "error",
        "error": "All models failed: overloaded",
        "generated_at": None,
    }
    assert row.generation_started_at is None
    assert isinstance(status_of(claim_week(user_id, 2, allow_from=("error",))), Generating)


def test_retry_only_claim_rejects_pending_week(plan, user_id):
    with pytest.raises(WeekConflict) as excinfo:
        claim_week(user_id, 3, allow_from=("error",))
    assert excinfo.value.status == "pending"


def test_generated_without_payload_reads_as_error(plan, user_id):
    row = active_week(user_id, 1)
    row.generation_status = "generated"
    row.plan_json = None
    db.session.commit()

    status = status_of(row)
    assert isinstance(status, Error)
    assert status.message == "missing payload"


def test_stale_generating_weeks_are_released(plan, user_id):
    row = claim_week(user_id, 1)
    row.generation_started_at = datetime.now(timezone.utc) - timedelta(hours=2)
    db.session.commit()
    claim_week(user_id, 2)

    stale = stale_generating_weeks(600)
    assert [week.week_number for week in stale] == [1]

    assert mark_pending(stale) == [(user_id, 1)]
    assert isinstance(status_of(active_week(user_id, 1)), Pending)
    assert isinstance(status_of(active_week(user_id, 2)), Generating)


def test_transitions_are_published(plan, user_id):
    listener = plan_event_broker.subscribe()
    try:
        claim_week(user_id, 1)
        message = json.loads(listener.get_nowait())
    finally:
        plan_event_broker.unsubscribe(listener)
    assert message["type"] == "week_status"
    assert message["payload"] == {
        "user_id": user_id,
        "week_number": 1,
        "status": "generating",
        "error": None,
    }
