"""Tests for CLI plan commands."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fitplan_app.extensions import db
from fitplan_app.models import CachedPlan
from fitplan_app.services import plan_cache
from fitplan_app.services.plan_persistence import start_plan
from fitplan_app.services.planning_context import build_planning_context
from fitplan_app.services.week_state import active_week, claim_week


def test_init_db(app_with_db):
    result = app_with_db.test_cli_runner().invoke(args=["init-db"])
    assert result.exit_code == 0, result.output
    assert "Database schema ready." in result.output


def test_cache_cleanup_deletes_unused_plans(app_with_db, answers, week_plan):
    context = build_planning_context(1, answers())
    stale = plan_cache.save_plan(context, 1, week_plan(context))
    plan_cache.save_plan(context, 2, week_plan(context, 2))
    stale.last_used_at = datetime.now(timezone.utc) - timedelta(days=120)
    db.session.commit()

    result = app_with_db.test_cli_runner().invoke(args=["plan", "cache-cleanup", "--ttl-days", "90"])

    assert result.exit_code == 0, result.output
    assert "Deleted 1 cached plans older than 90 days." in result.output
    assert [record.week_number for record in CachedPlan.query.all()] == [2]


def test_requeue_stale_without_stale_weeks(app_with_db):
    result = app_with_db.test_cli_runner().invoke(args=["plan", "requeue-stale"])
    assert result.exit_code == 0, result.output
    assert "No stale weeks found." in result.output


def test_requeue_stale_resumes_plan(app_with_db, user_id, planner, answers):
    start_plan(user_id, build_planning_context(user_id, answers()))
    row = claim_week(user_id, 12)
    row.generation_started_at = datetime.now(timezone.utc) - timedelta(hours=3)
    db.session.commit()

    result = app_with_db.test_cli_runner().invoke(args=["plan", "requeue-stale", "--max-age", "60"])

    assert result.exit_code == 0, result.output
    assert f"Requeued week 12 for user {user_id}." in result.output
    assert active_week(user_id, 12).generation_status == "generated"


def test_generate_week_command(app_with_db, user_id, planner, answers):
    start_plan(user_id, build_planning_context(user_id, answers()))
    runner = app_with_db.test_cli_runner()

    result = runner.invoke(args=["plan", "generate-week", "--user-id", str(user_id), "--week", "2"])
    assert result.exit_code == 0, result.output
    assert f"Generated week 2 for user {user_id} (ai, generated)." in result.output

    again = runner.invoke(args=["plan", "generate-week", "--user-id", str(user_id), "--week", "2"])
    assert again.exit_code != 0
    assert "Week 2 is already generated" in again.output


def test_generate_week_command_without_plan(app_with_db, user_id):
    result = app_with_db.test_cli_runner().invoke(
        args=["plan", "generate-week", "--user-id", str(user_id), "--week", "1"]
    )
    assert result.exit_code != 0
    assert "No active training plan" in result.output
