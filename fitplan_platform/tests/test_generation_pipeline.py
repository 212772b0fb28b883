"""Tests for the upstream retry/fallback loop and week assembly."""

from __future__ import annotations

import json
import threading
from dataclasses import replace

import pytest

from fitplan_app.models import GenerationLog
from fitplan_app.services.ai_client import AIResponse, MissingCredential, UpstreamError
from fitplan_app.services.engine_settings import EngineSettings, get_engine_settings
from fitplan_app.services.generation_pipeline import (
    STRATEGY_FULL_WEEK,
    GenerationFailed,
    PlanValidationError,
    QuotaExceeded,
    _attempt,
    call_upstream,
    classify_error,
    extract_json,
    generate_week_plan,
    validate_week,
)
from fitplan_app.services.planning_context import build_planning_context


def _overloaded():
    return UpstreamError("model is overloaded", status_code=503)


def _call(planner, settings, sleeps, models=("model-a", "model-b")):
    return call_upstream(
        planner,
        models=models,
        prompt="hello",
        max_output_tokens=100,
        settings=settings,
        sleep=sleeps.append,
        purpose="test",
    )


@pytest.fixture()
def settings(app_with_db):
    return replace(get_engine_settings(), retry_backoff_sec=2.0)


def test_falls_back_to_next_model_after_retries(app_with_db, planner, settings):
    planner.script = [_overloaded()] * 4 + ["[]"]
    sleeps: list[float] = []

    response = _call(planner, settings, sleeps)

    assert response.model == "model-b"
    assert planner.models == ["model-a"] * 4 + ["model-b"]
    assert sleeps == [2.0, 4.0, 6.0]
    logs = GenerationLog.query.order_by(GenerationLog.id).all()
    assert len(logs) == 5
    assert [log.success for log in logs] == [False] * 4 + [True]
    assert [log.attempt for log in logs] == [0, 1, 2, 3, 0]


def test_retry_ceiling_then_all_models_fail(app_with_db, planner, settings):
    planner.script = [_overloaded()] * 8
    sleeps: list[float] = []

    with pytest.raises(GenerationFailed) as excinfo:
        _call(planner, settings, sleeps)

    assert str(excinfo.value).startswith("All models failed")
    assert len(planner.calls) == 8
    assert sleeps == [2.0, 4.0, 6.0, 2.0, 4.0, 6.0]


def test_fatal_error_skips_model_without_waiting(app_with_db, planner, settings):
    planner.script = [UpstreamError("model-a returned 400: bad request", status_code=400), "[]"]
    sleeps: list[float] = []

    response = _call(planner, settings, sleeps)

    assert response.model == "model-b"
    assert planner.models == ["model-a", "model-b"]
    assert sleeps == []


def test_quota_error_stops_immediately(app_with_db, planner, settings):
    planner.script = [UpstreamError("RESOURCE_EXHAUSTED: quota exceeded", status_code=429)]

    with pytest.raises(QuotaExceeded):
        _call(planner, settings, [])

    assert len(planner.calls) == 1


def test_missing_credential_is_raised_before_any_call(app_with_db, planner, settings):
    with pytest.raises(MissingCredential):
        _call(planner, replace(settings, api_key=""), [])
    assert planner.calls == []


@pytest.mark.parametrize(
    "error,kind",
    [
        (UpstreamError("boom", status_code=503), "transient"),
        (UpstreamError("service unavailable"), "transient"),
        (UpstreamError("slow down", status_code=429), "quota"),
        (UpstreamError("invalid argument", status_code=400), "fatal"),
    ],
)
def test_classify_error(error, kind):
    assert classify_error(error) == kind


def test_chunked_week_is_assembled_with_delays(app_with_db, planner, answers):
    context = build_planning_context(1, answers())
    settings = replace(get_engine_settings(), chunk_delay_sec=2.0)
    sleeps: list[float] = []

    result = generate_week_plan(context, 1, settings=settings, client=planner, sleep=sleeps.append)

    assert len(planner.calls) == 4
    assert sleeps == [2.0, 2.0, 2.0]
    plan = result.plan
    assert [day["date"] for day in plan["days"]][0] == "2026-01-05"
    assert plan["end_date"] == "2026-01-11"
    assert plan["phase"] == "base"
    assert plan["weekly_stats"]["training_days"] == 4
    assert plan["weekly_stats"]["total_training_minutes"] == 240
    assert result.cost_usd == settings.cost_per_generation_usd
    assert result.warnings == []


def test_full_week_strategy_uses_week_models(app_with_db, planner, answers):
    context = build_planning_context(1, answers())
    settings = get_engine_settings()

    result = generate_week_plan(context, 2, settings=settings, client=planner, strategy=STRATEGY_FULL_WEEK)

    assert planner.models == [settings.week_models[0]]
    assert planner.calls[0]["max_output_tokens"] == settings.week_max_tokens
    assert result.plan["start_date"] == "2026-01-12"


def test_token_usage_drives_cost(app_with_db, planner, answers):
    planner.tokens = 1000
    settings = get_engine_settings()
    result = generate_week_plan(build_planning_context(1, answers()), 1, settings=settings, client=planner)
    assert result.tokens_used == 4000
    assert result.cost_usd == pytest.approx(4 * settings.cost_per_1k_tokens)


def test_invalid_answer_is_not_retried(app_with_db, planner, answers):
    planner.script = ["Sorry, I cannot help with that."]
    context = build_planning_context(1, answers())

    with pytest.raises(PlanValidationError):
        generate_week_plan(context, 1, settings=get_engine_settings(), client=planner)

    assert len(planner.calls) == 1


def test_partial_marker_is_rejected(app_with_db, planner, answers):
    planner.script = ['{"partial": true, "days": [{"date": "2026-01-05"}]}']

    with pytest.raises(PlanValidationError, match="partial"):
        generate_week_plan(build_planning_context(1, answers()), 1, settings=get_engine_settings(), client=planner)


def test_chunk_failure_names_the_day_range(app_with_db, planner, answers):
    planner.script = [UpstreamError("invalid argument", status_code=400)] * 2

    with pytest.raises(GenerationFailed, match="Failed to generate days 1-2"):
        generate_week_plan(build_planning_context(1, answers()), 1, settings=get_engine_settings(), client=planner)


def test_extract_json_strips_fences_and_prose():
    assert extract_json('```json\n[{"a": 1}]\n```') == [{"a": 1}]
    assert extract_json('Here is the plan: {"days": []} enjoy!') == {"days": []}
    with pytest.raises(PlanValidationError):
        extract_json("no json here")
    with pytest.raises(PlanValidationError):
        extract_json('{"days": [')


def test_validate_week_rejects_date_gaps():
    days = [
        {
            "date": f"2026-01-{day:02d}",
            "day_of_week": "monday",
            "is_training_day": False,
            "nutrition": {"target_calories": 2000, "meals": [{"calories": 2000, "ingredients": ["rice"]}]},
        }
        for day in (5, 6, 7, 9, 10, 11, 12)
    ]
    with pytest.raises(PlanValidationError, match="does not follow"):
        validate_week(days)


def _day(day: int, **overrides) -> dict:
    base = {
        "date": f"2026-01-{day:02d}",
        "day_of_week": "monday",
        "is_training_day": False,
        "nutrition": {"target_calories": 2000, "meals": [{"calories": 2000, "ingredients": ["rice"]}]},
    }
    base.update(overrides)
    return base


def test_validate_week_structural_rules():
    days = [_day(day) for day in range(5, 12)]
    days[0]["is_training_day"] = True
    days[1]["nutrition"]["meals"][0]["ingredients"] = []
    days[2]["workout"] = {"title": "Stray"}

    with pytest.raises(PlanValidationError) as excinfo:
        validate_week(days)
    problems = excinfo.value.problems
    assert "Day 1 is a training day without workout" in problems
    assert "Day 2 meal 1 has no ingredients" in problems
    assert days[2]["workout"] is None

    with pytest.raises(PlanValidationError, match="Expected 7 days"):
        validate_week([_day(day) for day in range(5, 11)])


def test_validate_week_warns_on_calorie_drift():
    days = [_day(day) for day in range(5, 12)]
    days[3]["nutrition"]["meals"][0]["calories"] = 2500
    assert validate_week(days) == ["Day 4: 2500 kcal vs target 2000"]


@pytest.mark.parametrize(
    "mutate,problem",
    [
        (lambda day: day.update(nutrition="n/a"), "Day 1 nutrition must be an object"),
        (lambda day: day["nutrition"].update(meals="rice"), "Day 1 has no meals"),
        (lambda day: day["nutrition"]["meals"].append("toast"), "Day 1 meal 2 must be an object"),
        (
            lambda day: day["nutrition"]["meals"][0].update(ingredients="rice"),
            "Day 1 meal 1 has no ingredients",
        ),
        (
            lambda day: day["nutrition"]["meals"][0].update(calories="450 kcal"),
            "Day 1 meal 1 has non-numeric calories",
        ),
        (
            lambda day: day["nutrition"]["meals"][0].update(protein="lots"),
            "Day 1 meal 1 has non-numeric protein",
        ),
        (
            lambda day: day["nutrition"].update(target_calories="2000"),
            "Day 1 has non-numeric target_calories",
        ),
        (
            lambda day: day.update(is_training_day=True, workout="run"),
            "Day 1 workout must be an object",
        ),
        (
            lambda day: day.update(is_training_day=True, workout={"duration_minutes": "an hour"}),
            "Day 1 workout has non-numeric duration_minutes",
        ),
    ],
)
def test_validate_week_rejects_malformed_values(mutate, problem):
    days = [_day(day) for day in range(5, 12)]
    mutate(days[0])

    with pytest.raises(PlanValidationError) as excinfo:
        validate_week(days)
    assert problem in excinfo.value.problems


def test_malformed_chunk_fails_the_week_as_invalid(app_with_db, planner, answers):
    bad_days = [
        {"date": "2026-01-05", "day_of_week": "monday", "is_training_day": False, "nutrition": "n/a"},
        {
            "date": "2026-01-06",
            "day_of_week": "tuesday",
            "is_training_day": False,
            "nutrition": {"target_calories": 2000, "meals": [{"calories": "450 kcal", "ingredients": ["oats"]}]},
        },
    ]
    planner.script = [json.dumps(bad_days)]
    settings = get_engine_settings()

    with pytest.raises(PlanValidationError) as excinfo:
        generate_week_plan(
            build_planning_context(1, answers()), 1, settings=settings, client=planner, sleep=lambda _: None
        )
    assert "Day 1 nutrition must be an object" in excinfo.value.problems
    assert "Day 2 meal 1 has non-numeric calories" in excinfo.value.problems


class _GatedClient:
    """Holds every call open until released and records per-user overlap."""

    def __init__(self):
        self.lock = threading.Lock()
        self.active: dict[int, int] = {}
        self.peak: dict[int, int] = {}
        self.entered = threading.Semaphore(0)
        self.release = threading.Event()

    def generate(self, *, model, system_instruction, prompt, max_output_tokens, temperature):
        user = int(prompt)
        with self.lock:
            self.active[user] = self.active.get(user, 0) + 1
            self.peak[user] = max(self.peak.get(user, 0), self.active[user])
        self.entered.release()
        self.release.wait(timeout=5)
        with self.lock:
            self.active[user] -= 1
        return AIResponse(text="[]", model=model)


def test_one_upstream_call_in_flight_per_user():
    client = _GatedClient()
    settings = EngineSettings(api_key="test-key", max_concurrent_calls=4)
    threads = [
        threading.Thread(target=_attempt, args=(client, "model-a", "sys", str(user), 10, settings, user))
        for user in (7, 8, 7)
    ]
    for thread in threads:
        thread.start()

    assert client.entered.acquire(timeout=5)
    assert client.entered.acquire(timeout=5)
    assert not client.entered.acquire(timeout=0.2)

    client.release.set()
    for thread in threads:
        thread.join(timeout=5)
    assert client.entered.acquire(timeout=5)
    assert client.peak == {7: 1, 8: 1}
