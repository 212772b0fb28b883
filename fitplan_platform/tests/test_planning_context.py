"""Tests for context normalization and target calculation."""

from __future__ import annotations

from datetime import date

import pytest

from fitplan_app.services.planning_context import (
    build_planning_context,
    calculate_bmr,
    calculate_phases,
    calculate_planning,
    calculate_targets,
    phase_for_week,
    week_start_date,
)


def test_worked_example_targets(answers):
    context = build_planning_context(7, answers(), today=date(2026, 1, 1))

    assert calculate_bmr(80, 180, 30, "male") == pytest.approx(1780.0)
    assert context["targets"]["calories"] == {"training_day": 2428, "rest_day": 2097}
    assert context["targets"]["macros"]["protein"] == 168
    assert context["planning"]["block_size"] == 4
    assert context["planning"]["total_blocks"] == 3
    assert context["planning"]["phases"] == {"base": 4, "build": 5, "peak": 2, "taper": 1}
    assert context["meta"]["anomalies"] == []
    assert context["meta"]["user_id"] == 7


def test_spanish_aliases_are_normalized(answers):
    context = build_planning_context(
        1,
        answers(
            objective={"primary_goal": "perder grasa"},
            training={"experience_level": "avanzado"},
            nutrition={"diet_type": "vegano"},
            biometrics={"gender": "mujer"},
        ),
    )
    assert context["objective"]["primary_goal"] == "cut"
    assert context["training"]["experience_level"] == "advanced"
    assert context["nutrition"]["diet_type"] == "vegan"
    assert context["biometrics"]["gender"] == "female"
    assert context["planning"]["block_size"] == 3


def test_unknown_enum_falls_back_and_is_recorded(answers):
    context = build_planning_context(1, answers(objective={"primary_goal": "become a wizard"}))
    assert context["objective"]["primary_goal"] == "maintain"
    assert "unknown_goal" in context["meta"]["anomalies"]


def test_loose_types_are_coerced(answers):
    context = build_planning_context(
        1,
        answers(
            biometrics={"weight": "82.5", "age": "29"},
            training={"days_per_week": "9"},
            nutrition={"allergies": "Peanut, shellfish"},
        ),
    )
    assert context["biometrics"]["weight"] == 82.5
    assert context["biometrics"]["age"] == 29
    assert context["training"]["days_per_week"] == 7
    assert context["nutrition"]["allergies"] == ["peanut", "shellfish"]


def test_non_finite_inputs_use_fallback_targets():
    anomalies: list[str] = []
    targets = calculate_targets(
        {"weight": 80.0, "height": float("nan"), "age": 30, "gender": "male"},
        "moderate",
        "cut",
        anomalies,
    )
    assert targets["calories"] == {"training_day": 2640, "rest_day": 2160}
    assert targets["macros"]["protein"] == 168
    assert anomalies == ["non_finite_targets"]


@pytest.mark.parametrize("weight", [1e308, float("inf"), float("nan")])
def test_extreme_weight_falls_back_to_default_weight(weight):
    anomalies: list[str] = []
    targets = calculate_targets(
        {"weight": weight, "height": 180.0, "age": 30, "gender": "male"},
        "moderate",
        "cut",
        anomalies,
    )
    assert targets["calories"] == {"training_day": 2310, "rest_day": 1890}
    assert targets["macros"]["protein"] == 147
    assert anomalies == ["non_finite_targets"]


def test_huge_weight_still_builds_a_context(answers):
    context = build_planning_context(1, answers(biometrics={"weight": 1e308}))
    assert context["targets"]["calories"]["training_day"] == 2310
    assert "non_finite_targets" in context["meta"]["anomalies"]


@pytest.mark.parametrize(
    "weeks,expected",
    [
        (3, {"base": 3}),
        (8, {"base": 4, "build": 4}),
        (10, {"base": 4, "build": 5, "peak": 2, "taper": 1}),
        (20, {"base": 4, "build": 10, "peak": 4, "taper": 1, "recovery": 1}),
    ],
)
def test_phase_distribution(weeks, expected):
    assert calculate_phases(weeks) == expected


def test_phase_lookup_and_week_dates(answers):
    context = build_planning_context(1, answers())
    phases = context["planning"]["phases"]
    assert phase_for_week(phases, 1) == "base"
    assert phase_for_week(phases, 5) == "build"
    assert phase_for_week(phases, 10) == "peak"
    assert phase_for_week(phases, 12) == "taper"
    assert week_start_date(context, 3) == date(2026, 1, 19)
    assert calculate_planning(12, "beginner")["total_weeks"] == 12


def test_start_date_follows_week_start_preference(answers):
    context = build_planning_context(
        1,
        answers(start_preferences={"start_date": None, "week_starts_on": "monday"}),
        today=date(2026, 1, 7),
    )
    assert context["start_preferences"]["start_date"] == "2026-01-12"
