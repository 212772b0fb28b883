from __future__ import annotations

import json
from datetime import date, timedelta
from textwrap import dedent
from typing import Any, Dict, List, Mapping

from .planning_context import WEEKDAYS

PLANNER_SYSTEM_INSTRUCTION = dedent(
    """
    You are a certified strength coach and sports nutritionist building weekly plans.
    • Reply with JSON only. No markdown, no commentary, no trailing text.
    • Use the exact dates supplied. One object per date, in order, no gaps.
    • Training days carry a "workout"; rest days have "workout": null.
    • Every meal lists at least one ingredient with name, amount (number) and unit.
    • Daily meal calories must sum to within 10% of that day's target_calories.
    • Never include any allergen, intolerance or excluded food listed in the profile.
    • Respect the diet type strictly (vegan: no animal products; vegetarian: no meat or fish).
    """
).strip()

DAY_SCHEMA_HINT = dedent(
    """
    {
      "date": "YYYY-MM-DD",
      "day_of_week": "monday",
      "is_training_day": true,
      "workout": {
        "title": "Lower body strength",
        "workout_type": "strength",
        "duration_minutes": 60,
        "intensity": "moderate",
        "exercises": [{"name": "Back squat", "sets": 4, "reps": "6-8", "rest_seconds": 120}]
      },
      "nutrition": {
        "target_calories": 2377,
        "meals": [
          {
            "meal_type": "breakfast",
            "name": "Oats with berries",
            "calories": 520, "protein": 30, "carbs": 70, "fat": 12, "fiber": 9,
            "ingredients": [{"name": "oats", "amount": 80, "unit": "g"}]
          }
        ]
      }
    }
    """
).strip()


def _profile_summary(context: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "biometrics": context["biometrics"],
        "objective": {
            key: context["objective"].get(key)
            for key in ("primary_goal", "target_timeline", "has_competition", "competition_type")
        },
        "training": context["training"],
        "nutrition": context["nutrition"],
        "available_days": context["activity"].get("available_days") or [],
        "targets": context["targets"],
    }


def training_days_for_week(context: Mapping[str, Any], start: date) -> List[str]:
    """Pick which dates of the week are training days."""

    wanted = context["training"]["days_per_week"]
    available = context["activity"].get("available_days") or []
    dates = [start + timedelta(days=offset) for offset in range(7)]
    chosen = [d for d in dates if WEEKDAYS[d.weekday()] in available][:wanted]
    step = 7 / wanted
    # Evenly spread sessions first, then any remaining date.
    for candidate in [dates[int(i * step)] for i in range(wanted)] + dates:
        if len(chosen) >= wanted:
            break
        if candidate not in chosen:
            chosen.append(candidate)
    return [d.isoformat() for d in sorted(chosen)]


def build_day_prompt(
    context: Mapping[str, Any],
    *,
    week_number: int,
    phase: str,
    week_start: date,
    first_day: int,
    last_day: int,
) -> str:
    """Prompt for days `first_day`..`last_day` (1-based, inclusive) of a week."""

    training_dates = set(training_days_for_week(context, week_start))
    calories = context["targets"]["calories"]
    day_specs = []
    for index in range(first_day, last_day + 1):
        current = week_start + timedelta(days=index - 1)
        is_training = current.isoformat() in training_dates
        day_specs.append(
            {
                "date": current.isoformat(),
                "day_of_week": WEEKDAYS[current.weekday()],
                "is_training_day": is_training,
                "target_calories": calories["training_day" if is_training else "rest_day"],
            }
        )
    count = last_day - first_day + 1
    return dedent(
        f"""
        Build days {first_day}-{last_day} of week {week_number} (phase: {phase}).
        Profile:
        {json.dumps(_profile_summary(context), ensure_ascii=False)}
        Days to produce:
        {json.dumps(day_specs, ensure_ascii=False)}
        Meals per day: {context["nutrition"]["meals_per_day"]}.
        Return a JSON array with exactly {count} day objects shaped like:
        {DAY_SCHEMA_HINT}
        """
    ).strip()


def build_week_prompt(
    context: Mapping[str, Any],
    *,
    week_number: int,
    phase: str,
    week_start: date,
) -> str:
    day_prompt = build_day_prompt(
        context,
        week_number=week_number,
        phase=phase,
        week_start=week_start,
        first_day=1,
        last_day=7,
    )
    return day_prompt + '\nWrap the array as {"days": [...]} for the full week.'
