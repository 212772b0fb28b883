"""Canonical planning context and calorie / macro / phase targets.

Onboarding answers arrive loosely typed (strings for numbers, Spanish or English
labels, missing sections). Everything here maps them through fixed vocabularies so
the fingerprint, similarity and prompt builders only ever see known values.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping

from flask import current_app, has_app_context

CONTEXT_VERSION = "1.0"

GOAL_ALIASES = {
    "cut": "cut",
    "fat_loss": "cut",
    "lose_weight": "cut",
    "perder_grasa": "cut",
    "perder grasa": "cut",
    "definicion": "cut",
    "bulk": "bulk",
    "muscle_gain": "bulk",
    "gain_muscle": "bulk",
    "ganar_musculo": "bulk",
    "ganar musculo": "bulk",
    "volumen": "bulk",
    "maintain": "maintain",
    "maintenance": "maintain",
    "mantener": "maintain",
    "recomp": "recomp",
    "recomposition": "recomp",
    "recomposicion": "recomp",
    "performance": "performance",
    "rendimiento": "performance",
    "endurance": "performance",
}
ACTIVITY_ALIASES = {
    "sedentary": "sedentary",
    "sedentario": "sedentary",
    "light": "light",
    "ligero": "light",
    "moderate": "moderate",
    "moderado": "moderate",
    "active": "active",
    "activo": "active",
    "very_active": "very_active",
    "muy_activo": "very_active",
    "muy activo": "very_active",
}
EXPERIENCE_ALIASES = {
    "beginner": "beginner",
    "principiante": "beginner",
    "novice": "beginner",
    "intermediate": "intermediate",
    "intermedio": "intermediate",
    "advanced": "advanced",
    "avanzado": "advanced",
    "expert": "advanced",
}
DIET_ALIASES = {
    "omnivore": "omnivore",
    "omnivoro": "omnivore",
    "none": "omnivore",
    "vegetarian": "vegetarian",
    "vegetariano": "vegetarian",
    "vegan": "vegan",
    "vegano": "vegan",
    "paleo": "paleo",
    "keto": "keto",
    "ketogenic": "keto",
    "low_carb": "low_carb",
    "mediterranean": "mediterranean",
    "mediterranea": "mediterranean",
    "flexitarian": "flexitarian",
    "flexitariano": "flexitarian",
}
GENDER_ALIASES = {
    "male": "male",
    "m": "male",
    "hombre": "male",
    "masculino": "male",
    "female": "female",
    "f": "female",
    "mujer": "female",
    "femenino": "female",
    "other": "other",
}
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_GOAL = "maintain"
DEFAULT_ACTIVITY = "moderate"
DEFAULT_EXPERIENCE = "beginner"
DEFAULT_DIET = "omnivore"
DEFAULT_GENDER = "other"

ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "very_active": 1.9,
}
GOAL_MULTIPLIERS = {
    "cut": 0.80,
    "bulk": 1.15,
    "maintain": 1.0,
    "recomp": 0.95,
    "performance": 1.05,
}
BLOCK_SIZES = {"beginner": 4, "intermediate": 4, "advanced": 3}
EXPERIENCE_RANK = {"beginner": 0, "intermediate": 1, "advanced": 2}

TRAINING_DAY_FACTOR = 1.10
REST_DAY_FACTOR = 0.95
PROTEIN_PER_KG = 2.1
FAT_SHARE = 0.27
FIBER_PER_1000_KCAL = 14
FALLBACK_KCAL_PER_KG = 30
DEFAULT_WEIGHT_KG = 70
MAX_FALLBACK_WEIGHT_KG = 400


def _log_anomaly(anomalies: List[str], code: str, detail: str) -> None:
    anomalies.append(code)
    if has_app_context():
        current_app.logger.warning("Planning context anomaly %s: %s", code, detail)


def _normalize_choice(
    value: Any,
    aliases: Mapping[str, str],
    default: str,
    field_name: str,
    anomalies: List[str],
) -> str:
    if value is None or value == "":
        return default
    key = str(value).strip().lower()
    mapped = aliases.get(key) or aliases.get(key.replace("-", "_"))
    if mapped is None:
        _log_anomaly(anomalies, f"unknown_{field_name}", f"{value!r} -> {default}")
        return default
    return mapped


def _to_float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _to_int(value: Any, default: int) -> int:
    return int(round(_to_float(value, default)))


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "si", "sí"}
    return bool(value)


def _to_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    items = {str(item).strip().lower() for item in value if str(item).strip()}
    return sorted(items)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def calculate_bmr(weight: float, height: float, age: int, gender: str) -> float:
    base = 10 * weight + 6.25 * height - 5 * age
    return base + 5 if gender == "male" else base - 161


def calculate_calorie_targets(
    weight: float, height: float, age: int, gender: str, activity_level: str, goal: str
) -> Dict[str, Any]:
    bmr = calculate_bmr(weight, height, age, gender)
    tdee = round(bmr * ACTIVITY_MULTIPLIERS.get(activity_level, ACTIVITY_MULTIPLIERS[DEFAULT_ACTIVITY]))
    adjusted = round(tdee * GOAL_MULTIPLIERS.get(goal, 1.0))
    return {
        "bmr": bmr,
        "tdee": tdee,
        "adjusted": adjusted,
        "training_day": round(adjusted * TRAINING_DAY_FACTOR),
        "rest_day": round(adjusted * REST_DAY_FACTOR),
    }


def calculate_macros(weight: float, training_day_calories: float) -> Dict[str, int]:
    protein = round(weight * PROTEIN_PER_KG)
    fat = round(training_day_calories * FAT_SHARE / 9)
    carbs = round((training_day_calories - protein * 4 - fat * 9) / 4)
    fiber = round(training_day_calories / 1000 * FIBER_PER_1000_KCAL)
    return {"protein": protein, "carbs": max(carbs, 0), "fat": fat, "fiber": fiber}


def calculate_phases(timeline_weeks: int) -> Dict[str, int]:
    weeks = max(1, timeline_weeks)
    if weeks <= 4:
        return {"base": weeks}
    if weeks <= 8:
        return {"base": 4, "build": weeks - 4}
    if weeks <= 12:
        # 9-11 week timelines reuse the 12-week template and end before taper.
        return {"base": 4, "build": 5, "peak": 2, "taper": 1}
    build = math.floor(weeks * 0.5)
    peak = math.floor(weeks * 0.2)
    recovery = weeks - (4 + build + peak + 1)
    phases = {"base": 4, "build": build, "peak": peak, "taper": 1}
    if recovery > 0:
        phases["recovery"] = recovery
    return phases


def calculate_planning(timeline_weeks: int, experience_level: str) -> Dict[str, Any]:
    block_size = BLOCK_SIZES.get(experience_level, 4)
    return {
        "block_size": block_size,
        "total_blocks": math.ceil(max(1, timeline_weeks) / block_size),
        "total_weeks": max(1, timeline_weeks),
        "phases": calculate_phases(timeline_weeks),
    }


def phase_for_week(phases: Mapping[str, int], week_number: int) -> str:
    cumulative = 0
    for name, weeks in phases.items():
        cumulative += weeks
        if week_number <= cumulative:
            return name
    return "recovery"


def _targets_are_finite(calories: Mapping[str, Any], macros: Mapping[str, Any]) -> bool:
    values = [calories.get("training_day"), calories.get("rest_day"), *macros.values()]
    for value in values:
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            return False
    return calories["training_day"] > 0 and calories["rest_day"] > 0


def calculate_targets(biometrics: Mapping[str, Any], activity_level: str, goal: str, anomalies: List[str]):
    weight = biometrics["weight"]
    try:
        calories = calculate_calorie_targets(
            weight,
            biometrics["height"],
            biometrics["age"],
            biometrics["gender"],
            activity_level,
            goal,
        )
        calories = {"training_day": calories["training_day"], "rest_day": calories["rest_day"]}
        macros = calculate_macros(weight, calories["training_day"])
    except (ArithmeticError, TypeError, ValueError):
        calories, macros = {}, {}

    if not calories or not _targets_are_finite(calories, macros):
        safe_weight = weight if 0 < weight <= MAX_FALLBACK_WEIGHT_KG else DEFAULT_WEIGHT_KG
        baseline = FALLBACK_KCAL_PER_KG * safe_weight
        calories = {
            "training_day": round(baseline * 1.10),
            "rest_day": round(baseline * 0.90),
        }
        macros = calculate_macros(safe_weight, calories["training_day"])
        _log_anomaly(anomalies, "non_finite_targets", f"fallback to {FALLBACK_KCAL_PER_KG} kcal/kg")
    return {"calories": calories, "macros": macros}


def week_start_date(context: Mapping[str, Any], week_number: int) -> date:
    start = _parse_date(context.get("start_preferences", {}).get("start_date")) or date.today()
    return start + timedelta(days=7 * (week_number - 1))


def _resolve_start_date(preferences: Mapping[str, Any], today: date) -> date:
    explicit = _parse_date(preferences.get("start_date"))
    if explicit:
        return explicit
    week_starts_on = str(preferences.get("week_starts_on") or "monday").lower()
    if week_starts_on not in WEEKDAYS:
        return today
    offset = (WEEKDAYS.index(week_starts_on) - today.weekday()) % 7
    return today + timedelta(days=offset)


def build_planning_context(
    user_id: int | None,
    answers: Mapping[str, Any],
    *,
    today: date | None = None,
) -> Dict[str, Any]:
    """Normalize onboarding answers into the canonical planning context."""

    today = today or datetime.now(timezone.utc).date()
    anomalies: List[str] = []
    raw_bio = answers.get("biometrics") or {}
    raw_objective = answers.get("objective") or {}
    raw_activity = answers.get("activity") or {}
    raw_training = answers.get("training") or {}
    raw_nutrition = answers.get("nutrition") or {}
    raw_start = answers.get("start_preferences") or {}

    biometrics = {
        "age": _to_int(raw_bio.get("age"), 30),
        "gender": _normalize_choice(raw_bio.get("gender"), GENDER_ALIASES, DEFAULT_GENDER, "gender", anomalies),
        "weight": _to_float(raw_bio.get("weight"), float(DEFAULT_WEIGHT_KG)),
        "height": _to_float(raw_bio.get("height"), 170.0),
        "body_fat": raw_bio.get("body_fat"),
    }
    goal = _normalize_choice(
        raw_objective.get("primary_goal"), GOAL_ALIASES, DEFAULT_GOAL, "goal", anomalies
    )
    timeline = max(1, _to_int(raw_objective.get("target_timeline"), 12))
    objective = {
        "primary_goal": goal,
        "target_timeline": timeline,
        "has_competition": _to_bool(raw_objective.get("has_competition")),
        "competition_type": raw_objective.get("competition_type"),
        "target_date": raw_objective.get("target_date"),
        "motivation": raw_objective.get("motivation"),
    }
    activity_level = _normalize_choice(
        raw_activity.get("daily_activity_level"),
        ACTIVITY_ALIASES,
        DEFAULT_ACTIVITY,
        "activity",
        anomalies,
    )
    activity = {
        "country": raw_activity.get("country"),
        "timezone": raw_activity.get("timezone"),
        "daily_activity_level": activity_level,
        "daily_steps": _to_int(raw_activity.get("daily_steps"), 0),
        "available_days": [d for d in _to_list(raw_activity.get("available_days")) if d in WEEKDAYS],
        "preferred_times": _to_list(raw_activity.get("preferred_times")),
    }
    experience = _normalize_choice(
        raw_training.get("experience_level"),
        EXPERIENCE_ALIASES,
        DEFAULT_EXPERIENCE,
        "experience",
        anomalies,
    )
    training = {
        "experience_level": experience,
        "sport_type": str(raw_training.get("sport_type") or "strength").strip().lower(),
        "days_per_week": min(7, max(1, _to_int(raw_training.get("days_per_week"), 3))),
        "session_duration": max(15, _to_int(raw_training.get("session_duration"), 60)),
        "location": str(raw_training.get("location") or "gym").strip().lower(),
        "equipment": _to_list(raw_training.get("equipment")),
        "has_injuries": _to_bool(raw_training.get("has_injuries")),
    }
    nutrition = {
        "diet_type": _normalize_choice(
            raw_nutrition.get("diet_type"), DIET_ALIASES, DEFAULT_DIET, "diet", anomalies
        ),
        "meals_per_day": min(6, max(2, _to_int(raw_nutrition.get("meals_per_day"), 4))),
        "allergies": _to_list(raw_nutrition.get("allergies")),
        "intolerances": _to_list(raw_nutrition.get("intolerances")),
        "excluded_foods": _to_list(raw_nutrition.get("excluded_foods")),
        "cooking_frequency": raw_nutrition.get("cooking_frequency"),
    }
    start_date = _resolve_start_date(raw_start, today)

    return {
        "meta": {
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "version": CONTEXT_VERSION,
            "locale": answers.get("locale") or "es",
            "anomalies": anomalies,
        },
        "start_preferences": {
            "start_date": start_date.isoformat(),
            "week_starts_on": str(raw_start.get("week_starts_on") or "monday").lower(),
        },
        "biometrics": biometrics,
        "objective": objective,
        "activity": activity,
        "training": training,
        "nutrition": nutrition,
        "targets": calculate_targets(biometrics, activity_level, goal, anomalies),
        "planning": calculate_planning(timeline, experience),
    }
