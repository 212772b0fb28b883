"""Rescale a near-match cached week plan to a new user's targets.

The adapter only ever rescales portions and shuffles training days. It never swaps
foods, so every safety decision happens before any rescaling: if the cached plan was
not built excluding everything the new user must avoid, it is rejected outright.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping

from flask import current_app, has_app_context

from .engine_settings import EngineSettings
from .planning_context import WEEKDAYS
from .similarity import exclusion_set, experience_gap, restricted_items

# Cached diet -> requested diets its meals can serve.
DIET_COMPATIBILITY: Dict[str, tuple[str, ...]] = {
    "omnivore": ("omnivore", "flexitarian"),
    "vegetarian": ("vegetarian", "flexitarian", "omnivore"),
    "vegan": ("vegan", "vegetarian", "flexitarian", "omnivore"),
    "paleo": ("paleo", "omnivore"),
    "keto": ("keto", "low_carb", "omnivore"),
    "low_carb": ("low_carb", "omnivore"),
    "mediterranean": ("mediterranean", "omnivore"),
    "flexitarian": ("flexitarian", "omnivore"),
}

MAX_WEIGHT_DIFF_KG = 15
MAX_TIMELINE_DIFF_WEEKS = 6
MAX_EXPERIENCE_GAP = 1
NUTRITION_WEIGHT_TRIGGER_KG = 2
FEWER_DAYS_FACTOR = 0.85
MORE_DAYS_FACTOR = 0.80
INTOLERANCE_STEP = 0.1
INTOLERANCE_FLOOR = 0.5
MIN_DAY_KCAL = 1000
MAX_DAY_KCAL = 5000
MACRO_TOLERANCE = 0.15


@dataclass
class AdaptationResult:
    plan: Dict[str, Any]
    confidence: float
    adaptations: List[str] = field(default_factory=list)


def _debug(message: str, *args) -> None:
    if has_app_context():
        current_app.logger.debug(message, *args)


def diet_compatible(cached_diet: str, requested_diet: str) -> bool:
    return requested_diet in DIET_COMPATIBILITY.get(cached_diet, (cached_diet,))


def serving_hazard(cached: Mapping[str, Any], requested: Mapping[str, Any]) -> str | None:
    """Food-safety rules that bar serving a cached plan in any form, however similar."""

    missing = restricted_items(requested["nutrition"]) - exclusion_set(cached["nutrition"])
    if missing:
        return "unsafe_restrictions:" + ",".join(sorted(missing))
    if not diet_compatible(cached["nutrition"]["diet_type"], requested["nutrition"]["diet_type"]):
        return "diet_incompatible"
    return None


def rejection_reason(cached: Mapping[str, Any], requested: Mapping[str, Any]) -> str | None:
    """Return the first hard rule the pair violates, or None."""

    hazard = serving_hazard(cached, requested)
    if hazard:
        return hazard
    if requested["objective"]["primary_goal"] != cached["objective"]["primary_goal"]:
        return "goal_mismatch"
    if experience_gap(requested, cached) > MAX_EXPERIENCE_GAP:
        return "experience_gap"
    if abs(requested["biometrics"]["weight"] - cached["biometrics"]["weight"]) > MAX_WEIGHT_DIFF_KG:
        return "weight_gap"
    timeline_gap = abs(
        requested["objective"]["target_timeline"] - cached["objective"]["target_timeline"]
    )
    if timeline_gap > MAX_TIMELINE_DIFF_WEEKS:
        return "timeline_gap"
    return None


def rebase_dates(plan: Dict[str, Any], start: date) -> Dict[str, Any]:
    """Move a week plan onto consecutive dates starting at `start`."""

    for offset, day in enumerate(plan.get("days") or []):
        current = start + timedelta(days=offset)
        day["date"] = current.isoformat()
        day["day_of_week"] = WEEKDAYS[current.weekday()]
    plan["start_date"] = start.isoformat()
    plan["end_date"] = (start + timedelta(days=max(len(plan.get("days") or []), 1) - 1)).isoformat()
    return plan


def _needs_nutrition_adaptation(cached: Mapping[str, Any], requested: Mapping[str, Any]) -> bool:
    return (
        abs(requested["biometrics"]["weight"] - cached["biometrics"]["weight"])
        > NUTRITION_WEIGHT_TRIGGER_KG
        or requested["nutrition"]["diet_type"] != cached["nutrition"]["diet_type"]
        or restricted_items(requested["nutrition"]) != restricted_items(cached["nutrition"])
        or requested["targets"]["calories"] != cached["targets"]["calories"]
    )


def _scale_meal(meal: Dict[str, Any], ratio: float) -> None:
    for key in ("calories", "protein", "carbs", "fat", "fiber"):
        if isinstance(meal.get(key), (int, float)):
            meal[key] = round(meal[key] * ratio)
    for ingredient in meal.get("ingredients") or []:
        if isinstance(ingredient.get("amount"), (int, float)):
            ingredient["amount"] = round(ingredient["amount"] * ratio, 1)


def _apply_day_targets(day: Dict[str, Any], targets: Mapping[str, Any]) -> None:
    nutrition = day.setdefault("nutrition", {})
    key = "training_day" if day.get("is_training_day") else "rest_day"
    nutrition["target_calories"] = targets["calories"][key]
    nutrition["target_macros"] = dict(targets["macros"])


def _retarget_day(day: Dict[str, Any], targets: Mapping[str, Any]) -> None:
    """Switch a day's targets after its training flag changed, keeping portions proportional."""

    nutrition = day.setdefault("nutrition", {})
    previous = nutrition.get("target_calories")
    _apply_day_targets(day, targets)
    if previous:
        ratio = nutrition["target_calories"] / previous
        for meal in nutrition.get("meals") or []:
            _scale_meal(meal, ratio)


def _rescale_nutrition(plan: Dict[str, Any], cached: Mapping[str, Any], requested: Mapping[str, Any]) -> float:
    old = cached["targets"]["calories"]["training_day"] or 1
    ratio = requested["targets"]["calories"]["training_day"] / old
    for day in plan.get("days") or []:
        for meal in day.get("nutrition", {}).get("meals") or []:
            _scale_meal(meal, ratio)
        _apply_day_targets(day, requested["targets"])
    return ratio


def _rebalance_training_days(plan: Dict[str, Any], wanted: int, targets: Mapping[str, Any]) -> str | None:
    days = plan.get("days") or []
    training = [day for day in days if day.get("is_training_day")]
    if len(training) == wanted:
        return None
    if len(training) > wanted:
        for day in training[wanted:]:
            day["is_training_day"] = False
            day["workout"] = None
            _retarget_day(day, targets)
        return "fewer_training_days"
    template = training[-1]["workout"] if training else None
    if template is None:
        return "missing_workout_template"
    rest_days = [day for day in days if not day.get("is_training_day")]
    for day in rest_days[: wanted - len(training)]:
        day["is_training_day"] = True
        day["workout"] = copy.deepcopy(template)
        _retarget_day(day, targets)
    return "more_training_days"


def validate_adapted_plan(plan: Mapping[str, Any]) -> List[str]:
    problems: List[str] = []
    for day in plan.get("days") or []:
        nutrition = day.get("nutrition") or {}
        meals = nutrition.get("meals") or []
        if not meals:
            problems.append(f"{day.get('date')}: no meals")
            continue
        total = sum(meal.get("calories") or 0 for meal in meals)
        if not MIN_DAY_KCAL <= total <= MAX_DAY_KCAL:
            problems.append(f"{day.get('date')}: {total} kcal out of range")
        target = nutrition.get("target_calories")
        if target and abs(total - target) / target > MACRO_TOLERANCE:
            problems.append(f"{day.get('date')}: {total} kcal vs target {target}")
        if day.get("is_training_day") and not day.get("workout"):
            problems.append(f"{day.get('date')}: training day without workout")
    return problems


def adapt_plan(
    cached_plan: Mapping[str, Any],
    cached_context: Mapping[str, Any],
    requested_context: Mapping[str, Any],
    similarity: float,
    settings: EngineSettings,
    *,
    start_date: date | None = None,
    min_similarity: float | None = None,
) -> AdaptationResult | None:
    """Return the rescaled plan, or None when the cached plan must not be reused."""

    reason = rejection_reason(cached_context, requested_context)
    if reason:
        _debug("Adaptation rejected: %s", reason)
        return None
    threshold = settings.adapt_threshold if min_similarity is None else min_similarity
    if similarity < threshold:
        _debug("Adaptation rejected: similarity %.3f below %.2f", similarity, threshold)
        return None

    plan = copy.deepcopy(dict(cached_plan))
    confidence = similarity
    adaptations: List[str] = []

    if _needs_nutrition_adaptation(cached_context, requested_context):
        ratio = _rescale_nutrition(plan, cached_context, requested_context)
        adaptations.append(f"nutrition_scaled:{ratio:.3f}")
        new_intolerances = set(requested_context["nutrition"].get("intolerances") or []) - set(
            cached_context["nutrition"].get("intolerances") or []
        )
        if new_intolerances:
            confidence *= max(INTOLERANCE_FLOOR, 1 - len(new_intolerances) * INTOLERANCE_STEP)
            adaptations.append("intolerances_already_excluded")

    wanted_days = requested_context["training"]["days_per_week"]
    change = _rebalance_training_days(plan, wanted_days, requested_context["targets"])
    if change == "missing_workout_template":
        _debug("Adaptation rejected: cached plan has no workout to reuse")
        return None
    if change == "fewer_training_days":
        confidence *= FEWER_DAYS_FACTOR
        adaptations.append(change)
    elif change == "more_training_days":
        confidence *= MORE_DAYS_FACTOR
        adaptations.append(change)

    if start_date is not None:
        rebase_dates(plan, start_date)
        adaptations.append("dates_rebased")

    problems = validate_adapted_plan(plan)
    if problems:
        _debug("Adaptation rejected: %s", "; ".join(problems[:3]))
        return None
    if confidence < settings.min_adapt_confidence:
        _debug("Adaptation rejected: confidence %.3f", confidence)
        return None
    return AdaptationResult(plan=plan, confidence=round(confidence, 4), adaptations=adaptations)
