"""Weighted similarity between two planning contexts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from .engine_settings import SimilarityPolicy
from .planning_context import EXPERIENCE_RANK


@dataclass(frozen=True)
class SimilarityResult:
    score: float
    mismatches: List[str] = field(default_factory=list)
    breakdown: Dict[str, float] = field(default_factory=dict)


def _closeness(a: float, b: float, scale: float) -> float:
    return max(0.0, 1.0 - abs(float(a) - float(b)) / scale)


def _same(a: Any, b: Any) -> float:
    return 1.0 if a == b else 0.0


def _jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    left, right = set(a), set(b)
    if not left and not right:
        return 1.0
    return len(left & right) / len(left | right)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def restricted_items(nutrition: Mapping[str, Any]) -> set[str]:
    return {
        item.lower()
        for item in [*(nutrition.get("allergies") or []), *(nutrition.get("intolerances") or [])]
    }


def exclusion_set(nutrition: Mapping[str, Any]) -> set[str]:
    return restricted_items(nutrition) | {
        item.lower() for item in nutrition.get("excluded_foods") or []
    }


def experience_gap(a: Mapping[str, Any], b: Mapping[str, Any]) -> int:
    return abs(
        EXPERIENCE_RANK.get(a["training"]["experience_level"], 0)
        - EXPERIENCE_RANK.get(b["training"]["experience_level"], 0)
    )


def group_scores(requested: Mapping[str, Any], cached: Mapping[str, Any]) -> Dict[str, float]:
    r_obj, c_obj = requested["objective"], cached["objective"]
    r_tr, c_tr = requested["training"], cached["training"]
    r_bio, c_bio = requested["biometrics"], cached["biometrics"]
    r_nu, c_nu = requested["nutrition"], cached["nutrition"]
    return {
        "objective": _mean(
            [
                _same(r_obj["primary_goal"], c_obj["primary_goal"]),
                _closeness(r_obj["target_timeline"], c_obj["target_timeline"], 16),
                _same(bool(r_obj.get("has_competition")), bool(c_obj.get("has_competition"))),
            ]
        ),
        "training": _mean(
            [
                _closeness(experience_gap(requested, cached), 0, 2),
                _closeness(r_tr["days_per_week"], c_tr["days_per_week"], 7),
                _closeness(r_tr["session_duration"], c_tr["session_duration"], 120),
                _same(r_tr.get("sport_type"), c_tr.get("sport_type")),
                _same(r_tr.get("location"), c_tr.get("location")),
            ]
        ),
        "biometrics": _mean(
            [
                _closeness(r_bio["age"], c_bio["age"], 40),
                _closeness(r_bio["weight"], c_bio["weight"], 50),
                _closeness(r_bio["height"], c_bio["height"], 50),
                _same(r_bio["gender"], c_bio["gender"]),
            ]
        ),
        "nutrition": _mean(
            [
                _same(r_nu["diet_type"], c_nu["diet_type"]),
                _closeness(r_nu["meals_per_day"], c_nu["meals_per_day"], 6),
                _jaccard(restricted_items(r_nu), restricted_items(c_nu)),
            ]
        ),
    }


def score_contexts(
    requested: Mapping[str, Any],
    cached: Mapping[str, Any],
    policy: SimilarityPolicy | None = None,
) -> SimilarityResult:
    """Score in [0, 1]; each penalty applied is named in `mismatches`."""

    policy = policy or SimilarityPolicy()
    groups = group_scores(requested, cached)
    weights = {
        "objective": policy.objective_weight,
        "training": policy.training_weight,
        "biometrics": policy.biometrics_weight,
        "nutrition": policy.nutrition_weight,
    }
    total_weight = sum(weights.values()) or 1.0
    score = sum(groups[name] * weight for name, weight in weights.items()) / total_weight

    mismatches: List[str] = []
    penalties = (
        (
            "goal",
            requested["objective"]["primary_goal"] != cached["objective"]["primary_goal"],
            policy.goal_penalty,
        ),
        (
            "diet_type",
            requested["nutrition"]["diet_type"] != cached["nutrition"]["diet_type"],
            policy.diet_penalty,
        ),
        (
            "days_per_week",
            requested["training"]["days_per_week"] != cached["training"]["days_per_week"],
            policy.days_penalty,
        ),
        (
            "competition",
            bool(requested["objective"].get("has_competition"))
            != bool(cached["objective"].get("has_competition")),
            policy.competition_penalty,
        ),
        (
            "intolerances",
            not restricted_items(requested["nutrition"]) <= exclusion_set(cached["nutrition"]),
            policy.intolerance_penalty,
        ),
        ("experience_level", experience_gap(requested, cached) > 1, policy.experience_penalty),
    )
    for name, triggered, penalty in penalties:
        if triggered:
            mismatches.append(name)
            score -= penalty

    breakdown = {name: round(value, 4) for name, value in groups.items()}
    return SimilarityResult(
        score=round(min(1.0, max(0.0, score)), 4),
        mismatches=mismatches,
        breakdown=breakdown,
    )
