"""Tests for cache keys and context similarity scoring."""

from __future__ import annotations

from fitplan_app.services.engine_settings import SimilarityPolicy
from fitplan_app.services.fingerprint import (
    age_bucket,
    compound_key,
    exact_hash,
    semantic_fingerprint,
    semantic_hash,
    timeline_bucket,
    weight_bucket,
)
from fitplan_app.services.planning_context import build_planning_context
from fitplan_app.services.similarity import score_contexts


def _context(answers, **overrides):
    return build_planning_context(1, answers(**overrides))


def test_buckets():
    assert age_bucket(30) == 26
    assert age_bucket(17) == 18
    assert age_bucket(90) == 56
    assert weight_bucket(82.4) == 80


def test_exact_hash_ignores_metadata_but_not_raw_values(answers):
    first = build_planning_context(1, answers())
    second = build_planning_context(2, answers())
    assert exact_hash(first) == exact_hash(second)

    heavier = _context(answers, biometrics={"weight": 81})
    assert exact_hash(heavier) != exact_hash(first)
    assert semantic_hash(semantic_fingerprint(heavier)) == semantic_hash(semantic_fingerprint(first))


def test_compound_key_shape(answers):
    assert compound_key(_context(answers)) == "cut|intermediate|4|omnivore|9"


def test_short_timelines_share_the_first_band(answers):
    assert [timeline_bucket(weeks) for weeks in (1, 2, 4, 8, 9, 16, 17, 30)] == [4, 4, 4, 4, 9, 13, 17, 17]
    short = _context(answers, objective={"target_timeline": 2})
    long = _context(answers, objective={"target_timeline": 20})
    assert compound_key(short) == "cut|intermediate|4|omnivore|4"
    assert compound_key(short) != compound_key(long)


def test_identical_contexts_score_one(answers):
    context = _context(answers)
    result = score_contexts(context, context)
    assert result.score == 1.0
    assert result.mismatches == []


def test_penalties_are_named(answers):
    requested = _context(answers)
    cached = _context(
        answers,
        objective={"primary_goal": "bulk"},
        nutrition={"diet_type": "vegan"},
        training={"days_per_week": 5},
    )
    result = score_contexts(requested, cached, SimilarityPolicy())
    assert set(result.mismatches) == {"goal", "diet_type", "days_per_week"}
    assert 0.0 <= result.score < 0.6


def test_unexcluded_allergy_is_penalized(answers):
    requested = _context(answers, nutrition={"allergies": ["peanut"]})
    cached = _context(answers)
    result = score_contexts(requested, cached)
    assert "intolerances" in result.mismatches

    safe_cached = _context(answers, nutrition={"excluded_foods": ["peanut"]})
    assert "intolerances" not in score_contexts(requested, safe_cached).mismatches


def test_score_is_clamped(answers):
    requested = _context(answers)
    cached = _context(
        answers,
        objective={"primary_goal": "bulk", "has_competition": True, "target_timeline": 30},
        nutrition={"diet_type": "keto", "meals_per_day": 6},
        training={"days_per_week": 1, "experience_level": "beginner", "session_duration": 180},
        biometrics={"weight": 130, "age": 70, "height": 150, "gender": "female"},
    )
    policy = SimilarityPolicy(goal_penalty=2.0)
    assert score_contexts(requested, cached, policy).score == 0.0
