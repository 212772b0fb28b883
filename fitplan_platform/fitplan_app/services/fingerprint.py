"""Bucketed, privacy-preserving cache keys for planning contexts."""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any, Dict, Mapping

AGE_BUCKETS = (18, 26, 36, 46, 56, 100)
TIMELINE_BUCKETS = (4, 9, 13, 17)
WEIGHT_BUCKET_KG = 5
SESSION_BUCKET_MIN = 15


def age_bucket(age: float) -> int:
    bucket = AGE_BUCKETS[0]
    for lower in AGE_BUCKETS[:-1]:
        if age >= lower:
            bucket = lower
    return bucket


def weight_bucket(weight: float) -> int:
    return int(math.floor(weight / WEIGHT_BUCKET_KG) * WEIGHT_BUCKET_KG)


def timeline_bucket(weeks: int) -> int:
    if weeks < TIMELINE_BUCKETS[0]:
        return TIMELINE_BUCKETS[0]
    for lower, upper in zip(TIMELINE_BUCKETS, TIMELINE_BUCKETS[1:]):
        if lower <= weeks < upper:
            return lower
    return TIMELINE_BUCKETS[-1]


def session_bucket(minutes: int) -> int:
    return int(round(minutes / SESSION_BUCKET_MIN) * SESSION_BUCKET_MIN)


def _canonical(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _sha256(payload: Any) -> str:
    return hashlib.sha256(_canonical(payload).encode("utf-8")).hexdigest()


def semantic_fingerprint(context: Mapping[str, Any]) -> Dict[str, Any]:
    bio = context["biometrics"]
    objective = context["objective"]
    training = context["training"]
    nutrition = context["nutrition"]
    return {
        "age_bucket": age_bucket(bio["age"]),
        "weight_bucket": weight_bucket(bio["weight"]),
        "gender": bio["gender"],
        "goal": objective["primary_goal"],
        "timeline_bucket": timeline_bucket(objective["target_timeline"]),
        "has_competition": bool(objective.get("has_competition")),
        "experience_level": training["experience_level"],
        "days_per_week": training["days_per_week"],
        "session_bucket": session_bucket(training["session_duration"]),
        "sport_type": training.get("sport_type"),
        "diet_type": nutrition["diet_type"],
        "meals_per_day": nutrition["meals_per_day"],
    }


def exact_hash(context: Mapping[str, Any]) -> str:
    """Hash of raw values, so only a truly identical request shares it."""

    bio = context["biometrics"]
    nutrition = context["nutrition"]
    payload = {
        "fingerprint": semantic_fingerprint(context),
        "age": bio["age"],
        "weight": round(float(bio["weight"]), 1),
        "height": round(float(bio["height"]), 1),
        "timeline": context["objective"]["target_timeline"],
        "session_duration": context["training"]["session_duration"],
        "allergies": sorted(nutrition.get("allergies") or []),
        "intolerances": sorted(nutrition.get("intolerances") or []),
        "excluded_foods": sorted(nutrition.get("excluded_foods") or []),
        "targets": context.get("targets"),
    }
    return _sha256(payload)


def semantic_hash(fingerprint: Mapping[str, Any]) -> str:
    return _sha256(dict(fingerprint))


def compound_key(context: Mapping[str, Any]) -> str:
    parts = (
        context["objective"]["primary_goal"],
        context["training"]["experience_level"],
        str(context["training"]["days_per_week"]),
        context["nutrition"]["diet_type"],
        str(timeline_bucket(context["objective"]["target_timeline"])),
    )
    return "|".join(parts)
