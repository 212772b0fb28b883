"""Produce one structurally valid week plan from an unreliable generative service.

Every upstream call walks an ordered sequence of (model, attempt) pairs. Each pair
yields a tagged outcome and the sequence is folded until the first success:

* ``Transient`` (overloaded / unavailable) waits ``backoff * retry`` and retries the
  same model up to ``max_retries`` times before moving on;
* ``Fatal`` skips the rest of that model's attempts;
* quota exhaustion and a missing credential stop the whole request.

Structural validation runs after parsing and is never retried here: a malformed
answer is a data error, not an outage.
"""

from __future__ import annotations

import json
import math
import re
import threading
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterator, List, Mapping, Sequence, Tuple, Union

from flask import current_app

from ..extensions import db
from ..metrics import record_upstream_attempt
from ..models import GenerationLog
from ..utils import commit_with_retry
from .ai_client import AIResponse, MissingCredential, UpstreamError
from .ai_log import log_event
from .engine_settings import EngineSettings
from .plan_prompts import PLANNER_SYSTEM_INSTRUCTION, build_day_prompt, build_week_prompt
from .planning_context import WEEKDAYS, phase_for_week, week_start_date

CHUNK_RANGES: Tuple[Tuple[int, int], ...] = ((1, 2), (3, 4), (5, 6), (7, 7))
STRATEGY_CHUNKED = "chunked"
STRATEGY_FULL_WEEK = "full_week"
CALORIE_WARNING_TOLERANCE = 0.10
MEAL_NUMBER_FIELDS = ("calories", "protein", "carbs", "fat", "fiber")

TRANSIENT_STATUS_CODES = {500, 502, 503, 504, 529}
TRANSIENT_MARKERS = ("overloaded", "unavailable", "503")
QUOTA_MARKERS = ("quota", "resource_exhausted", "429")


class QuotaExceeded(Exception):
    """Upstream quota or billing budget is exhausted; retrying now cannot succeed."""


class GenerationFailed(Exception):
    """Every configured model failed for one request."""

    def __init__(self, message: str, last_error: str | None = None):
        super().__init__(message)
        self.last_error = last_error or message


class PlanValidationError(ValueError):
    """The service answered, but the payload is not a usable plan."""

    def __init__(self, problems: Sequence[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems[:5]))


@dataclass(frozen=True)
class Success:
    response: AIResponse


@dataclass(frozen=True)
class Transient:
    error: str


@dataclass(frozen=True)
class Fatal:
    error: str


Outcome = Union[Success, Transient, Fatal]


@dataclass
class GenerationResult:
    plan: Dict[str, Any]
    models: List[str]
    tokens_used: int
    cost_usd: float
    duration_ms: int
    warnings: List[str] = field(default_factory=list)

    @property
    def model(self) -> str | None:
        return self.models[-1] if self.models else None


_slot_lock = threading.Lock()
_slots: Dict[int, threading.BoundedSemaphore] = {}


def _upstream_slots(limit: int) -> threading.BoundedSemaphore:
    with _slot_lock:
        semaphore = _slots.get(limit)
        if semaphore is None:
            semaphore = threading.BoundedSemaphore(limit)
            _slots[limit] = semaphore
        return semaphore


_user_slot_lock = threading.Lock()
_user_slots: Dict[int, threading.Lock] = {}


def _user_slot(user_id: int | None):
    """At most one upstream call in flight per user, across requests and continuations."""

    if user_id is None:
        return nullcontext()
    with _user_slot_lock:
        return _user_slots.setdefault(user_id, threading.Lock())


def attempt_plan(models: Sequence[str], max_retries: int) -> Iterator[Tuple[str, int]]:
    """Yield (model, attempt) pairs in fallback order; attempt 0 is the first call."""

    for model in models:
        for attempt in range(max_retries + 1):
            yield model, attempt


def classify_error(exc: UpstreamError) -> str:
    message = str(exc).lower()
    if exc.status_code == 429 or any(marker in message for marker in QUOTA_MARKERS):
        return "quota"
    if exc.status_code in TRANSIENT_STATUS_CODES or any(
        marker in message for marker in TRANSIENT_MARKERS
    ):
        return "transient"
    return "fatal"


def _record_attempt(
    *,
    purpose: str,
    model: str,
    attempt: int,
    outcome: str,
    error: str | None,
    tokens: int,
    started: float,
    settings: EngineSettings,
    user_id: int | None,
    week_number: int | None,
) -> None:
    duration_ms = int((time.perf_counter() - started) * 1000)
    success = outcome == "success"
    cost = tokens / 1000 * settings.cost_per_1k_tokens if success else 0.0
    record_upstream_attempt(model, outcome)
    log_event(
        "upstream_attempt",
        {
            "purpose": purpose,
            "model": model,
            "attempt": attempt,
            "outcome": outcome,
            "error": error,
            "duration_ms": duration_ms,
            "user_id": user_id,
            "week_number": week_number,
        },
    )

    def _write():
        db.session.add(
            GenerationLog(
                user_id=user_id,
                week_number=week_number,
                purpose=purpose,
                model=model,
                attempt=attempt,
                success=success,
                error=error,
                tokens_used=tokens,
                cost_usd=cost,
                duration_ms=duration_ms,
            )
        )

    commit_with_retry(_write)


def _attempt(
    client,
    model: str,
    system_instruction: str,
    prompt: str,
    max_tokens: int,
    settings: EngineSettings,
    user_id: int | None = None,
) -> Outcome:
    with _user_slot(user_id), _upstream_slots(settings.max_concurrent_calls):
        try:
            response = client.generate(
                model=model,
                system_instruction=system_instruction,
                prompt=prompt,
                max_output_tokens=max_tokens,
                temperature=settings.temperature,
            )
        except UpstreamError as exc:
            kind = classify_error(exc)
            if kind == "quota":
                raise QuotaExceeded(str(exc)) from exc
            return Transient(str(exc)) if kind == "transient" else Fatal(str(exc))
        except ValueError as exc:
            return Fatal(f"Unreadable response from {model}: {exc}")
    return Success(response)


def call_upstream(
    client,
    *,
    models: Sequence[str],
    prompt: str,
    max_output_tokens: int,
    settings: EngineSettings,
    system_instruction: str = PLANNER_SYSTEM_INSTRUCTION,
    sleep: Callable[[float], None] = time.sleep,
    purpose: str = "week",
    user_id: int | None = None,
    week_number: int | None = None,
) -> AIResponse:
    if not settings.api_key:
        raise MissingCredential("AI_API_KEY / GEMINI_API_KEY is not configured")

    logger = current_app.logger
    skip_model: str | None = None
    last_error = "no models configured"
    for model, attempt in attempt_plan(models, settings.max_retries):
        if model == skip_model:
            continue
        started = time.perf_counter()
        try:
            outcome = _attempt(
                client, model, system_instruction, prompt, max_output_tokens, settings, user_id
            )
        except QuotaExceeded as exc:
            _record_attempt(
                purpose=purpose, model=model, attempt=attempt, outcome="quota",
                error=str(exc), tokens=0, started=started, settings=settings,
                user_id=user_id, week_number=week_number,
            )
            raise
        if isinstance(outcome, Success):
            _record_attempt(
                purpose=purpose, model=model, attempt=attempt, outcome="success",
                error=None, tokens=outcome.response.tokens_used, started=started,
                settings=settings, user_id=user_id, week_number=week_number,
            )
            return outcome.response

        last_error = outcome.error
        kind = "transient" if isinstance(outcome, Transient) else "fatal"
        _record_attempt(
            purpose=purpose, model=model, attempt=attempt, outcome=kind,
            error=last_error, tokens=0, started=started, settings=settings,
            user_id=user_id, week_number=week_number,
        )
        if isinstance(outcome, Transient) and attempt < settings.max_retries:
            delay = settings.retry_backoff_sec * (attempt + 1)
            logger.warning(
                "Model %s overloaded (retry %s/%s): %s. Retrying in %.1fs",
                model,
                attempt + 1,
                settings.max_retries,
                last_error,
                delay,
            )
            sleep(delay)
            continue
        logger.warning("Model %s gave up (%s): %s", model, kind, last_error)
        skip_model = model

    raise GenerationFailed(f"All models failed: {last_error}", last_error=last_error)


def extract_json(text: str) -> Any:
    """Strip code fences and surrounding prose, then parse the JSON body."""

    cleaned = re.sub(r"```(?:json)?", "", text or "", flags=re.IGNORECASE).strip()
    starts = [index for index in (cleaned.find("{"), cleaned.find("[")) if index != -1]
    if not starts:
        raise PlanValidationError("Response contained no JSON")
    start = min(starts)
    end = max(cleaned.rfind("}"), cleaned.rfind("]"))
    if end < start:
        raise PlanValidationError("Response JSON is truncated")
    try:
        return json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise PlanValidationError(f"Invalid JSON: {exc.msg}") from exc


def coerce_day_list(payload: Any) -> List[Dict[str, Any]]:
    """Chunk-level check: the payload must be a list of day objects."""

    if isinstance(payload, dict):
        if payload.get("partial"):
            raise PlanValidationError("Service returned a partial response")
        payload = payload.get("days")
    if not isinstance(payload, list) or not payload:
        raise PlanValidationError("Expected a list of days")
    if not all(isinstance(day, dict) for day in payload):
        raise PlanValidationError("Every day must be an object")
    return payload


def _parse_day_date(value: Any) -> date | None:
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_meal(meal: Any, label: str, problems: List[str]) -> None:
    if not isinstance(meal, dict):
        problems.append(f"{label} must be an object")
        return
    ingredients = meal.get("ingredients")
    if not isinstance(ingredients, list) or not ingredients:
        problems.append(f"{label} has no ingredients")
    for key in MEAL_NUMBER_FIELDS:
        if meal.get(key) is not None and not _is_number(meal[key]):
            problems.append(f"{label} has non-numeric {key}")


def validate_week(days: List[Dict[str, Any]]) -> List[str]:
    """Whole-week checks; returns soft warnings and raises on structural problems.

    Every field the week summary and the meal/workout rows read is type-checked
    here, so a malformed answer surfaces as PlanValidationError.
    """

    problems: List[str] = []
    warnings: List[str] = []
    if len(days) != 7:
        problems.append(f"Expected 7 days, got {len(days)}")

    previous: date | None = None
    for index, day in enumerate(days, start=1):
        for key in ("date", "day_of_week", "nutrition"):
            if not day.get(key):
                problems.append(f"Day {index} missing {key}")
        current = _parse_day_date(day.get("date"))
        if current is None:
            problems.append(f"Day {index} has an invalid date")
        elif previous is not None and current != previous + timedelta(days=1):
            problems.append(f"Day {index} ({current}) does not follow {previous}")
        previous = current or previous

        nutrition = day.get("nutrition") or {}
        if not isinstance(nutrition, dict):
            problems.append(f"Day {index} nutrition must be an object")
            nutrition = {}
        meals = nutrition.get("meals")
        if not isinstance(meals, list) or not meals:
            problems.append(f"Day {index} has no meals")
            meals = []
        for position, meal in enumerate(meals, start=1):
            _check_meal(meal, f"Day {index} meal {position}", problems)

        day["is_training_day"] = bool(day.get("is_training_day"))
        workout = day.get("workout")
        if day["is_training_day"] and not workout:
            problems.append(f"Day {index} is a training day without workout")
        elif day["is_training_day"] and not isinstance(workout, dict):
            problems.append(f"Day {index} workout must be an object")
        elif day["is_training_day"]:
            duration = workout.get("duration_minutes")
            if duration is not None and not _is_number(duration):
                problems.append(f"Day {index} workout has non-numeric duration_minutes")
        if not day["is_training_day"]:
            day["workout"] = None

        target = nutrition.get("target_calories")
        if target is not None and not _is_number(target):
            problems.append(f"Day {index} has non-numeric target_calories")
            continue
        calories = [meal.get("calories") for meal in meals if isinstance(meal, dict)]
        if not all(value is None or _is_number(value) for value in calories):
            continue
        total = sum(value or 0 for value in calories)
        if target and abs(total - target) / target > CALORIE_WARNING_TOLERANCE:
            warnings.append(f"Day {index}: {total} kcal vs target {target}")

    if problems:
        raise PlanValidationError(problems)
    return warnings


def assemble_week(days: List[Dict[str, Any]], week_number: int, phase: str) -> Dict[str, Any]:
    training = [day for day in days if day.get("is_training_day")]
    calories = [
        sum((meal.get("calories") or 0) for meal in day["nutrition"]["meals"]) for day in days
    ]
    protein = [
        sum((meal.get("protein") or 0) for meal in day["nutrition"]["meals"]) for day in days
    ]
    return {
        "week_number": week_number,
        "start_date": days[0]["date"],
        "end_date": days[-1]["date"],
        "phase": phase,
        "days": days,
        "weekly_stats": {
            "training_days": len(training),
            "rest_days": len(days) - len(training),
            "total_training_minutes": sum(
                int((day.get("workout") or {}).get("duration_minutes") or 0) for day in training
            ),
            "avg_calories": round(sum(calories) / len(days)) if days else 0,
            "avg_protein": round(sum(protein) / len(days)) if days else 0,
        },
    }


def _normalize_days(days: List[Dict[str, Any]]) -> None:
    for day in days:
        current = _parse_day_date(day.get("date"))
        if current is not None:
            day["date"] = current.isoformat()
            day["day_of_week"] = WEEKDAYS[current.weekday()]


def generate_week_plan(
    context: Mapping[str, Any],
    week_number: int,
    *,
    settings: EngineSettings,
    client,
    strategy: str = STRATEGY_CHUNKED,
    sleep: Callable[[float], None] = time.sleep,
    user_id: int | None = None,
) -> GenerationResult:
    started = time.perf_counter()
    phase = phase_for_week(context["planning"]["phases"], week_number)
    week_start = week_start_date(context, week_number)
    responses: List[AIResponse] = []
    days: List[Dict[str, Any]] = []

    if strategy == STRATEGY_FULL_WEEK:
        prompt = build_week_prompt(context, week_number=week_number, phase=phase, week_start=week_start)
        response = call_upstream(
            client,
            models=settings.week_models,
            prompt=prompt,
            max_output_tokens=settings.week_max_tokens,
            settings=settings,
            sleep=sleep,
            purpose="full_week",
            user_id=user_id,
            week_number=week_number,
        )
        responses.append(response)
        days = coerce_day_list(extract_json(response.text))
    else:
        for index, (first, last) in enumerate(CHUNK_RANGES):
            prompt = build_day_prompt(
                context,
                week_number=week_number,
                phase=phase,
                week_start=week_start,
                first_day=first,
                last_day=last,
            )
            try:
                response = call_upstream(
                    client,
                    models=settings.chunk_models,
                    prompt=prompt,
                    max_output_tokens=settings.chunk_max_tokens,
                    settings=settings,
                    sleep=sleep,
                    purpose=f"chunk_{first}_{last}",
                    user_id=user_id,
                    week_number=week_number,
                )
            except GenerationFailed as exc:
                raise GenerationFailed(
                    f"Failed to generate days {first}-{last}: {exc.last_error}",
                    last_error=exc.last_error,
                ) from exc
            responses.append(response)
            days.extend(coerce_day_list(extract_json(response.text)))
            if index < len(CHUNK_RANGES) - 1 and settings.chunk_delay_sec:
                sleep(settings.chunk_delay_sec)

    _normalize_days(days)
    warnings = validate_week(days)
    if warnings:
        current_app.logger.warning(
            "Week %s generated with calorie warnings: %s", week_number, "; ".join(warnings)
        )
    tokens = sum(response.tokens_used for response in responses)
    if tokens:
        cost = tokens / 1000 * settings.cost_per_1k_tokens
    else:
        cost = settings.cost_per_generation_usd
    return GenerationResult(
        plan=assemble_week(days, week_number, phase),
        models=[response.model for response in responses],
        tokens_used=tokens,
        cost_usd=round(cost, 6),
        duration_ms=int((time.perf_counter() - started) * 1000),
        warnings=warnings,
    )
