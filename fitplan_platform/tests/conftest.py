"""Pytest configuration for ensuring project modules resolve correctly."""

from __future__ import annotations

import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from fitplan_app import create_app
from fitplan_app.extensions import db
from fitplan_app.models import User
from fitplan_app.services.ai_client import AIResponse
from fitplan_app.services.generation_pipeline import assemble_week
from fitplan_app.services.plan_prompts import build_day_prompt
from fitplan_app.services.planning_context import phase_for_week, week_start_date
from fitplan_app.utils.security import generate_access_token

PLAN_START = "2026-01-05"  # a Monday


def days_from_prompt(prompt: str, meals_per_day: int = 2) -> list[dict]:
    """Answer a day prompt with well-formed days matching its requested dates and targets."""

    lines = prompt.splitlines()
    marker = next(i for i, line in enumerate(lines) if "Days to produce:" in line)
    requested_days = json.loads(lines[marker + 1].strip())
    days = []
    for requested in requested_days:
        target = requested["target_calories"]
        share = target // meals_per_day
        meals = []
        for position in range(meals_per_day):
            calories = share if position < meals_per_day - 1 else target - share * (meals_per_day - 1)
            meals.append(
                {
                    "meal_type": f"meal_{position + 1}",
                    "name": f"Rice bowl {position + 1}",
                    "calories": calories,
                    "protein": 40,
                    "carbs": 100,
                    "fat": 20,
                    "fiber": 8,
                    "ingredients": [{"name": "rice", "amount": 150, "unit": "g"}],
                }
            )
        workout = None
        if requested["is_training_day"]:
            workout = {
                "title": "Full body",
                "workout_type": "strength",
                "duration_minutes": 60,
                "intensity": "moderate",
                "exercises": [{"name": "Squat", "sets": 4, "reps": "8"}],
            }
        days.append(
            {
                "date": requested["date"],
                "day_of_week": requested["day_of_week"],
                "is_training_day": requested["is_training_day"],
                "workout": workout,
                "nutrition": {"target_calories": target, "meals": meals},
            }
        )
    return days


class ScriptedPlanner:
    """Stand-in for the upstream client.

    Each call pops the next scripted item: an exception is raised, a string is
    returned as the response text. Once the script is empty every call answers
    with valid days built from the prompt.
    """

    def __init__(self, script=None, tokens: int = 0):
        self.script = list(script or [])
        self.tokens = tokens
        self.calls: list[dict] = []

    def generate(self, *, model, system_instruction, prompt, max_output_tokens, temperature):
        self.calls.append({"model": model, "max_output_tokens": max_output_tokens, "prompt": prompt})
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return AIResponse(text=item, model=model, tokens_used=self.tokens)
        return AIResponse(text=json.dumps(days_from_prompt(prompt)), model=model, tokens_used=self.tokens)

    @property
    def models(self) -> list[str]:
        return [call["model"] for call in self.calls]


def make_answers(**overrides) -> dict:
    """Onboarding answers for the worked example: 80 kg male cutting over 12 weeks."""

    answers = {
        "biometrics": {"age": 30, "gender": "male", "weight": 80, "height": 180},
        "objective": {"primary_goal": "cut", "target_timeline": 12},
        "activity": {"daily_activity_level": "moderate"},
        "training": {
            "experience_level": "intermediate",
            "days_per_week": 4,
            "session_duration": 60,
            "sport_type": "strength",
        },
        "nutrition": {"diet_type": "omnivore", "meals_per_day": 2},
        "start_preferences": {"start_date": PLAN_START},
        "locale": "en",
    }
    for section, values in overrides.items():
        if isinstance(values, dict):
            answers[section] = {**answers.get(section, {}), **values}
        else:
            answers[section] = values
    return answers


@pytest.fixture()
def app_with_db():
    app = create_app("test")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app_with_db):
    return app_with_db.test_client()


@pytest.fixture()
def user_id(app_with_db):
    user = User(email="athlete@example.com", username="athlete", tier="free")
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture()
def auth_headers(app_with_db, user_id):
    user = db.session.get(User, user_id)
    token = generate_access_token(user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def planner(app_with_db):
    fake = ScriptedPlanner()
    app_with_db.extensions["ai_client"] = fake
    return fake


@pytest.fixture()
def answers():
    return make_answers


@pytest.fixture()
def week_plan():
    """Build a valid assembled week for a context without calling any service."""

    def _build(context, week_number: int = 1) -> dict:
        phase = phase_for_week(context["planning"]["phases"], week_number)
        prompt = build_day_prompt(
            context,
            week_number=week_number,
            phase=phase,
            week_start=week_start_date(context, week_number),
            first_day=1,
            last_day=7,
        )
        days = days_from_prompt(prompt, context["nutrition"]["meals_per_day"])
        return assemble_week(days, week_number, phase)

    return _build
