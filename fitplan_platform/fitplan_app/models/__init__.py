"""Database models package."""

from .user import User, UserProfile, UserGoals
from .planning import (
    TrainingPlan,
    WeeklyPlan,
    Workout,
    Meal,
)
from .plan_cache import CachedPlan
from .generation import GenerationLog, PlanDecisionLog

__all__ = [
    "User",
    "UserProfile",
    "UserGoals",
    "TrainingPlan",
    "WeeklyPlan",
    "Workout",
    "Meal",
    "CachedPlan",
    "GenerationLog",
    "PlanDecisionLog",
]
