"""Business logic modules (context building, plan cache, generation, persistence)."""

from . import (
    planning_context,
    fingerprint,
    similarity,
    plan_adapter,
    plan_cache,
    plan_orchestrator,
    generation_pipeline,
    plan_persistence,
    week_state,
    planning_service,
)

__all__ = [
    "planning_context",
    "fingerprint",
    "similarity",
    "plan_adapter",
    "plan_cache",
    "plan_orchestrator",
    "generation_pipeline",
    "plan_persistence",
    "week_state",
    "planning_service",
]
