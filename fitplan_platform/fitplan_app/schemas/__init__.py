"""Serialization / validation schemas (Marshmallow)."""

from .planning_schema import CacheStatsQuerySchema, PlanInitSchema, WeekRequestSchema

__all__ = [
    "CacheStatsQuerySchema",
    "PlanInitSchema",
    "WeekRequestSchema",
]
