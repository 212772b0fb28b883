"""REST API blueprints (planning, metrics)."""

from __future__ import annotations

from .planning_bp import planning_bp
from .metrics_bp import metrics_bp

BLUEPRINTS = (
    (planning_bp, "/api/planning"),
    (metrics_bp, ""),
)

__all__ = [
    "BLUEPRINTS",
    "planning_bp",
    "metrics_bp",
]
