"""Reusable generated plans keyed by semantic fingerprint."""

from __future__ import annotations

from .user import utcnow
from ..extensions import db

CACHE_SOURCE_AI = "ai"
CACHE_SOURCE_ADAPTED = "adapted"


class CachedPlan(db.Model):
    __tablename__ = "cached_plans"
    __table_args__ = (
        db.UniqueConstraint("exact_hash", "week_number", name="uq_cached_plan_hash_week"),
        db.Index("ix_cached_plans_semantic_week", "semantic_hash", "week_number"),
        db.Index("ix_cached_plans_compound_week", "compound_key", "week_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    exact_hash = db.Column(db.String(64), nullable=False)
    semantic_hash = db.Column(db.String(64), nullable=False)
    compound_key = db.Column(db.String(128), nullable=False)
    week_number = db.Column(db.Integer, nullable=False)
    phase = db.Column(db.String(32))
    fingerprint = db.Column(db.JSON, nullable=False, default=dict)
    context = db.Column(db.JSON, nullable=False, default=dict)
    plan_json = db.Column(db.JSON, nullable=False)
    source = db.Column(db.String(16), nullable=False, default=CACHE_SOURCE_AI)
    model = db.Column(db.String(64))
    access_count = db.Column(db.Integer, nullable=False, default=0)
    cost_usd = db.Column(db.Float, nullable=False, default=0.0)
    tokens_used = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<CachedPlan {self.compound_key} week={self.week_number} hits={self.access_count}>"
