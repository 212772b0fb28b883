"""Audit trail for upstream generation attempts and serving decisions."""

from __future__ import annotations

from .user import utcnow
from ..extensions import db


class GenerationLog(db.Model):
    """One call (or failed week run) against the generative service. Append-only."""

    __tablename__ = "ai_generation_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    week_number = db.Column(db.Integer)
    purpose = db.Column(db.String(32), nullable=False, default="week")
    model = db.Column(db.String(64))
    attempt = db.Column(db.Integer, nullable=False, default=0)
    success = db.Column(db.Boolean, nullable=False, default=False)
    error = db.Column(db.Text)
    tokens_used = db.Column(db.Integer, nullable=False, default=0)
    cost_usd = db.Column(db.Float, nullable=False, default=0.0)
    duration_ms = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class PlanDecisionLog(db.Model):
    __tablename__ = "plan_decision_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    week_number = db.Column(db.Integer)
    decision = db.Column(db.String(32), nullable=False)
    cached_plan_id = db.Column(db.Integer, db.ForeignKey("cached_plans.id", ondelete="SET NULL"))
    similarity = db.Column(db.Float)
    reasons = db.Column(db.JSON, nullable=False, default=list)
    adaptations_count = db.Column(db.Integer, nullable=False, default=0)
    response_time_ms = db.Column(db.Integer, nullable=False, default=0)
    estimated_cost_usd = db.Column(db.Float, nullable=False, default=0.0)
    actual_cost_usd = db.Column(db.Float, nullable=False, default=0.0)
    success = db.Column(db.Boolean, nullable=False, default=True)
    error = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)
