"""Training plan, weekly plan and day-level entities."""

from __future__ import annotations

from .user import utcnow
from ..extensions import db

PLAN_ACTIVE = "active"
PLAN_ARCHIVED = "archived"

WEEK_PENDING = "pending"
WEEK_GENERATING = "generating"
WEEK_GENERATED = "generated"
WEEK_ERROR = "error"
WEEK_STATUSES = (WEEK_PENDING, WEEK_GENERATING, WEEK_GENERATED, WEEK_ERROR)


class TrainingPlan(db.Model):
    """One multi-week plan version for a user; regeneration archives it and starts the next version."""

    __tablename__ = "training_plans"
    __table_args__ = (
        db.UniqueConstraint("user_id", "version", name="uq_training_plan_version"),
        db.Index("ix_training_plans_user_status", "user_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default=PLAN_ACTIVE)
    context = db.Column(db.JSON, nullable=False, default=dict)
    total_weeks = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    is_regeneration = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    archived_at = db.Column(db.DateTime(timezone=True))

    weeks = db.relationship(
        "WeeklyPlan",
        back_populates="plan",
        order_by="WeeklyPlan.week_number",
        cascade="all, delete-orphan",
    )


class WeeklyPlan(db.Model):
    __tablename__ = "weekly_plans"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "week_number", name="uq_plan_week"),
        db.Index("ix_weekly_plans_user_week", "user_id", "week_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("training_plans.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    week_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PLAN_ACTIVE)
    phase = db.Column(db.String(32))
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    plan_json = db.Column(db.JSON)
    source = db.Column(db.String(32))
    generation_status = db.Column(db.String(16), nullable=False, default=WEEK_PENDING)
    generation_error = db.Column(db.Text)
    generation_started_at = db.Column(db.DateTime(timezone=True))
    generated_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    plan = db.relationship("TrainingPlan", back_populates="weeks")
    workouts = db.relationship(
        "Workout",
        back_populates="weekly_plan",
        order_by="Workout.date",
        cascade="all, delete-orphan",
    )
    meals = db.relationship(
        "Meal",
        back_populates="weekly_plan",
        order_by="Meal.id",
        cascade="all, delete-orphan",
    )


class Workout(db.Model):
    __tablename__ = "workouts"
    __table_args__ = (
        db.UniqueConstraint("weekly_plan_id", "date", name="uq_workout_week_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    weekly_plan_id = db.Column(
        db.Integer, db.ForeignKey("weekly_plans.id"), nullable=False, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    title = db.Column(db.String(255))
    workout_type = db.Column(db.String(64))
    duration_minutes = db.Column(db.Integer)
    intensity = db.Column(db.String(32))
    exercises = db.Column(db.JSON, nullable=False, default=list)
    completed = db.Column(db.Boolean, nullable=False, default=False)

    weekly_plan = db.relationship("WeeklyPlan", back_populates="workouts")


class Meal(db.Model):
    __tablename__ = "meals"

    id = db.Column(db.Integer, primary_key=True)
    weekly_plan_id = db.Column(
        db.Integer, db.ForeignKey("weekly_plans.id"), nullable=False, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    meal_type = db.Column(db.String(32))
    name = db.Column(db.String(255), nullable=False)
    calories = db.Column(db.Integer, nullable=False, default=0)
    protein = db.Column(db.Float, nullable=False, default=0)
    carbs = db.Column(db.Float, nullable=False, default=0)
    fat = db.Column(db.Float, nullable=False, default=0)
    fiber = db.Column(db.Float, nullable=False, default=0)
    ingredients = db.Column(db.JSON, nullable=False, default=list)

    weekly_plan = db.relationship("WeeklyPlan", back_populates="meals")
