"""User domain models."""

from __future__ import annotations

from datetime import datetime, timezone

from ..extensions import db


def utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    """Account that owns training plans. Credentials live with the identity provider."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    username = db.Column(db.String(64), unique=True, nullable=True, index=True)
    tier = db.Column(db.String(32), nullable=False, default="free")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    profile = db.relationship(
        "UserProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    goals = db.relationship(
        "UserGoals",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.email} ({self.tier})>"


class UserProfile(db.Model):
    """Biometric and preference snapshot taken when week 1 of a plan is written."""

    __tablename__ = "user_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    age = db.Column(db.Integer)
    gender = db.Column(db.String(16))
    weight_kg = db.Column(db.Float)
    height_cm = db.Column(db.Float)
    body_fat = db.Column(db.Float)
    activity_level = db.Column(db.String(32))
    experience_level = db.Column(db.String(32))
    sport_type = db.Column(db.String(64))
    days_per_week = db.Column(db.Integer)
    session_duration = db.Column(db.Integer)
    diet_type = db.Column(db.String(32))
    meals_per_day = db.Column(db.Integer)
    allergies = db.Column(db.JSON, nullable=False, default=list)
    intolerances = db.Column(db.JSON, nullable=False, default=list)
    excluded_foods = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    user = db.relationship("User", back_populates="profile")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<UserProfile user_id={self.user_id} weight={self.weight_kg}>"


class UserGoals(db.Model):
    __tablename__ = "user_goals"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    primary_goal = db.Column(db.String(32), nullable=False, default="maintain")
    target_timeline_weeks = db.Column(db.Integer, nullable=False, default=12)
    has_competition = db.Column(db.Boolean, nullable=False, default=False)
    competition_type = db.Column(db.String(64))
    target_date = db.Column(db.Date)
    training_day_calories = db.Column(db.Integer)
    rest_day_calories = db.Column(db.Integer)
    protein_g = db.Column(db.Integer)
    carbs_g = db.Column(db.Integer)
    fat_g = db.Column(db.Integer)
    fiber_g = db.Column(db.Integer)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    user = db.relationship("User", back_populates="goals")
