"""create planning tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0a1c3e5f7b9d"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("tier", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)

    op.create_table(
        "user_profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", sa.String(length=16), nullable=True),
        sa.Column("weight_kg", sa.Float(), nullable=True),
        sa.Column("height_cm", sa.Float(), nullable=True),
        sa.Column("body_fat", sa.Float(), nullable=True),
        sa.Column("activity_level", sa.String(length=32), nullable=True),
        sa.Column("experience_level", sa.String(length=32), nullable=True),
        sa.Column("sport_type", sa.String(length=64), nullable=True),
        sa.Column("days_per_week", sa.Integer(), nullable=True),
        sa.Column("session_duration", sa.Integer(), nullable=True),
        sa.Column("diet_type", sa.String(length=32), nullable=True),
        sa.Column("meals_per_day", sa.Integer(), nullable=True),
        sa.Column("allergies", sa.JSON(), nullable=False),
        sa.Column("intolerances", sa.JSON(), nullable=False),
        sa.Column("excluded_foods", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "user_goals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("primary_goal", sa.String(length=32), nullable=False, server_default="maintain"),
        sa.Column("target_timeline_weeks", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("has_competition", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("competition_type", sa.String(length=64), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("training_day_calories", sa.Integer(), nullable=True),
        sa.Column("rest_day_calories", sa.Integer(), nullable=True),
        sa.Column("protein_g", sa.Integer(), nullable=True),
        sa.Column("carbs_g", sa.Integer(), nullable=True),
        sa.Column("fat_g", sa.Integer(), nullable=True),
        sa.Column("fiber_g", sa.Integer(), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "training_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("total_weeks", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("is_regeneration", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        _timestamp("archived_at", nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "version", name="uq_training_plan_version"),
    )
    op.create_index(op.f("ix_training_plans_user_id"), "training_plans", ["user_id"])
    op.create_index("ix_training_plans_user_status", "training_plans", ["user_id", "status"])

    op.create_table(
        "weekly_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("phase", sa.String(length=32), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("plan_json", sa.JSON(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("generation_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("generation_error", sa.Text(), nullable=True),
        _timestamp("generation_started_at", nullable=True),
        _timestamp("generated_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["plan_id"], ["training_plans.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "week_number", name="uq_plan_week"),
    )
    op.create_index(op.f("ix_weekly_plans_plan_id"), "weekly_plans", ["plan_id"])
    op.create_index("ix_weekly_plans_user_week", "weekly_plans", ["user_id", "week_number"])

    op.create_table(
        "workouts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("weekly_plan_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("workout_type", sa.String(length=64), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("intensity", sa.String(length=32), nullable=True),
        sa.Column("exercises", sa.JSON(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["weekly_plan_id"], ["weekly_plans.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("weekly_plan_id", "date", name="uq_workout_week_date"),
    )
    op.create_index(op.f("ix_workouts_weekly_plan_id"), "workouts", ["weekly_plan_id"])
    op.create_index(op.f("ix_workouts_user_id"), "workouts", ["user_id"])

    op.create_table(
        "meals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("weekly_plan_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("meal_type", sa.String(length=32), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("calories", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("protein", sa.Float(), nullable=False, server_default="0"),
        sa.Column("carbs", sa.Float(), nullable=False, server_default="0"),
        sa.Column("fat", sa.Float(), nullable=False, server_default="0"),
        sa.Column("fiber", sa.Float(), nullable=False, server_default="0"),
        sa.Column("ingredients", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["weekly_plan_id"], ["weekly_plans.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_meals_weekly_plan_id"), "meals", ["weekly_plan_id"])
    op.create_index(op.f("ix_meals_user_id"), "meals", ["user_id"])

    op.create_table(
        "cached_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("exact_hash", sa.String(length=64), nullable=False),
        sa.Column("semantic_hash", sa.String(length=64), nullable=False),
        sa.Column("compound_key", sa.String(length=128), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("phase", sa.String(length=32), nullable=True),
        sa.Column("fingerprint", sa.JSON(), nullable=False),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("plan_json", sa.JSON(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="ai"),
        sa.Column("model", sa.String(length=64), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("last_used_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("exact_hash", "week_number", name="uq_cached_plan_hash_week"),
    )
    op.create_index("ix_cached_plans_semantic_week", "cached_plans", ["semantic_hash", "week_number"])
    op.create_index("ix_cached_plans_compound_week", "cached_plans", ["compound_key", "week_number"])

    op.create_table(
        "ai_generation_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("week_number", sa.Integer(), nullable=True),
        sa.Column("purpose", sa.String(length=32), nullable=False, server_default="week"),
        sa.Column("model", sa.String(length=64), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_generation_logs_user_id"), "ai_generation_logs", ["user_id"])
    op.create_index(op.f("ix_ai_generation_logs_created_at"), "ai_generation_logs", ["created_at"])

    op.create_table(
        "plan_decision_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("week_number", sa.Integer(), nullable=True),
        sa.Column("decision", sa.String(length=32), nullable=False),
        sa.Column("cached_plan_id", sa.Integer(), nullable=True),
        sa.Column("similarity", sa.Float(), nullable=True),
        sa.Column("reasons", sa.JSON(), nullable=False),
        sa.Column("adaptations_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("response_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("actual_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["cached_plan_id"], ["cached_plans.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_plan_decision_logs_user_id"), "plan_decision_logs", ["user_id"])
    op.create_index(op.f("ix_plan_decision_logs_created_at"), "plan_decision_logs", ["created_at"])


def downgrade():
    op.drop_index(op.f("ix_plan_decision_logs_created_at"), table_name="plan_decision_logs")
    op.drop_index(op.f("ix_plan_decision_logs_user_id"), table_name="plan_decision_logs")
    op.drop_table("plan_decision_logs")
    op.drop_index(op.f("ix_ai_generation_logs_created_at"), table_name="ai_generation_logs")
    op.drop_index(op.f("ix_ai_generation_logs_user_id"), table_name="ai_generation_logs")
    op.drop_table("ai_generation_logs")
    op.drop_index("ix_cached_plans_compound_week", table_name="cached_plans")
    op.drop_index("ix_cached_plans_semantic_week", table_name="cached_plans")
    op.drop_table("cached_plans")
    op.drop_index(op.f("ix_meals_user_id"), table_name="meals")
    op.drop_index(op.f("ix_meals_weekly_plan_id"), table_name="meals")
    op.drop_table("meals")
    op.drop_index(op.f("ix_workouts_user_id"), table_name="workouts")
    op.drop_index(op.f("ix_workouts_weekly_plan_id"), table_name="workouts")
    op.drop_table("workouts")
    op.drop_index("ix_weekly_plans_user_week", table_name="weekly_plans")
    op.drop_index(op.f("ix_weekly_plans_plan_id"), table_name="weekly_plans")
    op.drop_table("weekly_plans")
    op.drop_index("ix_training_plans_user_status", table_name="training_plans")
    op.drop_index(op.f("ix_training_plans_user_id"), table_name="training_plans")
    op.drop_table("training_plans")
    op.drop_table("user_goals")
    op.drop_table("user_profiles")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
