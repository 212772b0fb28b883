"""fitplan_app package – application factory and blueprint registration."""

from __future__ import annotations

import os
from time import perf_counter

import click
from flask import Flask, g, request
from flask_jwt_extended import JWTManager
from sqlalchemy import event

from config import resolve_config
from .blueprints import BLUEPRINTS
from .extensions import cors, db, jwt, migrate, limiter
from .logging_config import configure_logging, assign_request_id
from .metrics import record_request
from .tasks.plan_tasks import schedule_stale_week_sweep


def create_app(config_name: str | None = None) -> Flask:
    """Application factory used by both CLI and runtime servers."""

    app = Flask(__name__)
    _configure_app(app, config_name)
    configure_logging(app)
    _register_extensions(app)
    _register_blueprints(app)
    schedule_stale_week_sweep(app)
    _register_shellcontext(app)
    _register_cli(app)
    _register_bootstrap(app)
    _register_request_hooks(app)

    return app


def _configure_app(app: Flask, config_name: str | None) -> None:
    env_name = config_name or os.getenv("FLASK_CONFIG")
    config_obj = resolve_config(env_name)
    app.config.from_object(config_obj)


def _register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    _configure_jwt(jwt)
    _configure_sqlite_engine(app)
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": app.config.get("CORS_ORIGINS", "*")}},
        supports_credentials=True,
    )
    limiter.default_limits = app.config.get("RATE_LIMIT_DEFAULTS", [])
    limiter.init_app(app)


def _register_blueprints(app: Flask) -> None:
    for blueprint, prefix in BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=prefix)


def _register_shellcontext(app: Flask) -> None:
    # Lazy import inside function to avoid circular dependencies.
    from . import models

    @app.shell_context_processor
    def shell_context():
        return {
            "db": db,
            "User": models.User,
            "TrainingPlan": models.TrainingPlan,
            "WeeklyPlan": models.WeeklyPlan,
            "CachedPlan": models.CachedPlan,
        }


def _configure_jwt(jwt_manager: JWTManager) -> None:
    from flask import jsonify

    from .models import User

    @jwt_manager.user_lookup_loader
    def user_lookup_callback(_jwt_header, jwt_data):
        identity = jwt_data.get("sub")
        if identity is None:
            return None
        try:
            identity_int = int(identity)
        except (TypeError, ValueError):
            return None
        user = db.session.get(User, identity_int)
        if user is None or not user.is_active:
            return None
        return user

    @jwt_manager.user_lookup_error_loader
    def user_lookup_error_callback(_jwt_header, _jwt_data):
        return jsonify({"message": "Unknown or inactive user"}), 401

    @jwt_manager.expired_token_loader
    def expired_token_callback(jwt_header, jwt_data):
        return jsonify({"message": "Token has expired"}), 401

    @jwt_manager.invalid_token_loader
    def invalid_token_callback(error_string):
        return jsonify({"message": "Invalid token", "error": error_string}), 401

    @jwt_manager.unauthorized_loader
    def missing_token_callback(error_string):
        return jsonify({"message": "Missing authorization token"}), 401


def _register_bootstrap(app: Flask) -> None:
    @app.before_request
    def ensure_schema():
        if app.config.get("_SCHEMA_READY"):
            return
        try:
            _ensure_schema(app)
            app.config["_SCHEMA_READY"] = True
        except Exception as exc:  # pragma: no cover
            app.logger.debug("Schema bootstrap skipped: %s", exc)
            app.config["_SCHEMA_READY"] = False


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def start_request():
        assign_request_id()
        g.request_started_at = perf_counter()

    @app.after_request
    def finalize(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        started = getattr(g, "request_started_at", None)
        latency = perf_counter() - started if started else 0.0
        endpoint = request.endpoint or request.path
        record_request(request.method, endpoint, response.status_code, latency)
        return response


def _configure_sqlite_engine(app: Flask) -> None:
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if not uri.startswith("sqlite"):
        return
    busy_timeout_ms = int(app.config.get("SQLITE_BUSY_TIMEOUT_MS", 15000))

    with app.app_context():
        engine = db.engine

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):  # pragma: no cover
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
                cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms};")
                cursor.execute("PRAGMA synchronous=NORMAL;")
            finally:
                cursor.close()


def _ensure_schema(app: Flask) -> None:
    from . import models  # noqa: F401

    with app.app_context():
        db.create_all()


def _register_cli(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db() -> None:
        """Create any missing tables (use `flask db upgrade` for managed migrations)."""

        _ensure_schema(app)
        click.echo("Database schema ready.")

    @app.cli.group("plan")
    def plan_group():
        """Training plan management commands."""

    @plan_group.command("requeue-stale")
    @click.option(
        "--max-age",
        "max_age",
        type=int,
        default=None,
        help="Seconds a week may stay in 'generating' (defaults to PLAN_STALE_GENERATING_SECONDS).",
    )
    def requeue_stale_command(max_age: int | None) -> None:
        """Reset abandoned 'generating' weeks to pending and resume their plans."""

        from .tasks.plan_tasks import requeue_stale_weeks

        with app.app_context():
            released = requeue_stale_weeks(max_age)
        if not released:
            click.echo("No stale weeks found.")
            return
        for user_id, week_number in released:
            click.echo(f"Requeued week {week_number} for user {user_id}.")

    @plan_group.command("cache-cleanup")
    @click.option("--ttl-days", type=int, default=None, help="Delete cached plans unused for this many days.")
    def cache_cleanup_command(ttl_days: int | None) -> None:
        """Delete cached week plans that have not been served recently."""

        from .services.plan_cache import cleanup_old_plans

        with app.app_context():
            days = ttl_days if ttl_days is not None else int(app.config.get("CACHE_TTL_DAYS", 90))
            deleted = cleanup_old_plans(days)
        click.echo(f"Deleted {deleted} cached plans older than {days} days.")

    @plan_group.command("generate-week")
    @click.option("--user-id", type=int, required=True, help="Owner of the active plan.")
    @click.option("--week", "week_number", type=int, required=True, help="Week number to generate.")
    def generate_week_command(user_id: int, week_number: int) -> None:
        """Generate (or regenerate a failed) week of a user's active plan."""

        from werkzeug.exceptions import HTTPException

        from .models import User
        from .services import planning_service
        from .services.week_state import WeekConflict

        with app.app_context():
            user = db.session.get(User, user_id)
            if user is None:
                raise click.ClickException(f"User {user_id} not found.")
            try:
                week = planning_service.generate_week_for_user(user, week_number)
            except WeekConflict as exc:
                raise click.ClickException(str(exc)) from exc
            except HTTPException as exc:
                raise click.ClickException(exc.description or str(exc)) from exc
        click.echo(
            f"Generated week {week_number} for user {user_id} "
            f"({week['decision']['source']}, {week['status']})."
        )
