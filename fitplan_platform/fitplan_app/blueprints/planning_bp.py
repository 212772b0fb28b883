"""Planning blueprint: plan creation, week generation, status and cache analytics."""

from __future__ import annotations

import json
from http import HTTPStatus

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from flask_jwt_extended import current_user, jwt_required
from marshmallow import ValidationError

from ..extensions import limiter
from ..schemas import CacheStatsQuerySchema, PlanInitSchema, WeekRequestSchema
from ..services import planning_service
from ..services.ai_client import MissingCredential
from ..services.cost_guard import BudgetExhausted
from ..services.generation_pipeline import GenerationFailed, PlanValidationError, QuotaExceeded
from ..services.plan_events import plan_event_broker
from ..services.week_state import WeekConflict, WeekSuperseded

planning_bp = Blueprint("planning_bp", __name__)

init_schema = PlanInitSchema()
week_schema = WeekRequestSchema()
stats_query_schema = CacheStatsQuerySchema()


def _plan_write_limit() -> str:
    return current_app.config.get("PLAN_INIT_RATE_LIMIT", "10 per hour")


@planning_bp.errorhandler(ValidationError)
def handle_validation_error(err: ValidationError):
    return jsonify({"errors": err.messages}), HTTPStatus.BAD_REQUEST


@planning_bp.errorhandler(WeekConflict)
def handle_week_conflict(err: WeekConflict):
    return (
        jsonify({"message": str(err), "week_number": err.week_number, "status": err.status}),
        HTTPStatus.CONFLICT,
    )


@planning_bp.errorhandler(WeekSuperseded)
def handle_week_superseded(err: WeekSuperseded):
    return (
        jsonify({"message": str(err), "week_number": err.week_number}),
        HTTPStatus.CONFLICT,
    )


@planning_bp.errorhandler(GenerationFailed)
@planning_bp.errorhandler(PlanValidationError)
@planning_bp.errorhandler(MissingCredential)
def handle_generation_error(err: Exception):
    current_app.logger.warning("Plan generation failed: %s", err)
    return (
        jsonify({"message": "Plan generation failed", "error": str(err)}),
        HTTPStatus.BAD_GATEWAY,
    )


@planning_bp.errorhandler(QuotaExceeded)
@planning_bp.errorhandler(BudgetExhausted)
def handle_capacity_error(err: Exception):
    return (
        jsonify({"message": "Plan generation temporarily unavailable", "error": str(err)}),
        HTTPStatus.SERVICE_UNAVAILABLE,
    )


@planning_bp.get("/ping")
def ping():
    return jsonify({"module": "planning", "status": "ok"})


@planning_bp.post("/init")
@jwt_required()
@limiter.limit(_plan_write_limit)
def init_plan():
    answers = init_schema.load(request.get_json() or {})
    result = planning_service.init_plan(current_user, answers)
    return jsonify(result), HTTPStatus.CREATED


@planning_bp.post("/regenerate")
@jwt_required()
@limiter.limit(_plan_write_limit)
def regenerate_plan():
    answers = init_schema.load(request.get_json() or {})
    result = planning_service.regenerate_plan(current_user, answers)
    return jsonify(result), HTTPStatus.CREATED


@planning_bp.get("/status")
@jwt_required()
def plan_status():
    return jsonify(planning_service.plan_status(current_user.id))


@planning_bp.get("/skeleton")
@jwt_required()
def plan_skeleton():
    return jsonify(planning_service.plan_skeleton(current_user.id))


@planning_bp.get("/weeks/<int:week_number>")
@jwt_required()
def get_week(week_number: int):
    return jsonify({"week": planning_service.get_week(current_user.id, week_number)})


@planning_bp.post("/generate-week")
@jwt_required()
def generate_week():
    payload = week_schema.load(request.get_json() or {})
    week = planning_service.generate_week_for_user(current_user, payload["week_number"])
    return jsonify({"week": week})


@planning_bp.post("/retry-week")
@jwt_required()
def retry_week():
    payload = week_schema.load(request.get_json() or {})
    week = planning_service.retry_week(current_user, payload["week_number"])
    return jsonify({"week": week})


@planning_bp.get("/analytics/cache-stats")
@jwt_required()
def cache_stats():
    query = stats_query_schema.load(request.args)
    return jsonify(planning_service.cache_overview(query["days"]))


@planning_bp.get("/events")
@jwt_required()
def plan_events():
    user_id = current_user.id
    snapshot = json.dumps({"type": "snapshot", "payload": planning_service.plan_status(user_id)})

    def event_stream():
        yield f"data: {snapshot}\n\n"
        for message in plan_event_broker.listen():
            if json.loads(message).get("payload", {}).get("user_id") == user_id:
                yield f"data: {message}\n\n"

    return Response(stream_with_context(event_stream()), mimetype="text/event-stream")
