"""Prometheus scrape endpoint and the recent upstream-call buffer."""

from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from ..metrics import latest_metrics
from ..services import ai_log

metrics_bp = Blueprint("metrics_bp", __name__)


@metrics_bp.get("/metrics")
def metrics():
    payload, content_type = latest_metrics()
    return Response(payload, mimetype=content_type)


@metrics_bp.get("/metrics/ai-log")
def recent_upstream_calls():
    limit = request.args.get("limit", default=100, type=int)
    return jsonify({"logs": ai_log.get_logs(limit)})
