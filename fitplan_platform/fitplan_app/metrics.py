"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "fitplan_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "fitplan_request_latency_seconds",
    "Latency of HTTP requests in seconds",
    ["endpoint"],
)
PLAN_DECISIONS = Counter(
    "fitplan_plan_decisions_total",
    "Week plans served, by source",
    ["source"],
)
UPSTREAM_ATTEMPTS = Counter(
    "fitplan_upstream_attempts_total",
    "Calls made to the generative service",
    ["model", "outcome"],
)
WEEK_GENERATION_SECONDS = Histogram(
    "fitplan_week_generation_seconds",
    "Wall time spent producing one week plan",
    buckets=(0.1, 0.5, 1, 5, 15, 30, 60, 120, 300),
)
WEEK_STATUS_TRANSITIONS = Counter(
    "fitplan_week_status_total",
    "Week status transitions",
    ["status"],
)


def record_request(method: str, endpoint: str, status: int, latency: float) -> None:
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)


def record_decision(source: str, seconds: float) -> None:
    PLAN_DECISIONS.labels(source=source).inc()
    WEEK_GENERATION_SECONDS.observe(seconds)


def record_upstream_attempt(model: str, outcome: str) -> None:
    UPSTREAM_ATTEMPTS.labels(model=model, outcome=outcome).inc()


def record_week_status(status: str) -> None:
    WEEK_STATUS_TRANSITIONS.labels(status=status).inc()


def latest_metrics() -> tuple[bytes, str]:
    data = generate_latest()
    return data, CONTENT_TYPE_LATEST
