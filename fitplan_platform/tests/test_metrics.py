"""Tests for logging/metrics hardening."""

from __future__ import annotations

from fitplan_app.services import ai_log


def test_metrics_endpoint(client):
    client.get("/api/planning/ping")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"fitplan_requests_total" in resp.data
    assert b"fitplan_upstream_attempts_total" in resp.data


def test_request_id_header(client):
    resp = client.get("/api/planning/ping")
    assert resp.status_code == 200
    assert "X-Request-ID" in resp.headers

    echoed = client.get("/api/planning/ping", headers={"X-Request-ID": "req-123"})
    assert echoed.headers["X-Request-ID"] == "req-123"


def test_ai_log_endpoint(client):
    ai_log.clear_logs()
    ai_log.log_event("upstream_attempt", {"model": "gemini-flash-latest", "outcome": "success"})
    ai_log.log_event("upstream_attempt", {"model": "gemini-2.5-flash", "outcome": "transient"})

    resp = client.get("/metrics/ai-log?limit=1")
    assert resp.status_code == 200
    logs = resp.get_json()["logs"]
    assert len(logs) == 1
    assert logs[0]["model"] == "gemini-2.5-flash"
    assert logs[0]["kind"] == "upstream_attempt"
