"""Smoke tests for the Flask application factory."""

from __future__ import annotations

import pytest

from fitplan_app import create_app


@pytest.fixture(scope="module")
def app():
    app = create_app("test")
    yield app


def test_app_creation(app):
    assert app is not None
    assert app.config["TESTING"] is True
    assert app.config["PLAN_JOBS_SYNC"] is True


def test_ping_endpoint(app):
    client = app.test_client()
    response = client.get("/api/planning/ping")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"


def test_engine_settings_follow_config(app):
    from fitplan_app.services.engine_settings import get_engine_settings

    with app.app_context():
        settings = get_engine_settings()
    assert settings.api_key == "test-key"
    assert settings.retry_backoff_sec == 0.0
    assert settings.week_models[0] == app.config["AI_PRIMARY_MODEL"]
    assert len(set(settings.week_models)) == len(settings.week_models)
