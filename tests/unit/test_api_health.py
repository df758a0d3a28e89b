"""Tests for health check endpoints."""
from types import SimpleNamespace

import pytest
from flask import Flask

from rolesync.api.health import bp as health_bp


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.register_blueprint(health_bp)
    return app


def test_health_check(app):
    """Test basic health check endpoint."""
    response = app.test_client().get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_readiness_without_engine(app):
    response = app.test_client().get("/ready")
    assert response.status_code == 503
    assert response.data == b"not ready"


def test_readiness_check(app):
    app.config["SYNC_ENGINE"] = SimpleNamespace(running=False)
    response = app.test_client().get("/ready")
    assert response.status_code == 200
    assert response.data == b"ready"
    assert response.content_type.startswith("text/plain")


def test_readiness_while_run_in_progress(app):
    app.config["SYNC_ENGINE"] = SimpleNamespace(running=True)
    response = app.test_client().get("/ready")
    assert response.status_code == 200
    assert response.data == b"busy"
