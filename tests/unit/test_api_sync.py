"""Tests for the /sync ops API."""
import pytest

from conftest import FakeTarget, StaticSource

from rolesync.config import SyncConfig
from rolesync.core.engine import SyncEngine
from rolesync.core.errors import CycleDetected, SyncAlreadyRunning
from rolesync.core.executor import RetryPolicy
from rolesync.flask_app import create_app
from scripts.audit import JsonlAuditSink

TOKEN = "ops-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture()
def sync_config(tmp_path, client_resources):
    return SyncConfig(
        keycloak_service_client_secret="s",
        ckan_api_token="t",
        client_resources=client_resources,
        role_precedence=[["admin", "publisher", "editor", "member"]],
        audit_log_dir=str(tmp_path / "audit"),
        audit_log_signing_key="k",
        api_token=TOKEN,
    )


@pytest.fixture()
def engine(sync_config, hierarchy, tmp_path):
    sink = JsonlAuditSink(tmp_path / "audit" / "sync-runs.jsonl", "k", operator="api")
    return SyncEngine(
        StaticSource(hierarchy),
        FakeTarget({"org-a": {"alice": "editor"}}),
        sync_config.client_resources,
        sync_config.precedence(),
        sink,
        retry=RetryPolicy(jitter=False),
        sleep=lambda s: None,
    )


@pytest.fixture()
def client(sync_config, engine):
    app = create_app(sync_config, engine)
    app.config.update(TESTING=True)
    with app.test_client() as client:
        yield client


def test_token_required(client):
    assert client.post("/sync/runs").status_code == 401
    assert client.post("/sync/runs", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.post("/sync/runs", headers={"Authorization": TOKEN}).status_code == 401


def test_unconfigured_token_refuses_everything(sync_config, engine):
    sync_config.api_token = ""
    app = create_app(sync_config, engine)
    response = app.test_client().post("/sync/runs", headers={"Authorization": "Bearer "})
    assert response.status_code == 401


def test_trigger_run_returns_report(client, engine):
    response = client.post("/sync/runs", headers=AUTH)

    assert response.status_code == 200
    body = response.get_json()
    assert body["summary"]["updated"] == 1
    assert body["summary"]["failed"] == 0
    assert body["dry_run"] is False
    assert engine.target.members["org-a"]["alice"] == "publisher"


def test_trigger_dry_run(client, engine):
    response = client.post("/sync/runs", json={"dry_run": True}, headers=AUTH)
    assert response.status_code == 200
    assert response.get_json()["summary"]["skipped"] == 4
    assert engine.target.writes() == []


def test_dry_run_must_be_boolean(client):
    response = client.post("/sync/runs", json={"dry_run": "yes"}, headers=AUTH)
    assert response.status_code == 400


def test_run_in_progress_returns_409(client, engine, monkeypatch):
    def busy(**kwargs):
        raise SyncAlreadyRunning("A synchronization run is already in progress")

    monkeypatch.setattr(engine, "run", busy)
    response = client.post("/sync/runs", headers=AUTH)
    assert response.status_code == 409
    assert response.get_json()["error"] == "Conflict"


def test_malformed_hierarchy_returns_422(client, engine):
    engine.source.error = CycleDetected(["a", "b", "a"])
    response = client.post("/sync/runs", headers=AUTH)
    assert response.status_code == 422
    assert "a -> b -> a" in response.get_json()["message"]


def test_get_recorded_run(client):
    run_id = client.post("/sync/runs", headers=AUTH).get_json()["run_id"]

    response = client.get(f"/sync/runs/{run_id}", headers=AUTH)

    assert response.status_code == 200
    body = response.get_json()
    assert body["event_type"] == "sync_run"
    assert body["success"] is True
    assert body["summary"]["granted"] == 3


def test_unknown_run_is_404(client):
    assert client.get("/sync/runs/nope", headers=AUTH).status_code == 404


def test_explain_replays_recorded_hierarchy(client):
    run_id = client.post("/sync/runs", headers=AUTH).get_json()["run_id"]

    response = client.get(
        "/sync/explain",
        query_string={"run_id": run_id, "user": "Alice", "resource": "org-a"},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["capacity"] == "publisher"
    assert body["roles"] == ["editor", "publisher"]
    assert body["results"][0]["operation"]["kind"] == "update"
    assert body["results"][0]["status"] == "succeeded"


def test_explain_requires_parameters(client):
    assert client.get("/sync/explain?run_id=x", headers=AUTH).status_code == 400
