"""Synchronization run routes."""
from __future__ import annotations
from pathlib import Path

from flask import Blueprint, abort, current_app, jsonify, request

from rolesync.api.decorators import require_api_token
from scripts import audit

bp = Blueprint("sync", __name__)


def _audit_file() -> Path:
    return current_app.config["AUDIT_LOG_FILE"]


@bp.route("/runs", methods=["POST"])
@require_api_token
def trigger_run():
    """Run one synchronization synchronously and return its report.

    Body (optional JSON): ``{"dry_run": true}``. Returns 409 while another
    run is in progress and 422 if the hierarchy is malformed.
    """
    payload = request.get_json(silent=True) or {}
    dry_run = payload.get("dry_run", False)
    if not isinstance(dry_run, bool):
        abort(400, "dry_run must be a boolean")

    engine = current_app.config["SYNC_ENGINE"]
    report = engine.run(dry_run=dry_run)
    return jsonify(report.to_dict()), 200


@bp.route("/runs/<run_id>", methods=["GET"])
@require_api_token
def get_run(run_id: str):
    """Summary of a recorded run."""
    event = audit.load_run(run_id, _audit_file())
    if not event:
        abort(404)
    details = event.get("details") or {}
    return jsonify({
        "run_id": run_id,
        "timestamp": event.get("timestamp"),
        "event_type": event.get("event_type"),
        "success": event.get("success"),
        "dry_run": details.get("dry_run", False),
        "aborted": details.get("aborted"),
        "summary": details.get("summary", {}),
        "conflicts": details.get("conflicts", []),
        "fetch_errors": details.get("fetch_errors", []),
        "failures": details.get("failures", []),
    }), 200


@bp.route("/explain", methods=["GET"])
@require_api_token
def explain():
    """Why a user holds (or would hold) a capacity on a resource in a given run."""
    run_id = request.args.get("run_id", "").strip()
    user = request.args.get("user", "").strip().lower()
    resource = request.args.get("resource", "").strip()
    if not run_id or not user or not resource:
        abort(400, "run_id, user and resource are required")

    explanation = audit.explain_assignment(run_id, user, resource, _audit_file())
    if explanation is None:
        abort(404)
    return jsonify(explanation), 200
