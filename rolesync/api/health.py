"""Health check endpoints."""
from flask import Blueprint, current_app

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness: an engine is wired; reports ``busy`` while a run is in progress."""
    engine = current_app.config.get("SYNC_ENGINE")
    if engine is None:
        return ("not ready", 503, {"Content-Type": "text/plain"})
    body = "busy" if engine.running else "ready"
    return (body, 200, {"Content-Type": "text/plain"})
