"""Flask application factory for the synchronization ops API.

This module provides the create_app() factory function wiring the health and
sync blueprints to a SyncEngine.
"""
from __future__ import annotations
from typing import Optional

from flask import Flask

from rolesync.config import SyncConfig, load_settings
from rolesync.core.engine import SyncEngine
from rolesync.core.sync_service import audit_log_file, build_engine


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(config: Optional[SyncConfig] = None, engine: Optional[SyncEngine] = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Settings (loaded from the environment when omitted)
        engine: Pre-built engine (wired from ``config`` when omitted)
    """
    cfg = config or load_settings()

    app = Flask(__name__)
    app.config["SYNC_CONFIG"] = cfg
    app.config["SYNC_ENGINE"] = engine or build_engine(cfg, operator="api")
    app.config["AUDIT_LOG_FILE"] = audit_log_file(cfg)

    # Register blueprints
    from rolesync.api import health, errors
    from rolesync.api import sync

    app.register_blueprint(health.bp)
    app.register_blueprint(sync.bp, url_prefix="/sync")

    # Register error handlers
    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    app.logger.info(f"[flask_app] Mode={mode_label}; sync API registered at /sync")
    if not cfg.api_token:
        app.logger.warning("[flask_app] ROLESYNC_API_TOKEN not set; /sync endpoints will refuse all requests")

    return app
