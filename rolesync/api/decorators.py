"""Bearer-token protection for the ops API."""
from __future__ import annotations
import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def require_api_token(fn):
    """Require ``Authorization: Bearer <ROLESYNC_API_TOKEN>``.

    The token is compared in constant time. When no token is configured every
    request is refused, so an unconfigured deployment cannot be triggered.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config["SYNC_CONFIG"].api_token
        if not expected:
            logger.warning("Sync API called but ROLESYNC_API_TOKEN is not configured")
            return jsonify({"error": "Unauthorized", "message": "API token not configured"}), 401

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            logger.warning("Sync API request missing Bearer token")
            return jsonify({"error": "Unauthorized", "message": "Expected 'Authorization: Bearer <token>'"}), 401

        token = auth_header[7:]  # Remove "Bearer " prefix
        if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Sync API request with invalid token")
            return jsonify({"error": "Unauthorized", "message": "Invalid token"}), 401

        return fn(*args, **kwargs)
    return wrapper
