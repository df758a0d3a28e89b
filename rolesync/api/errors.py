"""Error handlers for the ops API (JSON only)."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from rolesync.core.errors import ConfigurationError, HierarchyError, SyncAlreadyRunning


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return jsonify({"error": "Bad Request", "message": getattr(error, "description", str(error))}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        """Handle 401 Unauthorized errors."""
        return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(SyncAlreadyRunning)
    def sync_running(error):
        """A second run was requested while one is in progress."""
        return jsonify({"error": "Conflict", "message": str(error)}), 409

    @app.errorhandler(HierarchyError)
    def hierarchy_error(error):
        """Structural errors abort the run before any write."""
        app.logger.error(f"Sync aborted: {error}")
        return jsonify({"error": "Unprocessable Hierarchy", "message": str(error)}), 422

    @app.errorhandler(ConfigurationError)
    def configuration_error(error):
        app.logger.error(f"Configuration error: {error}")
        return jsonify({"error": "Configuration Error", "message": str(error)}), 500

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        app.logger.error(f"Internal error: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500
