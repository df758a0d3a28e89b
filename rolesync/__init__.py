"""Keycloak → CKAN role synchronization engine.

To use the engine programmatically:
    from rolesync.core.sync_service import build_engine
    from rolesync.config import load_settings

    report = build_engine(load_settings()).run(dry_run=True)

To run the ops API:
    from rolesync.flask_app import create_app
"""
# Note: flask_app is not imported here so the CLI and core stay usable
# without loading Flask
