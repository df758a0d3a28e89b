"""
Sync Service Layer: wiring shared by the CLI and the ops API

Architecture:
    scripts/sync.py ────┐
                        ├──> sync_service.py ──> SyncEngine ──> Keycloak (read) / CKAN (write)
    /sync/* (Flask) ────┘                              └──> scripts.audit (JSONL trail)
"""
from __future__ import annotations
from pathlib import Path

from rolesync.config.settings import SyncConfig
from rolesync.core.ckan import CkanClient, CkanMembershipService
from rolesync.core.engine import SyncEngine
from rolesync.core.keycloak import KeycloakClient, KeycloakHierarchySource
from scripts.audit import JsonlAuditSink

AUDIT_LOG_FILENAME = "sync-runs.jsonl"


def audit_log_file(config: SyncConfig) -> Path:
    return Path(config.audit_log_dir) / AUDIT_LOG_FILENAME


def build_source(config: SyncConfig) -> KeycloakHierarchySource:
    """Keycloak hierarchy source; the token is fetched on first use."""
    client = KeycloakClient(config.keycloak_url, timeout=config.request_timeout)
    client.authenticate_service_account(
        config.keycloak_service_realm,
        config.keycloak_service_client_id,
        config.keycloak_service_client_secret,
        lazy=True,
    )
    return KeycloakHierarchySource(
        client,
        config.keycloak_realm,
        config.client_resources.keys(),
        client_attribute=config.keycloak_group_client_attribute,
    )


def build_target(config: SyncConfig) -> CkanMembershipService:
    return CkanMembershipService(
        CkanClient(config.ckan_url, api_token=config.ckan_api_token, timeout=config.request_timeout)
    )


def build_sink(config: SyncConfig, operator: str = "system") -> JsonlAuditSink:
    return JsonlAuditSink(
        audit_log_file(config),
        config.audit_log_signing_key or None,
        operator=operator,
        realm=config.keycloak_realm,
    )


def build_engine(config: SyncConfig, operator: str = "system") -> SyncEngine:
    """Fully wired engine for ``config``."""
    return SyncEngine.from_config(
        config,
        build_source(config),
        build_target(config),
        build_sink(config, operator),
    )
