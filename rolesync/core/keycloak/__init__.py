"""Keycloak Admin API client library (read-only identity-provider side).

Architecture:
- client.py: HTTP client with service-account authentication and auto-refresh
- realm.py: Client lookups
- groups.py: Group tree, client-role mappings and members
- source.py: Builds the Hierarchy Model from a realm
- exceptions.py: Typed exceptions for error handling

Usage:
    from rolesync.core.keycloak import KeycloakClient, KeycloakHierarchySource

    client = KeycloakClient("http://keycloak:8080")
    client.authenticate_service_account("demo", "rolesync", "secret")
    hierarchy = KeycloakHierarchySource(client, "demo", ["c1"]).load_hierarchy()
"""
from .client import KeycloakClient, REQUEST_TIMEOUT
from .exceptions import (
    KeycloakError,
    KeycloakAPIError,
    ClientNotFoundError,
    InsufficientPermissionsError,
)
from .realm import RealmService
from .groups import GroupService
from .source import KeycloakHierarchySource

__all__ = [
    "KeycloakClient",
    "REQUEST_TIMEOUT",
    "KeycloakError",
    "KeycloakAPIError",
    "ClientNotFoundError",
    "InsufficientPermissionsError",
    "RealmService",
    "GroupService",
    "KeycloakHierarchySource",
]
