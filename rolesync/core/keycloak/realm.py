"""Keycloak realm client lookups."""
from __future__ import annotations
from typing import Optional

from .client import KeycloakClient
from .exceptions import ClientNotFoundError


class RealmService:
    """Read-only access to the clients of a realm."""

    def __init__(self, client: KeycloakClient):
        """Initialize realm service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def get_client(self, realm: str, client_id: str) -> Optional[dict]:
        """Return the client representation matching client_id, if it exists.

        Args:
            realm: Realm name
            client_id: Client ID to find

        Returns:
            Client representation or None if not found
        """
        resp = self.client.get(f"/admin/realms/{realm}/clients", params={"clientId": client_id})
        clients = resp.json()
        return clients[0] if clients else None

    def require_client(self, realm: str, client_id: str) -> dict:
        """Same as ``get_client`` but a missing client is an error.

        Raises:
            ClientNotFoundError: If the client does not exist in the realm
        """
        client = self.get_client(realm, client_id)
        if not client:
            raise ClientNotFoundError(f"Client '{client_id}' not found in realm '{realm}'")
        return client
