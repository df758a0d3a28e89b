"""Keycloak group tree, role mapping and membership reads."""
from __future__ import annotations
from typing import Iterator

from .client import KeycloakClient


class GroupService:
    """Read-only service over Keycloak groups."""

    def __init__(self, client: KeycloakClient):
        """Initialize group service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def list_top_level_groups(self, realm: str) -> list[dict]:
        """Top-level groups with attributes.

        Args:
            realm: Realm name

        Returns:
            Group representations (``id``, ``name``, ``path``, ``attributes``,
            and ``subGroups`` or ``subGroupCount`` depending on the server version)
        """
        return list(self.client.paginate(
            f"/admin/realms/{realm}/groups",
            params={"briefRepresentation": "false"},
        ))

    def list_children(self, realm: str, group: dict) -> list[dict]:
        """Direct subgroups of ``group``.

        Older Keycloak releases inline ``subGroups``; newer ones only report
        ``subGroupCount`` and serve children from a dedicated endpoint.
        """
        inline = group.get("subGroups")
        if inline:
            return list(inline)
        if not group.get("subGroupCount"):
            return []
        return list(self.client.paginate(
            f"/admin/realms/{realm}/groups/{group['id']}/children",
            params={"briefRepresentation": "false"},
        ))

    def walk(self, realm: str, group: dict) -> Iterator[tuple[dict, dict | None]]:
        """Depth-first ``(group, parent)`` pairs for ``group`` and its descendants."""
        stack: list[tuple[dict, dict | None]] = [(group, None)]
        while stack:
            node, parent = stack.pop()
            yield node, parent
            children = self.list_children(realm, node)
            stack.extend((child, node) for child in reversed(children))

    def get_client_role_names(self, realm: str, group_id: str, client_uuid: str) -> list[str]:
        """Names of the client roles mapped directly onto the group (not composite/effective ones).

        Args:
            realm: Realm name
            group_id: Group ID
            client_uuid: Internal id of the client owning the roles
        """
        resp = self.client.get(f"/admin/realms/{realm}/groups/{group_id}/role-mappings/clients/{client_uuid}")
        return sorted(role["name"] for role in resp.json() or [] if role.get("name"))

    def get_group_members(self, realm: str, group_id: str) -> list[dict]:
        """Retrieve the direct members of a group (paginated).

        Args:
            realm: Realm name
            group_id: Group ID

        Returns:
            List of user representations
        """
        return list(self.client.paginate(
            f"/admin/realms/{realm}/groups/{group_id}/members",
            params={"briefRepresentation": "true"},
        ))
