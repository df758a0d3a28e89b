"""Populate the Hierarchy Model from a Keycloak realm.

Mapping rules:
    - Each managed clientId becomes a Client of the hierarchy
    - A top-level group belongs to client C when its ``client`` attribute
      (attribute name configurable) equals C, or, without that attribute,
      when the group is named C; other top-level groups are not managed
    - A group's roles are the client roles of its owning client mapped
      directly onto the group
    - Enabled direct members become user memberships (usernames lower-cased)
"""
from __future__ import annotations
import logging
from typing import Iterable, Optional

from rolesync.core.hierarchy import Hierarchy
from rolesync.core.models import normalize_user

from .client import KeycloakClient
from .groups import GroupService
from .realm import RealmService

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ATTRIBUTE = "client"


class KeycloakHierarchySource:
    """Read-only loader of clients, group trees, roles and members.

    Args:
        client: Authenticated Keycloak client
        realm: Realm holding the groups
        client_ids: Keycloak clientIds under management
        client_attribute: Group attribute naming the owning clientId
    """

    def __init__(
        self,
        client: KeycloakClient,
        realm: str,
        client_ids: Iterable[str],
        client_attribute: str = DEFAULT_CLIENT_ATTRIBUTE,
    ):
        self.realm = realm
        self.client_ids = sorted(set(client_ids))
        self.client_attribute = client_attribute
        self.realms = RealmService(client)
        self.groups = GroupService(client)

    def owner_of(self, group: dict) -> Optional[str]:
        """clientId owning a top-level group, or None if the group is unmanaged."""
        values = (group.get("attributes") or {}).get(self.client_attribute) or []
        if values:
            owner = values[0]
            return owner if owner in self.client_ids else None
        name = group.get("name")
        return name if name in self.client_ids else None

    def load_hierarchy(self) -> Hierarchy:
        """Build and validate a Hierarchy from the realm.

        Raises:
            ClientNotFoundError: A managed clientId does not exist
            InvalidHierarchy, CycleDetected: The group data is inconsistent
            KeycloakAPIError: On HTTP error
        """
        hierarchy = Hierarchy()
        client_uuids: dict[str, str] = {}
        for client_id in self.client_ids:
            rep = self.realms.require_client(self.realm, client_id)
            hierarchy.add_client(client_id, rep.get("name") or client_id)
            client_uuids[client_id] = rep["id"]

        for top in self.groups.list_top_level_groups(self.realm):
            owner = self.owner_of(top)
            if owner is None:
                logger.debug("Ignoring unmanaged group %s", top.get("path") or top.get("name"))
                continue
            for node, parent in self.groups.walk(self.realm, top):
                self._add_node(hierarchy, node, parent, owner, client_uuids[owner])

        hierarchy.validate()
        logger.info(
            "Loaded %d group(s) and %d user(s) for %d client(s) from realm %s",
            len(hierarchy), len(hierarchy.users()), len(self.client_ids), self.realm,
        )
        return hierarchy

    def _add_node(self, hierarchy: Hierarchy, node: dict, parent: Optional[dict], owner: str, client_uuid: str) -> None:
        group_id = node["id"]
        if parent is None:
            hierarchy.add_group(group_id, node.get("name"), client_id=owner)
        else:
            hierarchy.add_group(group_id, node.get("name"), parent["id"])

        for role in self.groups.get_client_role_names(self.realm, group_id, client_uuid):
            hierarchy.assign_role(group_id, role)

        for member in self.groups.get_group_members(self.realm, group_id):
            username = member.get("username")
            if not username or member.get("enabled") is False:
                continue
            hierarchy.add_user_membership(normalize_user(username), group_id)
