"""CKAN organization memberships as a synchronization target."""
from __future__ import annotations
import logging

from .client import CkanClient

logger = logging.getLogger(__name__)


class CkanMembershipService:
    """Organization members with a single ``capacity`` each.

    Every call is idempotent when retried with identical parameters:
    ``organization_member_create`` upserts the capacity and
    ``organization_member_delete`` of a non-member is a no-op on CKAN's side.
    """

    def __init__(self, client: CkanClient):
        """Initialize membership service.

        Args:
            client: Configured CKAN client
        """
        self.client = client

    def list_memberships(self, resource: str) -> list[tuple[str, str]]:
        """Return ``(username, capacity)`` pairs of an organization.

        Args:
            resource: Organization name or id
        """
        org = self.client.call_action("organization_show", {
            "id": resource,
            "include_users": True,
            "include_datasets": False,
            "include_extras": False,
        }) or {}
        members = []
        for user in org.get("users") or []:
            name = user.get("name")
            capacity = user.get("capacity")
            if name and capacity:
                members.append((name, capacity))
        return members

    def create_membership(self, resource: str, user: str, capacity: str) -> None:
        self.client.call_action("organization_member_create", {
            "id": resource,
            "username": user,
            "role": capacity,
        })
        logger.debug("Granted %s to %s on %s", capacity, user, resource)

    def update_membership(self, resource: str, user: str, capacity: str) -> None:
        # member_create replaces the capacity of an existing member
        self.create_membership(resource, user, capacity)

    def remove_membership(self, resource: str, user: str) -> None:
        self.client.call_action("organization_member_delete", {
            "id": resource,
            "username": user,
        })
        logger.debug("Removed %s from %s", user, resource)
