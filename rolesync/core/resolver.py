"""Effective role resolution over the group hierarchy.

For every direct membership of a user the resolver walks the ancestor chain up
to the client root and unions the roles assigned on the way. Roles assigned to
subgroups never flow upward because only ancestors are visited.

Resolution happens in two named steps:
    1. ``resolve_roles``: set of roles per (user, resource), with provenance
    2. ``select_capacity``: precedence policy collapsing the set to one capacity

A failed collapse is reported as a ``RoleConflict`` for that single
(user, resource); the user's other resources still resolve.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from .errors import ConfigurationError, RoleConflict
from .hierarchy import Hierarchy
from .models import EffectiveAssignment, Provenance, ResolvedRoles, normalize_user
from .precedence import RolePrecedence, select_capacity

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Desired state produced by the resolver."""
    assignments: set[EffectiveAssignment] = field(default_factory=set)
    conflicts: list[RoleConflict] = field(default_factory=list)

    @property
    def conflict_keys(self) -> set[tuple[str, str]]:
        return {conflict.key for conflict in self.conflicts}

    def merge(self, other: "Resolution") -> None:
        self.assignments |= other.assignments
        self.conflicts.extend(other.conflicts)

    def for_resource(self, resource: str) -> set[EffectiveAssignment]:
        return {a for a in self.assignments if a.resource == resource}

    def sorted_assignments(self) -> list[EffectiveAssignment]:
        return sorted(self.assignments)


def validate_client_resources(client_resources: Mapping[str, str]) -> dict[str, str]:
    """Check the client → resource map is one-to-one.

    Raises:
        ConfigurationError: If a resource is mapped from several clients
    """
    owners: dict[str, str] = {}
    for client_id, resource in client_resources.items():
        if not resource:
            raise ConfigurationError(f"Client '{client_id}' maps to an empty resource")
        if resource in owners:
            raise ConfigurationError(
                f"Resource '{resource}' is mapped from both '{owners[resource]}' and '{client_id}'"
            )
        owners[resource] = client_id
    return dict(client_resources)


class RoleResolver:
    """Compute desired target-system assignments from a Hierarchy.

    Args:
        hierarchy: Populated hierarchy model
        client_resources: Client id → target resource id (one-to-one)
        precedence: Role precedence used to collapse role sets
        managed_roles: If given, roles outside this set are ignored
    """

    def __init__(
        self,
        hierarchy: Hierarchy,
        client_resources: Mapping[str, str],
        precedence: RolePrecedence,
        managed_roles: Optional[Iterable[str]] = None,
    ):
        self.hierarchy = hierarchy
        self.client_resources = validate_client_resources(client_resources)
        self.precedence = precedence
        self.managed_roles = frozenset(managed_roles) if managed_roles is not None else None

    def resource_for(self, client_id: str) -> Optional[str]:
        return self.client_resources.get(client_id)

    def resolve_roles(self, user: str) -> dict[str, ResolvedRoles]:
        """Set-valued effective roles of ``user`` keyed by resource."""
        user = normalize_user(user)
        roles: dict[str, set[str]] = {}
        provenance: dict[str, list[Provenance]] = {}

        for membership in self.hierarchy.memberships(user):
            client_id = self.hierarchy.client_of(membership)
            resource = self.resource_for(client_id)
            if resource is None:
                logger.debug("Skipping membership %s of %s: client %s is not mapped", membership, user, client_id)
                continue
            for group_id in self.hierarchy.ancestors(membership):
                for role in sorted(self.hierarchy.roles_of(group_id)):
                    if self.managed_roles is not None and role not in self.managed_roles:
                        continue
                    roles.setdefault(resource, set()).add(role)
                    provenance.setdefault(resource, []).append(
                        Provenance(
                            membership=membership,
                            group_id=group_id,
                            group_path=self.hierarchy.group_path(group_id),
                            role=role,
                        )
                    )

        return {
            resource: ResolvedRoles(
                user=user,
                resource=resource,
                roles=frozenset(role_set),
                provenance=tuple(provenance[resource]),
            )
            for resource, role_set in sorted(roles.items())
        }

    def resolve(self, user: str) -> Resolution:
        """Effective assignments of ``user``, one capacity per resource."""
        user = normalize_user(user)
        resolution = Resolution()
        for resource, resolved in self.resolve_roles(user).items():
            try:
                capacity = select_capacity(user, resource, resolved.roles, self.precedence)
            except RoleConflict as conflict:
                logger.warning("%s", conflict)
                resolution.conflicts.append(conflict)
                continue
            resolution.assignments.add(EffectiveAssignment(user, resource, capacity))
        return resolution

    def resolve_all(self, users: Optional[Iterable[str]] = None) -> Resolution:
        """Resolve every user (sorted) or the given ones."""
        resolution = Resolution()
        for user in sorted(users) if users is not None else self.hierarchy.users():
            resolution.merge(self.resolve(user))
        return resolution

    def explain(self, user: str, resource: str) -> dict:
        """Why ``user`` ends up with a capacity on ``resource``.

        Returns:
            Dict with the contributing roles, their provenance, and either the
            selected capacity or the conflicting roles
        """
        user = normalize_user(user)
        resolved = self.resolve_roles(user).get(resource)
        if resolved is None:
            return {"user": user, "resource": resource, "roles": [], "provenance": [], "capacity": None}

        explanation = {
            "user": user,
            "resource": resource,
            "roles": sorted(resolved.roles),
            "provenance": [entry.to_dict() for entry in resolved.provenance],
            "capacity": None,
        }
        try:
            explanation["capacity"] = select_capacity(user, resource, resolved.roles, self.precedence)
        except RoleConflict as conflict:
            explanation["conflict"] = conflict.to_dict()
        return explanation
