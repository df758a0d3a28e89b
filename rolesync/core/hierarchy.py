"""In-memory model of clients, groups, subgroups, users and role assignments.

Groups are stored in an arena indexed by id; each group keeps its parent as an
optional id and its children as an ordered list of ids. No I/O happens here:
the model is populated by an identity-provider source (see
``rolesync.core.keycloak.source``) or rebuilt from an audit snapshot.

Usage:
    h = Hierarchy()
    h.add_client("c1", "Course 1")
    h.add_group("classroom-a", "classroom-a", client_id="c1")
    h.add_group("project-alpha", "project-alpha", parent_id="classroom-a")
    h.assign_role("classroom-a", "editor")
    h.add_user_membership("alice", "project-alpha")
    h.ancestors("project-alpha")  # ["project-alpha", "classroom-a"]
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, Optional

from .errors import CycleDetected, InvalidHierarchy
from .models import normalize_user


@dataclass
class Client:
    id: str
    name: str
    root_groups: list[str] = field(default_factory=list)


@dataclass
class Group:
    id: str
    name: str
    client_id: str
    parent_id: Optional[str] = None
    roles: set[str] = field(default_factory=set)
    children: list[str] = field(default_factory=list)


@dataclass
class User:
    id: str
    groups: list[str] = field(default_factory=list)


class Hierarchy:
    """Arena-backed client/group/user tree with downward-only role inheritance."""

    def __init__(self):
        self._clients: dict[str, Client] = {}
        self._groups: dict[str, Group] = {}
        self._users: dict[str, User] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Builder operations
    # ─────────────────────────────────────────────────────────────────────────
    def add_client(self, client_id: str, name: Optional[str] = None) -> Client:
        """Register a client (an isolated access context).

        Raises:
            InvalidHierarchy: If the id is empty or already registered
        """
        if not client_id:
            raise InvalidHierarchy("Client id must not be empty")
        if client_id in self._clients:
            raise InvalidHierarchy(f"Client '{client_id}' already exists")
        client = Client(id=client_id, name=name or client_id)
        self._clients[client_id] = client
        return client

    def add_group(
        self,
        group_id: str,
        name: Optional[str] = None,
        parent_id: Optional[str] = None,
        *,
        client_id: Optional[str] = None,
    ) -> Group:
        """Add a group under ``parent_id``, or as a top-level group of ``client_id``.

        A subgroup inherits its client from its parent; passing a different
        ``client_id`` for a subgroup is rejected.

        Raises:
            InvalidHierarchy: Unknown parent or client, duplicate id, client mismatch
            CycleDetected: If ``parent_id`` is the group itself
        """
        if not group_id:
            raise InvalidHierarchy("Group id must not be empty")
        if group_id in self._groups:
            raise InvalidHierarchy(f"Group '{group_id}' already exists")
        if parent_id is not None and parent_id == group_id:
            raise CycleDetected([group_id, group_id])

        if parent_id is None:
            if client_id is None:
                raise InvalidHierarchy(f"Top-level group '{group_id}' needs a client")
            client = self._clients.get(client_id)
            if client is None:
                raise InvalidHierarchy(f"Group '{group_id}' references unknown client '{client_id}'")
            group = Group(id=group_id, name=name or group_id, client_id=client_id)
            client.root_groups.append(group_id)
        else:
            parent = self._groups.get(parent_id)
            if parent is None:
                raise InvalidHierarchy(f"Group '{group_id}' references unknown parent '{parent_id}'")
            if client_id is not None and client_id != parent.client_id:
                raise InvalidHierarchy(
                    f"Group '{group_id}' declared for client '{client_id}' "
                    f"but its parent belongs to '{parent.client_id}'"
                )
            group = Group(id=group_id, name=name or group_id, client_id=parent.client_id, parent_id=parent_id)
            parent.children.append(group_id)

        self._groups[group_id] = group
        return group

    def move_group(self, group_id: str, new_parent_id: str) -> None:
        """Re-parent an existing group inside the same client.

        Raises:
            InvalidHierarchy: Unknown group or parent, or cross-client move
            CycleDetected: If the new parent is the group or one of its descendants
        """
        group = self._require_group(group_id)
        new_parent = self._require_group(new_parent_id)
        if new_parent.client_id != group.client_id:
            raise InvalidHierarchy(
                f"Cannot move '{group_id}' from client '{group.client_id}' to '{new_parent.client_id}'"
            )

        # Walking up from the new parent must never reach the group itself
        chain = [group_id]
        cursor: Optional[str] = new_parent_id
        while cursor is not None:
            chain.append(cursor)
            if cursor == group_id:
                raise CycleDetected(chain)
            cursor = self._groups[cursor].parent_id

        if group.parent_id is None:
            self._clients[group.client_id].root_groups.remove(group_id)
        else:
            self._groups[group.parent_id].children.remove(group_id)
        group.parent_id = new_parent_id
        new_parent.children.append(group_id)

    def add_user_membership(self, user_id: str, group_id: str) -> None:
        """Record that ``user_id`` is a direct member of ``group_id`` (idempotent).

        Usernames are stored normalised, so ``Alice`` and ``alice`` are one user.
        """
        user_id = normalize_user(user_id or "")
        if not user_id:
            raise InvalidHierarchy("User id must not be empty")
        self._require_group(group_id)
        user = self._users.setdefault(user_id, User(id=user_id))
        if group_id not in user.groups:
            user.groups.append(group_id)

    def assign_role(self, group_id: str, role: str) -> None:
        """Directly assign ``role`` to ``group_id`` (idempotent)."""
        if not role:
            raise InvalidHierarchy(f"Empty role assigned to group '{group_id}'")
        self._require_group(group_id).roles.add(role)

    # ─────────────────────────────────────────────────────────────────────────
    # Read-only traversal
    # ─────────────────────────────────────────────────────────────────────────
    def ancestors(self, group_id: str) -> list[str]:
        """Return the chain from ``group_id`` up to its client root, inclusive.

        Raises:
            InvalidHierarchy: Unknown group
            CycleDetected: If the stored parent links loop
        """
        chain: list[str] = []
        seen: set[str] = set()
        cursor: Optional[str] = group_id
        while cursor is not None:
            if cursor in seen:
                raise CycleDetected(chain + [cursor])
            seen.add(cursor)
            chain.append(cursor)
            cursor = self._require_group(cursor).parent_id
        return chain

    def memberships(self, user_id: str) -> list[str]:
        """Return every group ``user_id`` directly belongs to, in insertion order."""
        user = self._users.get(normalize_user(user_id))
        return list(user.groups) if user else []

    def group(self, group_id: str) -> Group:
        return self._require_group(group_id)

    def client(self, client_id: str) -> Client:
        client = self._clients.get(client_id)
        if client is None:
            raise InvalidHierarchy(f"Unknown client '{client_id}'")
        return client

    def client_of(self, group_id: str) -> str:
        return self._require_group(group_id).client_id

    def roles_of(self, group_id: str) -> frozenset:
        """Roles assigned directly to ``group_id`` (never inherited ones)."""
        return frozenset(self._require_group(group_id).roles)

    def group_path(self, group_id: str) -> str:
        """Slash-separated path of group names from the root, e.g. ``/a/b``."""
        names = [self._groups[gid].name for gid in reversed(self.ancestors(group_id))]
        return "/" + "/".join(names)

    def clients(self) -> list[str]:
        return list(self._clients)

    def groups(self) -> list[str]:
        return list(self._groups)

    def users(self) -> list[str]:
        return sorted(self._users)

    def walk(self, client_id: str) -> Iterator[Group]:
        """Depth-first pre-order walk of a client's group forest."""
        stack = list(reversed(self.client(client_id).root_groups))
        while stack:
            group = self._groups[stack.pop()]
            yield group
            stack.extend(reversed(group.children))

    def validate(self) -> None:
        """Re-check that every group reaches a known client root without looping."""
        for group_id, group in self._groups.items():
            if group.client_id not in self._clients:
                raise InvalidHierarchy(f"Group '{group_id}' references unknown client '{group.client_id}'")
            chain = self.ancestors(group_id)
            root = self._groups[chain[-1]]
            if root.client_id != group.client_id:
                raise InvalidHierarchy(f"Group '{group_id}' and its root '{root.id}' belong to different clients")

    def __len__(self) -> int:
        return len(self._groups)

    def _require_group(self, group_id: str) -> Group:
        group = self._groups.get(group_id)
        if group is None:
            raise InvalidHierarchy(f"Unknown group '{group_id}'")
        return group

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshots (audit replay)
    # ─────────────────────────────────────────────────────────────────────────
    def to_dict(self) -> dict:
        """Serialise to plain JSON types; parents always precede their children."""
        groups = []
        for client_id in self._clients:
            for group in self.walk(client_id):
                groups.append({
                    "id": group.id,
                    "name": group.name,
                    "client": group.client_id,
                    "parent": group.parent_id,
                    "roles": sorted(group.roles),
                })
        return {
            "clients": [{"id": c.id, "name": c.name} for c in self._clients.values()],
            "groups": groups,
            "users": {uid: list(self._users[uid].groups) for uid in sorted(self._users)},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Hierarchy":
        """Rebuild a hierarchy from ``to_dict()`` output.

        Raises:
            InvalidHierarchy, CycleDetected: If the snapshot is malformed
        """
        hierarchy = cls()
        for client in data.get("clients", []):
            hierarchy.add_client(client["id"], client.get("name"))
        for group in data.get("groups", []):
            parent = group.get("parent")
            hierarchy.add_group(
                group["id"],
                group.get("name"),
                parent,
                client_id=None if parent else group.get("client"),
            )
            for role in group.get("roles", []):
                hierarchy.assign_role(group["id"], role)
        for user_id, group_ids in data.get("users", {}).items():
            for group_id in group_ids:
                hierarchy.add_user_membership(user_id, group_id)
        return hierarchy
