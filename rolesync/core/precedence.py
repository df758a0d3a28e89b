"""Role precedence as an explicit partial order.

Precedence is declared as chains, highest first:

    RolePrecedence.from_chains([["admin", "editor", "member"], ["publisher", "editor"]])

Each chain contributes "higher than" edges between consecutive roles; the
transitive closure of those edges is the order. Two roles with no path between
them are *incomparable*, which ``compare`` reports as ``None`` instead of
falling back to an arbitrary default.
"""
from __future__ import annotations
from typing import Iterable, Optional

from .errors import ConfigurationError, RoleConflict


class RolePrecedence:
    """Partial order over role names backed by a dominance table."""

    def __init__(self, edges: Iterable[tuple[str, str]] = ()):
        self._edges: list[tuple[str, str]] = []
        self._below: dict[str, set[str]] = {}
        for higher, lower in edges:
            self._add_edge(higher, lower)
        self._close()

    @classmethod
    def from_chains(cls, chains: Iterable[Iterable[str]]) -> "RolePrecedence":
        edges = []
        for chain in chains:
            roles = [role.strip() for role in chain if role and role.strip()]
            edges.extend(zip(roles, roles[1:]))
        return cls(edges)

    @classmethod
    def parse(cls, text: str) -> "RolePrecedence":
        """Parse ``"admin>editor>member;publisher>editor"``."""
        chains = [chain.split(">") for chain in text.split(";") if chain.strip()]
        return cls.from_chains(chains)

    def _add_edge(self, higher: str, lower: str) -> None:
        if higher == lower:
            raise ConfigurationError(f"Role '{higher}' cannot take precedence over itself")
        self._edges.append((higher, lower))
        self._below.setdefault(higher, set()).add(lower)
        self._below.setdefault(lower, set())

    def _close(self) -> None:
        # Floyd-Warshall style closure; role tables are small
        roles = list(self._below)
        for via in roles:
            for role in roles:
                if via in self._below[role]:
                    self._below[role] |= self._below[via]
        for role in roles:
            if role in self._below[role]:
                raise ConfigurationError(f"Role precedence contains a cycle through '{role}'")

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────
    @property
    def roles(self) -> frozenset:
        return frozenset(self._below)

    @property
    def edges(self) -> list[tuple[str, str]]:
        return list(self._edges)

    def chains(self) -> list[list[str]]:
        """Declared edges as two-element chains (round-trips through ``from_chains``)."""
        return [[higher, lower] for higher, lower in self._edges]

    def outranks(self, higher: str, lower: str) -> bool:
        return lower in self._below.get(higher, ())

    def compare(self, a: str, b: str) -> Optional[int]:
        """Return 1 if ``a`` outranks ``b``, -1 if ``b`` outranks ``a``, 0 if equal, None if incomparable."""
        if a == b:
            return 0
        if self.outranks(a, b):
            return 1
        if self.outranks(b, a):
            return -1
        return None

    def maximal(self, roles: Iterable[str]) -> list[str]:
        """Roles of the set that no other role of the set outranks, sorted."""
        pool = set(roles)
        return sorted(role for role in pool if not any(self.outranks(other, role) for other in pool))

    def to_dict(self) -> dict:
        return {"chains": self.chains()}


def select_capacity(user: str, resource: str, roles: Iterable[str], precedence: RolePrecedence) -> str:
    """Collapse a set of effective roles to the single capacity the target accepts.

    The highest-precedence role wins. When the maximal roles are mutually
    incomparable nothing is picked.

    Raises:
        RoleConflict: If there is no single highest role
        ValueError: If ``roles`` is empty
    """
    pool = set(roles)
    if not pool:
        raise ValueError(f"No roles to collapse for '{user}' on '{resource}'")
    top = precedence.maximal(pool)
    if len(top) != 1:
        raise RoleConflict(user, resource, top)
    return top[0]
