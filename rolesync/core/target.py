"""Interface of the target system (the catalog holding memberships)."""
from __future__ import annotations
from typing import Protocol, runtime_checkable


@runtime_checkable
class TargetSystem(Protocol):
    """Read and write memberships with a single capacity per (user, resource).

    Implementations raise on failure. An exception carrying ``retryable = True``
    (or a ``requests`` timeout / connection error) is treated as transient by
    the executor; anything else fails the operation immediately.
    """

    def list_memberships(self, resource: str) -> list[tuple[str, str]]:
        """Return ``(user, capacity)`` pairs currently granted on ``resource``."""
        ...

    def create_membership(self, resource: str, user: str, capacity: str) -> None:
        ...

    def update_membership(self, resource: str, user: str, capacity: str) -> None:
        ...

    def remove_membership(self, resource: str, user: str) -> None:
        ...
