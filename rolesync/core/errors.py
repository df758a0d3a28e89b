"""Error taxonomy for role resolution and synchronization.

Structural errors (``InvalidHierarchy``, ``CycleDetected``) abort a run before
any write happens. Per-entity errors (``RoleConflict``, ``FetchError``,
``OperationFailed``) are isolated: they are collected into the run report and
the rest of the run proceeds.
"""
from __future__ import annotations
from typing import Any, Iterable, Optional


class RoleSyncError(Exception):
    """Base exception for all role synchronization errors."""
    pass


class ConfigurationError(RoleSyncError):
    """Configuration is missing or inconsistent."""
    pass


class SyncAlreadyRunning(RoleSyncError):
    """A synchronization run is already in progress for this engine."""
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Structural errors (fatal to the run)
# ─────────────────────────────────────────────────────────────────────────────
class HierarchyError(RoleSyncError):
    """Group hierarchy cannot be trusted; nothing is synchronized."""
    pass


class InvalidHierarchy(HierarchyError):
    """Malformed hierarchy: unknown parent, unknown client, duplicate id."""
    pass


class CycleDetected(HierarchyError):
    """A parent link would make a group its own ancestor.

    Attributes:
        chain: Group ids forming the cycle, starting and ending on the same id
    """

    def __init__(self, chain: Iterable[str]):
        self.chain = list(chain)
        super().__init__(f"Cycle detected in group hierarchy: {' -> '.join(self.chain)}")


# ─────────────────────────────────────────────────────────────────────────────
# Per-entity errors (isolated, reported)
# ─────────────────────────────────────────────────────────────────────────────
class RoleConflict(RoleSyncError):
    """Effective roles for one (user, resource) have no single highest role.

    Attributes:
        user: User identifier
        resource: Target resource identifier
        roles: The mutually incomparable maximal roles
    """

    def __init__(self, user: str, resource: str, roles: Iterable[str]):
        self.user = user
        self.resource = resource
        self.roles = tuple(sorted(roles))
        super().__init__(
            f"Role conflict for '{user}' on '{resource}': "
            f"no precedence between {', '.join(self.roles)}"
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.user, self.resource)

    def to_dict(self) -> dict:
        return {
            "type": "RoleConflict",
            "user": self.user,
            "resource": self.resource,
            "roles": list(self.roles),
        }


class FetchError(RoleSyncError):
    """Observed state for a resource could not be read.

    Attributes:
        resource: Target resource identifier
        cause: Original exception
    """

    def __init__(self, resource: str, cause: BaseException):
        self.resource = resource
        self.cause = cause
        super().__init__(f"Failed to fetch members of '{resource}': {cause}")

    def to_dict(self) -> dict:
        return {
            "type": "FetchError",
            "resource": self.resource,
            "cause": f"{type(self.cause).__name__}: {self.cause}",
        }


class OperationFailed(RoleSyncError):
    """A write against the target failed permanently or exhausted its retries.

    Attributes:
        operation: The Operation that failed
        cause: Last exception raised by the target
        attempts: Number of attempts made
    """

    def __init__(self, operation: Any, cause: BaseException, attempts: int, reason: Optional[str] = None):
        self.operation = operation
        self.cause = cause
        self.attempts = attempts
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"{operation.describe()} failed after {attempts} attempt(s){detail}: {cause}")

    def to_dict(self) -> dict:
        data = {
            "type": "OperationFailed",
            "operation": self.operation.to_dict(),
            "attempts": self.attempts,
            "cause": f"{type(self.cause).__name__}: {self.cause}",
        }
        if self.reason:
            data["reason"] = self.reason
        return data
