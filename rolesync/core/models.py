"""Value records shared by the resolver, diff engine, executor and audit sink."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Literal, Optional, Union

from .errors import FetchError, OperationFailed, RoleConflict


# ─────────────────────────────────────────────────────────────────────────────
# Assignments
# ─────────────────────────────────────────────────────────────────────────────
def normalize_user(user: str) -> str:
    """Usernames compare case-insensitively across Keycloak and the catalog."""
    return user.strip().lower()


@dataclass(frozen=True, order=True)
class EffectiveAssignment:
    """Desired state: ``user`` should hold ``role`` on ``resource``."""
    user: str
    resource: str
    role: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.user, self.resource)

    def to_dict(self) -> dict:
        return {"user": self.user, "resource": self.resource, "role": self.role}


@dataclass(frozen=True, order=True)
class ObservedAssignment:
    """Observed state: ``user`` currently holds ``role`` on ``resource``."""
    user: str
    resource: str
    role: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.user, self.resource)

    def to_dict(self) -> dict:
        return {"user": self.user, "resource": self.resource, "role": self.role}


@dataclass(frozen=True)
class Provenance:
    """One role contributed by one group on a user's ancestor chain."""
    membership: str
    group_id: str
    group_path: str
    role: str

    def to_dict(self) -> dict:
        return {
            "membership": self.membership,
            "group_id": self.group_id,
            "group_path": self.group_path,
            "role": self.role,
        }


@dataclass(frozen=True)
class ResolvedRoles:
    """Set-valued effective roles of a user on one resource, before collapse."""
    user: str
    resource: str
    roles: frozenset
    provenance: tuple = ()


# ─────────────────────────────────────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Grant:
    user: str
    resource: str
    role: str

    kind = "grant"

    @property
    def key(self) -> tuple[str, str]:
        return (self.user, self.resource)

    def describe(self) -> str:
        return f"Grant({self.user}, {self.resource}, {self.role})"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "user": self.user, "resource": self.resource, "role": self.role}


@dataclass(frozen=True)
class UpdateRole:
    user: str
    resource: str
    old_role: str
    new_role: str

    kind = "update"

    @property
    def key(self) -> tuple[str, str]:
        return (self.user, self.resource)

    def describe(self) -> str:
        return f"UpdateRole({self.user}, {self.resource}, {self.old_role} -> {self.new_role})"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "user": self.user,
            "resource": self.resource,
            "old_role": self.old_role,
            "new_role": self.new_role,
        }


@dataclass(frozen=True)
class Revoke:
    user: str
    resource: str
    role: str

    kind = "revoke"

    @property
    def key(self) -> tuple[str, str]:
        return (self.user, self.resource)

    def describe(self) -> str:
        return f"Revoke({self.user}, {self.resource}, {self.role})"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "user": self.user, "resource": self.resource, "role": self.role}


Operation = Union[Grant, UpdateRole, Revoke]


def operation_from_dict(data: dict) -> Operation:
    """Rebuild an Operation from its ``to_dict()`` form."""
    kind = data.get("kind")
    if kind == "grant":
        return Grant(data["user"], data["resource"], data["role"])
    if kind == "update":
        return UpdateRole(data["user"], data["resource"], data["old_role"], data["new_role"])
    if kind == "revoke":
        return Revoke(data["user"], data["resource"], data["role"])
    raise ValueError(f"Unknown operation kind: {kind!r}")


# ─────────────────────────────────────────────────────────────────────────────
# Results and reports
# ─────────────────────────────────────────────────────────────────────────────
OperationStatus = Literal["succeeded", "failed", "skipped"]


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one Operation.

    Attributes:
        operation: The operation that was attempted (or skipped)
        status: ``succeeded``, ``failed`` or ``skipped``
        attempts: Number of calls made against the target
        error: OperationFailed detail when status is ``failed``
        reason: Why the operation was skipped (deadline, cancelled, dry-run)
        elapsed: Seconds spent on the operation, retries included
    """
    operation: Operation
    status: OperationStatus
    attempts: int = 0
    error: Optional[OperationFailed] = None
    reason: Optional[str] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "succeeded"

    def to_dict(self) -> dict:
        data = {
            "operation": self.operation.to_dict(),
            "status": self.status,
            "attempts": self.attempts,
            "elapsed": round(self.elapsed, 4),
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class RunSummary:
    granted: int = 0
    updated: int = 0
    revoked: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: list[OperationResult]) -> "RunSummary":
        summary = cls()
        for result in results:
            if result.status == "skipped":
                summary.skipped += 1
            elif result.status == "failed":
                summary.failed += 1
            elif result.operation.kind == "grant":
                summary.granted += 1
            elif result.operation.kind == "update":
                summary.updated += 1
            else:
                summary.revoked += 1
        return summary

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "updated": self.updated,
            "revoked": self.revoked,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass
class RunReport:
    """Everything a synchronization run produced."""
    run_id: str
    started_at: str
    finished_at: str = ""
    dry_run: bool = False
    resolved: list[EffectiveAssignment] = field(default_factory=list)
    conflicts: list[RoleConflict] = field(default_factory=list)
    fetch_errors: list[FetchError] = field(default_factory=list)
    operations: list[Operation] = field(default_factory=list)
    results: list[OperationResult] = field(default_factory=list)
    aborted: Optional[str] = None

    @property
    def summary(self) -> RunSummary:
        return RunSummary.from_results(self.results)

    @property
    def failures(self) -> list[OperationFailed]:
        return [result.error for result in self.results if result.error is not None]

    @property
    def ok(self) -> bool:
        """True when nothing was aborted, conflicted, unfetched or failed."""
        return (
            self.aborted is None
            and not self.conflicts
            and not self.fetch_errors
            and self.summary.failed == 0
        )

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "dry_run": self.dry_run,
            "aborted": self.aborted,
            "summary": self.summary.to_dict(),
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "fetch_errors": [error.to_dict() for error in self.fetch_errors],
            "failures": [failure.to_dict() for failure in self.failures],
        }
