"""Diff engine: desired vs observed assignments → ordered operations.

Ordering policy: every Grant and UpdateRole comes before any Revoke. If a run
stops half-way, users therefore err towards holding the union of old and new
access rather than less than either. This over-access bias during transition
is deliberate; it is bounded by the run deadline and corrected by the next run.
"""
from __future__ import annotations
from typing import Iterable

from .models import EffectiveAssignment, Grant, ObservedAssignment, Operation, Revoke, UpdateRole


def _index(assignments: Iterable, side: str) -> dict[tuple[str, str], str]:
    indexed: dict[tuple[str, str], str] = {}
    for assignment in assignments:
        if assignment.key in indexed and indexed[assignment.key] != assignment.role:
            raise ValueError(
                f"Duplicate {side} assignment for {assignment.key}: "
                f"'{indexed[assignment.key]}' and '{assignment.role}'"
            )
        indexed[assignment.key] = assignment.role
    return indexed


def diff(
    desired: Iterable[EffectiveAssignment],
    observed: Iterable[ObservedAssignment],
    *,
    exclude: Iterable[tuple[str, str]] = (),
    protected_users: Iterable[str] = (),
) -> list[Operation]:
    """Compute the minimal operation sequence turning ``observed`` into ``desired``.

    Args:
        desired: Effective assignments from the resolver
        observed: Assignments read from the target system
        exclude: (user, resource) keys to leave untouched, e.g. role conflicts
        protected_users: Users never granted, updated or revoked

    Returns:
        Grants and UpdateRoles sorted by (resource, user), then Revokes sorted
        the same way

    Raises:
        ValueError: If one side holds two different roles for the same key
    """
    wanted = _index(desired, "desired")
    current = _index(observed, "observed")
    skip = set(exclude)
    protected = set(protected_users)

    upserts: list[Operation] = []
    revokes: list[Operation] = []

    for key in sorted(set(wanted) | set(current), key=lambda k: (k[1], k[0])):
        user, resource = key
        if key in skip or user in protected:
            continue
        if key not in current:
            upserts.append(Grant(user, resource, wanted[key]))
        elif key not in wanted:
            revokes.append(Revoke(user, resource, current[key]))
        elif wanted[key] != current[key]:
            upserts.append(UpdateRole(user, resource, current[key], wanted[key]))

    return upserts + revokes


def apply_to_observed(observed: Iterable[ObservedAssignment], operations: Iterable[Operation]) -> set[ObservedAssignment]:
    """Observed state once every one of ``operations`` has succeeded."""
    state = {assignment.key: assignment.role for assignment in observed}
    for op in operations:
        if isinstance(op, Grant):
            state[op.key] = op.role
        elif isinstance(op, UpdateRole):
            state[op.key] = op.new_role
        else:
            state.pop(op.key, None)
    return {ObservedAssignment(user, resource, role) for (user, resource), role in state.items()}
