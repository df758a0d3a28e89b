"""Read current memberships from the target system (fail-soft per resource)."""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable

from .errors import FetchError
from .models import ObservedAssignment, normalize_user
from .target import TargetSystem

logger = logging.getLogger(__name__)


@dataclass
class FetchOutcome:
    """Observed state of the resources that could be read, plus failures."""
    observed: dict[str, set[ObservedAssignment]] = field(default_factory=dict)
    errors: list[FetchError] = field(default_factory=list)

    @property
    def failed_resources(self) -> set[str]:
        return {error.resource for error in self.errors}


class TargetStateFetcher:
    """Fetch observed assignments for managed resources.

    Args:
        target: Target system client
        max_workers: Upper bound on concurrent fetches
    """

    def __init__(self, target: TargetSystem, max_workers: int = 4):
        self.target = target
        self.max_workers = max(1, max_workers)

    def fetch_observed(self, resource: str) -> set[ObservedAssignment]:
        """Current memberships of one resource.

        Raises:
            ValueError: If two rows name the same user with different capacities
                (usernames compare case-insensitively)
            Whatever the target raises; ``fetch_all`` turns both into a FetchError
        """
        capacities: dict[str, str] = {}
        for user, capacity in self.target.list_memberships(resource):
            user = normalize_user(user)
            if capacities.setdefault(user, capacity) != capacity:
                raise ValueError(
                    f"Duplicate observed assignment for ({user!r}, {resource!r}): "
                    f"{capacities[user]!r} and {capacity!r}"
                )
        return {ObservedAssignment(user, resource, capacity) for user, capacity in capacities.items()}

    def fetch_all(self, resources: Iterable[str]) -> FetchOutcome:
        """Fetch every resource; an unreadable resource is reported and excluded."""
        resources = sorted(set(resources))
        outcome = FetchOutcome()
        if not resources:
            return outcome

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(resources))) as pool:
            futures = {resource: pool.submit(self.fetch_observed, resource) for resource in resources}
            for resource, future in futures.items():
                try:
                    outcome.observed[resource] = future.result()
                except Exception as exc:
                    error = FetchError(resource, exc)
                    logger.warning("%s; resource excluded from this run", error)
                    outcome.errors.append(error)
                else:
                    logger.debug("Fetched %d member(s) of %s", len(outcome.observed[resource]), resource)
        return outcome
