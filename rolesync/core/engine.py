"""Synchronization run orchestration.

    identity provider ──> Hierarchy ──> RoleResolver ──┐
                                                       ├──> diff ──> SyncExecutor ──> target
    target ──> TargetStateFetcher ─────────────────────┘                 │
                                                                          └──> audit sink

Structural hierarchy errors abort the run before any write. Conflicts, fetch
errors and operation failures are isolated and reported in the RunReport.
"""
from __future__ import annotations
import datetime
import logging
import threading
import time
import uuid
from typing import Callable, Iterable, Optional, Protocol, Sequence

from .diff import diff
from .errors import SyncAlreadyRunning
from .executor import RetryPolicy, SyncExecutor
from .fetcher import TargetStateFetcher
from .hierarchy import Hierarchy
from .models import EffectiveAssignment, Operation, OperationResult, RunReport, normalize_user
from .precedence import RolePrecedence
from .resolver import RoleResolver
from .target import TargetSystem

logger = logging.getLogger(__name__)


class HierarchySource(Protocol):
    def load_hierarchy(self) -> Hierarchy:
        ...


class AuditSink(Protocol):
    def record(
        self,
        run_id: str,
        resolved: Sequence[EffectiveAssignment],
        operations: Sequence[Operation],
        results: Sequence[OperationResult],
        **context,
    ) -> None:
        ...


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class SyncEngine:
    """Run end-to-end synchronizations, one at a time.

    Args:
        source: Identity-provider side, builds the Hierarchy
        target: Target system
        client_resources: Client id → resource id
        precedence: Role precedence order
        sink: Audit sink receiving one record per run (optional)
        managed_roles: Only these roles are synchronized (None = all)
        protected_users: Users the engine never touches on the target
        retry: Retry policy for writes
        max_workers: Pool size for fetches and writes
        run_deadline: Seconds after which unstarted operations are skipped
        clock: Monotonic clock shared with the executor
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        source: HierarchySource,
        target: TargetSystem,
        client_resources: dict[str, str],
        precedence: RolePrecedence,
        sink: Optional[AuditSink] = None,
        *,
        managed_roles: Optional[Iterable[str]] = None,
        protected_users: Iterable[str] = (),
        retry: Optional[RetryPolicy] = None,
        max_workers: int = 4,
        run_deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.target = target
        self.client_resources = dict(client_resources)
        self.precedence = precedence
        self.sink = sink
        self.managed_roles = list(managed_roles) if managed_roles is not None else None
        self.protected_users = {normalize_user(user) for user in protected_users}
        self.retry = retry or RetryPolicy()
        self.max_workers = max_workers
        self.run_deadline = run_deadline
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    @classmethod
    def from_config(cls, config, source: HierarchySource, target: TargetSystem, sink: Optional[AuditSink] = None) -> "SyncEngine":
        """Build an engine from a ``SyncConfig``."""
        return cls(
            source,
            target,
            config.client_resources,
            config.precedence(),
            sink,
            managed_roles=config.managed_roles,
            protected_users=config.protected_users,
            retry=config.retry_policy(),
            max_workers=config.max_workers,
            run_deadline=config.run_deadline,
        )

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Ask the current run to stop issuing operations."""
        self._cancel.set()

    def resolver(self, hierarchy: Hierarchy) -> RoleResolver:
        return RoleResolver(hierarchy, self.client_resources, self.precedence, self.managed_roles)

    def run(self, *, dry_run: bool = False, run_id: Optional[str] = None) -> RunReport:
        """Execute one synchronization run.

        Args:
            dry_run: Plan operations without writing; every operation is reported skipped
            run_id: Identifier for the audit trail (generated if omitted)

        Returns:
            RunReport with resolved state, operations, results and error details

        Raises:
            SyncAlreadyRunning: If another run of this engine is in progress
            HierarchyError: If the hierarchy is malformed (nothing was written)
            KeycloakError, requests.RequestException: If the identity provider
                cannot be read (nothing was written)
        """
        if not self._lock.acquire(blocking=False):
            raise SyncAlreadyRunning("A synchronization run is already in progress")
        try:
            self._cancel.clear()
            return self._run(dry_run=dry_run, run_id=run_id or uuid.uuid4().hex)
        finally:
            self._lock.release()

    def _run(self, *, dry_run: bool, run_id: str) -> RunReport:
        report = RunReport(run_id=run_id, started_at=_now(), dry_run=dry_run)
        deadline = self._clock() + self.run_deadline if self.run_deadline else None
        logger.info("Sync run %s started (dry_run=%s)", run_id, dry_run)

        hierarchy: Optional[Hierarchy] = None
        try:
            hierarchy = self.source.load_hierarchy()
            hierarchy.validate()
            resolution = self.resolver(hierarchy).resolve_all()
        except Exception as exc:
            # Malformed hierarchy or unreachable identity provider: nothing was written
            report.aborted = f"{type(exc).__name__}: {exc}"
            report.finished_at = _now()
            logger.error("Sync run %s aborted before any write: %s", run_id, exc)
            self._record(report, hierarchy)
            raise

        report.resolved = resolution.sorted_assignments()
        report.conflicts = list(resolution.conflicts)

        fetcher = TargetStateFetcher(self.target, self.max_workers)
        outcome = fetcher.fetch_all(self.client_resources.values())
        report.fetch_errors = list(outcome.errors)

        operations: list[Operation] = []
        for resource in sorted(outcome.observed):
            operations.extend(diff(
                resolution.for_resource(resource),
                outcome.observed[resource],
                exclude=resolution.conflict_keys,
                protected_users=self.protected_users,
            ))
        # Per-resource diffs are each upserts-then-revokes; keep that order run-wide
        report.operations = [op for op in operations if op.kind != "revoke"] + [
            op for op in operations if op.kind == "revoke"
        ]

        if dry_run:
            report.results = [OperationResult(op, "skipped", reason="dry-run") for op in report.operations]
        else:
            executor = SyncExecutor(
                self.target,
                self.retry,
                self.max_workers,
                cancel_event=self._cancel,
                sleep=self._sleep,
                clock=self._clock,
            )
            report.results = executor.apply(report.operations, deadline=deadline)

        report.finished_at = _now()
        summary = report.summary
        logger.info(
            "Sync run %s finished: granted=%d updated=%d revoked=%d skipped=%d failed=%d "
            "conflicts=%d fetch_errors=%d",
            run_id, summary.granted, summary.updated, summary.revoked, summary.skipped, summary.failed,
            len(report.conflicts), len(report.fetch_errors),
        )
        self._record(report, hierarchy)
        return report

    def _record(self, report: RunReport, hierarchy: Optional[Hierarchy]) -> None:
        if self.sink is None:
            return
        self.sink.record(
            report.run_id,
            report.resolved,
            report.operations,
            report.results,
            report=report,
            hierarchy=hierarchy.to_dict() if hierarchy is not None else None,
            client_resources=self.client_resources,
            role_precedence=self.precedence.chains(),
            managed_roles=self.managed_roles,
        )
