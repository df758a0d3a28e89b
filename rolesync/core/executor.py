"""Apply operations against the target system.

Execution model:
    - Two phases in diff order: Grants/UpdateRoles, then Revokes
    - Within a phase, operations are grouped into lanes by (user, resource);
      lanes run concurrently on a bounded pool, a lane runs its operations in
      order, so writes to the same membership never interleave
    - Each operation is isolated: its failure never aborts another one
    - Transient failures are retried with bounded exponential backoff
    - Past the run deadline, or once cancelled, unstarted operations are
      reported as skipped; in-flight calls are allowed to finish
"""
from __future__ import annotations
import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import requests

from .errors import OperationFailed
from .models import Grant, Operation, OperationResult, Revoke, UpdateRole
from .target import TargetSystem

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts per operation, first call included
        backoff_base: Delay before the second attempt, in seconds
        backoff_max: Upper bound on any single delay
        jitter: Randomise each delay within [delay / 2, delay]
    """
    max_attempts: int = 5
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    jitter: bool = True

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        if self.jitter:
            delay = random.uniform(delay / 2, delay)
        if retry_after:
            delay = max(delay, min(float(retry_after), self.backoff_max))
        return delay


def is_transient(exc: BaseException) -> bool:
    """Rate limits, 5xx, timeouts and dropped connections are worth retrying."""
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    return bool(getattr(exc, "retryable", False))


class SyncExecutor:
    """Execute Grant / UpdateRole / Revoke operations with isolation and retry.

    Args:
        target: Target system client
        retry: Retry policy for transient failures
        max_workers: Upper bound on concurrent lanes
        cancel_event: Shared event; once set, no new operation starts
        sleep: Sleep function (injected in tests)
        clock: Monotonic clock (injected in tests)
    """

    def __init__(
        self,
        target: TargetSystem,
        retry: Optional[RetryPolicy] = None,
        max_workers: int = 4,
        *,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.target = target
        self.retry = retry or RetryPolicy()
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep
        self._clock = clock

    def cancel(self) -> None:
        """Stop issuing new operations; in-flight ones complete."""
        self.cancel_event.set()

    def apply(self, operations: Iterable[Operation], deadline: Optional[float] = None) -> list[OperationResult]:
        """Apply ``operations`` and return one result per operation, in input order.

        Args:
            operations: Ordered operations from the diff engine
            deadline: Absolute time on this executor's clock after which no
                operation starts
        """
        ops = list(operations)
        results: list[Optional[OperationResult]] = [None] * len(ops)

        upserts = [(index, op) for index, op in enumerate(ops) if not isinstance(op, Revoke)]
        revokes = [(index, op) for index, op in enumerate(ops) if isinstance(op, Revoke)]
        for phase in (upserts, revokes):
            self._run_phase(phase, results, deadline)

        return [result for result in results if result is not None]

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────
    def _run_phase(self, indexed: list, results: list, deadline: Optional[float]) -> None:
        lanes: dict[tuple[str, str], list] = {}
        for index, op in indexed:
            lanes.setdefault(op.key, []).append((index, op))
        if not lanes:
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(lanes))) as pool:
            futures = [pool.submit(self._run_lane, lane, results, deadline) for lane in lanes.values()]
            for future in futures:
                future.result()

    def _run_lane(self, lane: list, results: list, deadline: Optional[float]) -> None:
        for index, op in lane:
            results[index] = self._run_one(op, deadline)

    def _stop_reason(self, deadline: Optional[float]) -> Optional[str]:
        if self.cancel_event.is_set():
            return "cancelled"
        if deadline is not None and self._clock() >= deadline:
            return "deadline exceeded"
        return None

    def _run_one(self, op: Operation, deadline: Optional[float]) -> OperationResult:
        reason = self._stop_reason(deadline)
        if reason:
            logger.info("Skipping %s: %s", op.describe(), reason)
            return OperationResult(op, "skipped", reason=reason)

        started = self._clock()
        attempts = 0
        while True:
            attempts += 1
            try:
                self._dispatch(op)
            except Exception as exc:
                failure = self._give_up(op, exc, attempts, deadline)
                if failure is not None:
                    logger.error("%s", failure)
                    return OperationResult(
                        op, "failed", attempts, error=failure, elapsed=self._clock() - started
                    )
                delay = self.retry.delay(attempts, getattr(exc, "retry_after", None))
                if deadline is not None and self._clock() + delay >= deadline:
                    failure = OperationFailed(op, exc, attempts, "deadline exceeded before retry")
                    logger.error("%s", failure)
                    return OperationResult(
                        op, "failed", attempts, error=failure, elapsed=self._clock() - started
                    )
                logger.warning("Retry #%d for %s in %.2fs due to: %s", attempts, op.describe(), delay, exc)
                self._sleep(delay)
                continue

            logger.info("Applied %s", op.describe())
            return OperationResult(op, "succeeded", attempts, elapsed=self._clock() - started)

    def _give_up(self, op: Operation, exc: Exception, attempts: int, deadline: Optional[float]) -> Optional[OperationFailed]:
        if not is_transient(exc):
            return OperationFailed(op, exc, attempts, "non-retryable")
        if attempts >= self.retry.max_attempts:
            return OperationFailed(op, exc, attempts, "retries exhausted")
        if self.cancel_event.is_set():
            return OperationFailed(op, exc, attempts, "cancelled before retry")
        return None

    def _dispatch(self, op: Operation) -> None:
        if isinstance(op, Grant):
            self.target.create_membership(op.resource, op.user, op.role)
        elif isinstance(op, UpdateRole):
            self.target.update_membership(op.resource, op.user, op.new_role)
        elif isinstance(op, Revoke):
            self.target.remove_membership(op.resource, op.user)
        else:
            raise TypeError(f"Unsupported operation: {op!r}")
