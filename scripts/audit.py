"""Audit trail for synchronization runs (append-only, HMAC-signed JSONL).

One line per run. Each record keeps the hierarchy snapshot, mapping and
precedence used, so ``explain_assignment`` can replay the resolution later and
answer "why does user U have role R on resource X".
"""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterator, Literal, Optional, Sequence

from rolesync.core.hierarchy import Hierarchy
from rolesync.core.precedence import RolePrecedence
from rolesync.core.resolver import RoleResolver

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "sync-runs.jsonl"
_default_secret_paths: list[Path] = [
    Path(".runtime/secrets/audit_log_signing_key"),
    Path(".runtime/audit/audit_log_signing_key"),
]


def _get_signing_key() -> bytes:
    """Get the audit signing key from environment or a key file (loaded lazily)."""
    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    if key_file and Path(key_file).exists():
        try:
            return Path(key_file).read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            pass
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")
    for path in _default_secret_paths:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return b""


EventType = Literal["sync_run", "sync_aborted"]


def _ensure_audit_dir(log_file: Path) -> None:
    """Create audit directory with restricted permissions."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    log_file.parent.chmod(0o700)


def _sign_event(event: dict[str, Any], signing_key: Optional[bytes] = None) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    key = signing_key if signing_key is not None else _get_signing_key()
    if not key:
        return ""
    # Canonical JSON representation for signing
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_sync_run(
    run_id: str,
    details: dict[str, Any],
    *,
    event_type: EventType = "sync_run",
    operator: str = "system",
    realm: str = "demo",
    success: bool = True,
    log_file: Optional[Path] = None,
    signing_key: Optional[bytes] = None,
) -> dict[str, Any]:
    """Append one run record to the audit trail with timestamp and signature.

    Args:
        run_id: Synchronization run identifier
        details: Resolved assignments, operations, results, snapshot, summary
        event_type: ``sync_run`` or ``sync_aborted``
        operator: Who triggered the run (cli, api, scheduler)
        realm: Keycloak realm the hierarchy was read from
        success: Whether the run completed without failures or conflicts
        log_file: Override of AUDIT_LOG_FILE
        signing_key: Override of the environment signing key

    Returns:
        The event as written
    """
    target = log_file or AUDIT_LOG_FILE
    _ensure_audit_dir(target)

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "run_id": run_id,
        "realm": realm,
        "operator": operator,
        "success": success,
        "details": details,
    }

    signature = _sign_event(event, signing_key)
    if signature:
        event["signature"] = signature

    # Append to JSONL file (one JSON object per line)
    with target.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    target.chmod(0o600)
    return event


def safe_log_sync_run(run_id: str, details: dict[str, Any], **kwargs) -> bool:
    """Log a run record with automatic error handling (never raises exceptions).

    Audit failures must not turn a completed synchronization into a failed
    one; they are reported on stderr instead.

    Returns:
        True if the record was written, False if logging failed
    """
    try:
        log_sync_run(run_id, details, **kwargs)
        return True
    except Exception as e:
        print(f"[audit] Warning: Failed to log sync run {run_id}: {e}", file=sys.stderr)
        return False


def iter_runs(log_file: Optional[Path] = None) -> Iterator[dict[str, Any]]:
    """Yield every parseable run record, oldest first."""
    target = log_file or AUDIT_LOG_FILE
    if not target.exists():
        return
    with target.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def load_run(run_id: str, log_file: Optional[Path] = None) -> Optional[dict[str, Any]]:
    """Return the record of ``run_id`` (the last one if logged twice), or None."""
    found = None
    for event in iter_runs(log_file):
        if event.get("run_id") == run_id:
            found = event
    return found


def verify_audit_log(log_file: Optional[Path] = None, signing_key: Optional[bytes] = None) -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    total = 0
    valid = 0
    for event in iter_runs(log_file):
        total += 1
        stored_sig = event.pop("signature", "")
        if not stored_sig:
            continue
        computed_sig = _sign_event(event, signing_key)
        if computed_sig and hmac.compare_digest(stored_sig, computed_sig):
            valid += 1
    return total, valid


def explain_assignment(run_id: str, user: str, resource: str, log_file: Optional[Path] = None) -> Optional[dict[str, Any]]:
    """Replay the hierarchy stored for ``run_id`` to explain one assignment.

    Returns:
        Provenance, selected capacity or conflict, plus what the run did for
        that (user, resource); None if the run is unknown or has no snapshot
    """
    event = load_run(run_id, log_file)
    if not event:
        return None
    details = event.get("details") or {}
    snapshot = details.get("hierarchy")
    if not snapshot:
        return None

    resolver = RoleResolver(
        Hierarchy.from_dict(snapshot),
        details.get("client_resources") or {},
        RolePrecedence.from_chains(details.get("role_precedence") or []),
        details.get("managed_roles"),
    )
    explanation = resolver.explain(user, resource)
    explanation["run_id"] = run_id
    explanation["results"] = [
        result for result in details.get("results", [])
        if result["operation"]["user"] == user and result["operation"]["resource"] == resource
    ]
    return explanation


class JsonlAuditSink:
    """Audit sink writing one signed JSONL record per synchronization run.

    Args:
        log_file: Target file (defaults to AUDIT_LOG_FILE)
        signing_key: HMAC key (defaults to AUDIT_LOG_SIGNING_KEY)
        operator: Recorded as the run's operator
        realm: Recorded as the run's realm
    """

    def __init__(
        self,
        log_file: Optional[Path] = None,
        signing_key: Optional[str] = None,
        *,
        operator: str = "system",
        realm: str = "demo",
    ):
        self.log_file = Path(log_file) if log_file else None
        self.signing_key = signing_key.encode("utf-8") if signing_key else None
        self.operator = operator
        self.realm = realm

    def record(
        self,
        run_id: str,
        resolved: Sequence,
        operations: Sequence,
        results: Sequence,
        *,
        report=None,
        hierarchy: Optional[dict] = None,
        client_resources: Optional[dict] = None,
        role_precedence: Optional[list] = None,
        managed_roles: Optional[list] = None,
    ) -> bool:
        details: dict[str, Any] = {
            "resolved": [assignment.to_dict() for assignment in resolved],
            "operations": [op.to_dict() for op in operations],
            "results": [result.to_dict() for result in results],
            "hierarchy": hierarchy,
            "client_resources": client_resources or {},
            "role_precedence": role_precedence or [],
            "managed_roles": managed_roles,
        }
        success = True
        event_type: EventType = "sync_run"
        if report is not None:
            details.update(report.to_dict())
            success = report.ok
            if report.aborted:
                event_type = "sync_aborted"

        return safe_log_sync_run(
            run_id,
            details,
            event_type=event_type,
            operator=self.operator,
            realm=self.realm,
            success=success,
            log_file=self.log_file,
            signing_key=self.signing_key,
        )


if __name__ == "__main__":
    total, valid = verify_audit_log()
    print(f"Audit log: {valid}/{total} runs with valid signatures")
    sys.exit(0 if total == valid else 1)
