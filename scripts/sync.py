"""Command-line entry point for Keycloak → CKAN role synchronization.

This module serves as a CLI wrapper around rolesync.core services.

Usage:
    python scripts/sync.py run --dry-run
    python scripts/sync.py run --operator nightly
    python scripts/sync.py resolve --user alice
    python scripts/sync.py explain --run-id <id> --user alice --resource org-a
    python scripts/sync.py verify-audit

Exit codes:
    0  success
    1  configuration or hierarchy error (nothing was written)
    2  run completed with conflicts, fetch errors or failed operations
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import requests

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rolesync.config import load_settings
from rolesync.core.errors import ConfigurationError, HierarchyError, SyncAlreadyRunning
from rolesync.core.keycloak.exceptions import KeycloakError
from rolesync.core.models import RunReport, normalize_user
from rolesync.core.resolver import RoleResolver
from rolesync.core.sync_service import audit_log_file, build_engine, build_source
from scripts import audit

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI use."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # Keep HTTP client chatter out of INFO output
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keycloak → CKAN role synchronization")
    parser.add_argument("--operator", default="cli",
                        help="Operator identifier for audit logs (default: cli)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="cmd")

    sr = sub.add_parser("run", help="Synchronize memberships now")
    sr.add_argument("--dry-run", action="store_true", help="Plan operations without writing")
    sr.add_argument("--run-id", default=None)
    sr.add_argument("--json", action="store_true", help="Print the full report as JSON")

    sv = sub.add_parser("resolve", help="Show effective roles of a user")
    sv.add_argument("--user", required=True)

    se = sub.add_parser("explain", help="Explain an assignment from a recorded run")
    se.add_argument("--run-id", required=True)
    se.add_argument("--user", required=True)
    se.add_argument("--resource", required=True)

    sub.add_parser("verify-audit", help="Verify audit log signatures")
    return parser


def print_report(report: RunReport) -> None:
    summary = report.summary
    mode = " (dry-run)" if report.dry_run else ""
    print(f"[sync] Run {report.run_id}{mode}")
    print(
        f"[sync] Granted={summary.granted} Updated={summary.updated} Revoked={summary.revoked} "
        f"Skipped={summary.skipped} Failed={summary.failed}"
    )
    if report.dry_run:
        for op in report.operations:
            print(f"[sync]   planned {op.describe()}")
    for conflict in report.conflicts:
        print(f"[sync] RoleConflict: {conflict}")
    for error in report.fetch_errors:
        print(f"[sync] FetchError: {error}")
    for failure in report.failures:
        print(f"[sync] OperationFailed: {failure}")


def _cmd_run(args, config) -> int:
    engine = build_engine(config, operator=args.operator)
    try:
        report = engine.run(dry_run=args.dry_run, run_id=args.run_id)
    except KeyboardInterrupt:
        engine.cancel()
        raise
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)
    return EXIT_OK if report.ok else EXIT_PARTIAL


def _cmd_resolve(args, config) -> int:
    hierarchy = build_source(config).load_hierarchy()
    resolver = RoleResolver(hierarchy, config.client_resources, config.precedence(), config.managed_roles)
    user = normalize_user(args.user)
    resources = resolver.resolve_roles(user)
    if not resources:
        print(f"[resolve] '{user}' has no effective roles on managed resources")
        return EXIT_OK
    for resource in resources:
        print(json.dumps(resolver.explain(user, resource), indent=2))
    return EXIT_PARTIAL if resolver.resolve(user).conflicts else EXIT_OK


def _cmd_explain(args, config) -> int:
    explanation = audit.explain_assignment(
        args.run_id, normalize_user(args.user), args.resource, audit_log_file(config)
    )
    if explanation is None:
        print(f"[explain] Run '{args.run_id}' not found or has no hierarchy snapshot", file=sys.stderr)
        return EXIT_ERROR
    print(json.dumps(explanation, indent=2))
    return EXIT_OK


def _cmd_verify(args, config) -> int:
    key = config.audit_log_signing_key.encode("utf-8") if config.audit_log_signing_key else None
    total, valid = audit.verify_audit_log(audit_log_file(config), key)
    print(f"Audit log: {valid}/{total} runs with valid signatures")
    return EXIT_OK if total == valid else EXIT_ERROR


COMMANDS = {
    "run": _cmd_run,
    "resolve": _cmd_resolve,
    "explain": _cmd_explain,
    "verify-audit": _cmd_verify,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return EXIT_OK

    setup_logging(args.verbose)

    try:
        config = load_settings()
        return COMMANDS[args.cmd](args, config)
    except ConfigurationError as e:
        print(f"[{args.cmd}] Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except HierarchyError as e:
        print(f"[{args.cmd}] Hierarchy error, nothing synchronized: {e}", file=sys.stderr)
        return EXIT_ERROR
    except SyncAlreadyRunning as e:
        print(f"[{args.cmd}] {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeycloakError as e:
        print(f"[{args.cmd}] Keycloak error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except requests.RequestException as e:
        print(f"[{args.cmd}] Keycloak unreachable, nothing synchronized: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
