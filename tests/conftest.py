"""Pytest shared fixtures for resolution and synchronization tests."""
import pathlib
import sys
import threading
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from rolesync.core.hierarchy import Hierarchy
from rolesync.core.precedence import RolePrecedence


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from hitting live Keycloak or CKAN endpoints.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests.Session, "request", _refuse)


# ─────────────────────────────────────────────────────────────────────────────
# Hierarchy Fixtures
# ─────────────────────────────────────────────────────────────────────────────
def build_course_hierarchy() -> Hierarchy:
    """Two clients; c1 has a classroom with a project subgroup.

        c1: classroom-a (editor)
              └── project-alpha (publisher)
            staff (admin)
        c2: lab (member)

    Members: alice → project-alpha, bob → classroom-a, carol → staff + lab
    """
    h = Hierarchy()
    h.add_client("c1", "Course 1")
    h.add_client("c2", "Course 2")
    h.add_group("classroom-a", "classroom-a", client_id="c1")
    h.add_group("project-alpha", "project-alpha", "classroom-a")
    h.add_group("staff", "staff", client_id="c1")
    h.add_group("lab", "lab", client_id="c2")
    h.assign_role("classroom-a", "editor")
    h.assign_role("project-alpha", "publisher")
    h.assign_role("staff", "admin")
    h.assign_role("lab", "member")
    h.add_user_membership("alice", "project-alpha")
    h.add_user_membership("bob", "classroom-a")
    h.add_user_membership("carol", "staff")
    h.add_user_membership("carol", "lab")
    return h


@pytest.fixture()
def hierarchy() -> Hierarchy:
    return build_course_hierarchy()


@pytest.fixture()
def precedence() -> RolePrecedence:
    """admin > publisher > editor > member"""
    return RolePrecedence.from_chains([["admin", "publisher", "editor", "member"]])


CLIENT_RESOURCES = {"c1": "org-a", "c2": "org-b"}


@pytest.fixture()
def client_resources() -> dict:
    return dict(CLIENT_RESOURCES)


# ─────────────────────────────────────────────────────────────────────────────
# In-memory Target System
# ─────────────────────────────────────────────────────────────────────────────
class TransientError(Exception):
    """Stand-in for a 503 / rate limit raised by a target."""
    retryable = True

    def __init__(self, message: str = "temporarily unavailable", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentError(Exception):
    """Stand-in for a 4xx validation error raised by a target."""
    retryable = False


class FakeTarget:
    """Thread-safe in-memory target holding one capacity per (user, resource).

    ``failures`` maps ``(method, resource, user)`` (or ``(method, resource)``
    for listings) to a list of exceptions raised one per call before the call
    succeeds.
    """

    def __init__(self, members: Optional[dict] = None):
        self.members: dict[str, dict[str, str]] = {
            resource: dict(users) for resource, users in (members or {}).items()
        }
        self.calls: list[tuple] = []
        self.failures: dict[tuple, list] = {}
        self._lock = threading.Lock()

    def fail(self, key: tuple, *errors: Exception) -> None:
        self.failures.setdefault(key, []).extend(errors)

    def _maybe_fail(self, key: tuple) -> None:
        with self._lock:
            queue = self.failures.get(key)
            error = queue.pop(0) if queue else None
        if error is not None:
            raise error

    def list_memberships(self, resource):
        self.calls.append(("list", resource))
        self._maybe_fail(("list", resource))
        with self._lock:
            return sorted(self.members.get(resource, {}).items())

    def create_membership(self, resource, user, capacity):
        self.calls.append(("create", resource, user, capacity))
        self._maybe_fail(("create", resource, user))
        with self._lock:
            self.members.setdefault(resource, {})[user] = capacity

    def update_membership(self, resource, user, capacity):
        self.calls.append(("update", resource, user, capacity))
        self._maybe_fail(("update", resource, user))
        with self._lock:
            self.members.setdefault(resource, {})[user] = capacity

    def remove_membership(self, resource, user):
        self.calls.append(("remove", resource, user))
        self._maybe_fail(("remove", resource, user))
        with self._lock:
            self.members.get(resource, {}).pop(user, None)

    def writes(self) -> list[tuple]:
        return [call for call in self.calls if call[0] != "list"]


@pytest.fixture()
def target() -> FakeTarget:
    return FakeTarget()


class StaticSource:
    """Hierarchy source returning a fixed hierarchy (or raising)."""

    def __init__(self, hierarchy: Optional[Hierarchy] = None, error: Optional[Exception] = None):
        self.hierarchy = hierarchy
        self.error = error
        self.loads = 0

    def load_hierarchy(self) -> Hierarchy:
        self.loads += 1
        if self.error is not None:
            raise self.error
        return self.hierarchy


class FakeClock:
    """Monotonic clock advanced by the injected sleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ─────────────────────────────────────────────────────────────────────────────
# Audit Trail
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def audit_file(tmp_path, monkeypatch):
    """Isolated audit log with a known signing key."""
    from scripts import audit

    audit_dir = tmp_path / "audit"
    log_file = audit_dir / "sync-runs.jsonl"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", log_file)
    monkeypatch.delenv("AUDIT_LOG_SIGNING_KEY_FILE", raising=False)
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return log_file


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running Keycloak and CKAN)"
    )
