"""Tests for effective role resolution."""
import pytest

from rolesync.core.errors import ConfigurationError
from rolesync.core.models import EffectiveAssignment
from rolesync.core.precedence import RolePrecedence
from rolesync.core.resolver import RoleResolver, validate_client_resources


def make_resolver(hierarchy, client_resources, precedence, managed_roles=None):
    return RoleResolver(hierarchy, client_resources, precedence, managed_roles)


def test_subgroup_member_unions_ancestor_roles(hierarchy, client_resources, precedence):
    resolver = make_resolver(hierarchy, client_resources, precedence)

    resolved = resolver.resolve_roles("alice")
    assert set(resolved) == {"org-a"}
    assert resolved["org-a"].roles == frozenset({"editor", "publisher"})

    resolution = resolver.resolve("alice")
    assert resolution.assignments == {EffectiveAssignment("alice", "org-a", "publisher")}
    assert resolution.conflicts == []


def test_roles_never_flow_upward(hierarchy, client_resources, precedence):
    resolver = make_resolver(hierarchy, client_resources, precedence)
    # bob sits in classroom-a; the publisher role on project-alpha stays below him
    assert resolver.resolve_roles("bob")["org-a"].roles == frozenset({"editor"})
    assert resolver.resolve("bob").assignments == {EffectiveAssignment("bob", "org-a", "editor")}


def test_clients_are_isolated(hierarchy, client_resources, precedence):
    resolver = make_resolver(hierarchy, client_resources, precedence)
    assert resolver.resolve("carol").assignments == {
        EffectiveAssignment("carol", "org-a", "admin"),
        EffectiveAssignment("carol", "org-b", "member"),
    }


def test_unmapped_client_is_ignored(hierarchy, precedence):
    resolver = make_resolver(hierarchy, {"c1": "org-a"}, precedence)
    assert {a.resource for a in resolver.resolve("carol").assignments} == {"org-a"}


def test_conflict_is_isolated_to_one_resource(hierarchy, client_resources):
    hierarchy.assign_role("staff", "auditor")
    p = RolePrecedence.parse("admin>publisher>editor>member")
    resolver = make_resolver(hierarchy, client_resources, p)

    resolution = resolver.resolve("carol")
    assert [c.key for c in resolution.conflicts] == [("carol", "org-a")]
    assert resolution.assignments == {EffectiveAssignment("carol", "org-b", "member")}


def test_managed_roles_filter(hierarchy, client_resources, precedence):
    resolver = make_resolver(hierarchy, client_resources, precedence, managed_roles=["editor", "member"])
    assert resolver.resolve("alice").assignments == {EffectiveAssignment("alice", "org-a", "editor")}
    assert resolver.resolve_roles("carol").keys() == {"org-b"}


def test_resolution_is_deterministic(hierarchy, client_resources, precedence):
    first = make_resolver(hierarchy, client_resources, precedence).resolve_all()
    second = make_resolver(hierarchy, client_resources, precedence).resolve_all()
    assert first.sorted_assignments() == second.sorted_assignments()
    assert [a.user for a in first.sorted_assignments()] == ["alice", "bob", "carol", "carol"]


def test_user_without_memberships_resolves_to_nothing(hierarchy, client_resources, precedence):
    resolution = make_resolver(hierarchy, client_resources, precedence).resolve("nobody")
    assert resolution.assignments == set()
    assert resolution.conflicts == []


def test_lookup_by_any_username_case(hierarchy, client_resources, precedence):
    resolution = make_resolver(hierarchy, client_resources, precedence).resolve("Alice")
    assert resolution.assignments == {EffectiveAssignment("alice", "org-a", "publisher")}


def test_explain_lists_provenance(hierarchy, client_resources, precedence):
    explanation = make_resolver(hierarchy, client_resources, precedence).explain("alice", "org-a")
    assert explanation["capacity"] == "publisher"
    assert explanation["roles"] == ["editor", "publisher"]
    assert {(p["group_path"], p["role"]) for p in explanation["provenance"]} == {
        ("/classroom-a/project-alpha", "publisher"),
        ("/classroom-a", "editor"),
    }
    assert all(p["membership"] == "project-alpha" for p in explanation["provenance"])


def test_explain_reports_conflict(hierarchy, client_resources):
    hierarchy.assign_role("staff", "auditor")
    resolver = make_resolver(hierarchy, client_resources, RolePrecedence.parse("admin>editor"))
    explanation = resolver.explain("carol", "org-a")
    assert explanation["capacity"] is None
    assert explanation["conflict"]["roles"] == ["admin", "auditor"]


def test_explain_without_roles(hierarchy, client_resources, precedence):
    explanation = make_resolver(hierarchy, client_resources, precedence).explain("bob", "org-b")
    assert explanation["capacity"] is None
    assert explanation["provenance"] == []


def test_resource_mapped_twice_rejected():
    with pytest.raises(ConfigurationError, match="mapped from both"):
        validate_client_resources({"c1": "org-a", "c2": "org-a"})
