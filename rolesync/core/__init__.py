"""Core Business Logic Module

Role resolution and synchronization, independent of HTTP frameworks.

Module Structure:
    - hierarchy.py    : Clients, groups, subgroups, users (arena storage)
    - precedence.py   : Role precedence partial order and capacity collapse
    - resolver.py     : Effective role resolution (downward-only inheritance)
    - fetcher.py      : Observed state from the target (fail-soft per resource)
    - diff.py         : Desired vs observed → Grant / UpdateRole / Revoke
    - executor.py     : Retrying, isolated, deadline-bounded writes
    - engine.py       : Run orchestration
    - sync_service.py : Wiring from configuration (CLI and ops API)
    - keycloak/       : Keycloak Admin API (identity provider, read-only)
    - ckan/           : CKAN action API (target system)

Usage Pattern:
    These modules are NOT auto-imported, so the pure parts (hierarchy,
    resolver, diff) can be used without the HTTP clients.

        from rolesync.core.hierarchy import Hierarchy
        from rolesync.core.resolver import RoleResolver
        from rolesync.core.diff import diff
"""
