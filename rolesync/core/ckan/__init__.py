"""CKAN action API client library (target-system side).

Architecture:
- client.py: HTTP client for action calls
- members.py: Organization memberships implementing the TargetSystem protocol
- exceptions.py: Typed exceptions carrying retry hints
"""
from .client import CkanClient, REQUEST_TIMEOUT
from .exceptions import CkanError, CkanAPIError, RETRYABLE_STATUS_CODES
from .members import CkanMembershipService

__all__ = [
    "CkanClient",
    "REQUEST_TIMEOUT",
    "CkanError",
    "CkanAPIError",
    "RETRYABLE_STATUS_CODES",
    "CkanMembershipService",
]
