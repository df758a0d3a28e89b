"""CKAN-specific exceptions for error handling."""
from __future__ import annotations
from typing import Optional

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class CkanError(Exception):
    """Base exception for all CKAN operations."""
    retryable = False


class CkanAPIError(CkanError):
    """Error returned by the CKAN action API.

    Attributes:
        status_code: HTTP status code
        message: Error message (CKAN ``error.message`` or response body)
        action: Action name that failed (e.g. ``organization_member_create``)
        error_type: CKAN ``error.__type`` (e.g. ``Authorization Error``)
        retry_after: Seconds requested by a ``Retry-After`` header, if any
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        action: str,
        error_type: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.status_code = status_code
        self.message = message
        self.action = action
        self.error_type = error_type
        self.retry_after = retry_after
        label = f"{error_type}: " if error_type else ""
        super().__init__(f"[{status_code}] {action}: {label}{message}")

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES
