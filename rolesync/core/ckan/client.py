"""Low-level HTTP client for the CKAN action API."""
from __future__ import annotations
import os
from typing import Any, Dict, Optional

import requests

from .exceptions import CkanAPIError

REQUEST_TIMEOUT = 10


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class CkanClient:
    """HTTP client for ``/api/3/action/<name>`` calls authenticated with an API token.

    Usage:
        client = CkanClient("http://ckan:5000", api_token="...")
        org = client.call_action("organization_show", {"id": "org-a", "include_users": True})
    """

    def __init__(self, base_url: Optional[str] = None, api_token: Optional[str] = None, timeout: float = REQUEST_TIMEOUT):
        """Initialize CKAN client.

        Args:
            base_url: CKAN site URL (defaults to CKAN_URL env var)
            api_token: API token sent in the Authorization header
            timeout: Seconds before any single HTTP call is abandoned
        """
        self.base_url = (base_url or os.environ.get("CKAN_URL", "http://ckan:5000")).rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._session = requests.Session()

    def call_action(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """POST an action and return its ``result``.

        Args:
            action: Action name
            payload: JSON body

        Returns:
            The ``result`` member of the CKAN response

        Raises:
            CkanAPIError: On HTTP error or ``success: false``
            requests.Timeout, requests.ConnectionError: On transport failure
        """
        url = f"{self.base_url}/api/3/action/{action}"
        headers = {}
        if self.api_token:
            headers["Authorization"] = self.api_token

        resp = self._session.post(url, json=payload or {}, headers=headers, timeout=self.timeout)
        return self._handle_response(action, resp)

    def _handle_response(self, action: str, resp: requests.Response) -> Any:
        """Centralized error handling for action responses.

        Raises:
            CkanAPIError: If the status or the envelope indicates an error
        """
        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400 or not isinstance(body, dict) or not body.get("success"):
            error = (body or {}).get("error") if isinstance(body, dict) else None
            error = error if isinstance(error, dict) else {}
            message = error.get("message") or (resp.text or "")[:500] or "unknown error"
            raise CkanAPIError(
                resp.status_code,
                str(message),
                action,
                error_type=error.get("__type"),
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )
        return body.get("result")
