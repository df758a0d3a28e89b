"""Low-level HTTP client for Keycloak Admin API.

Handles service-account authentication, token refresh, and read operations.
"""
from __future__ import annotations
import os
from typing import Optional, Dict, Any, Iterator
from datetime import datetime, timedelta

import requests

from .exceptions import KeycloakAPIError, InsufficientPermissionsError

REQUEST_TIMEOUT = 10
PAGE_SIZE = 100


class KeycloakClient:
    """HTTP client for Keycloak Admin API with automatic token management.

    Features:
    - Automatic token refresh when expired
    - Centralized error handling
    - Per-request timeout on every call
    - Transparent pagination for list endpoints

    Usage:
        client = KeycloakClient("http://keycloak:8080")
        client.authenticate_service_account("demo", "rolesync", "secret")
        groups = list(client.paginate("/admin/realms/demo/groups"))
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = REQUEST_TIMEOUT):
        """Initialize Keycloak client.

        Args:
            base_url: Keycloak base URL (defaults to KEYCLOAK_URL env var)
            timeout: Seconds before any single HTTP call is abandoned
        """
        self.base_url = (base_url or os.environ.get("KEYCLOAK_URL", "http://keycloak:8080")).rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}

    def authenticate_service_account(
        self,
        auth_realm: str,
        client_id: str,
        client_secret: str,
        *,
        lazy: bool = False,
    ) -> Optional[str]:
        """Authenticate as service account and store credentials for auto-refresh.

        Args:
            auth_realm: Realm where service account client exists
            client_id: Service account client ID
            client_secret: Service account client secret
            lazy: Only store credentials; the token is fetched on first request

        Returns:
            Access token, or None when lazy
        """
        self._auth_params = {
            "auth_realm": auth_realm,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        if lazy:
            return None
        self._refresh_token()
        return self._token

    def _refresh_token(self) -> None:
        payload = self._get_service_account_token(**self._auth_params)
        self._token = payload["access_token"]
        # Refresh 10 seconds before Keycloak would reject the token
        expires_in = int(payload.get("expires_in", 60))
        self._token_expires_at = datetime.now() + timedelta(seconds=max(expires_in - 10, 1))

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid token, refreshing if necessary."""
        if not self._auth_params and not self._token:
            raise KeycloakAPIError(401, "Not authenticated - call authenticate_service_account first", "")
        if not self._token or not self._token_expires_at or datetime.now() >= self._token_expires_at:
            if not self._auth_params:
                raise KeycloakAPIError(401, "Token expired and no credentials to refresh it", "")
            self._refresh_token()

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request with automatic authentication.

        Args:
            path: API endpoint path (e.g., "/admin/realms/demo/groups")
            params: Query parameters
            **kwargs: Additional arguments for requests

        Returns:
            Response object

        Raises:
            KeycloakAPIError: On HTTP error
        """
        self._ensure_authenticated()
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self._token}"

        resp = self._session.get(url, params=params, headers=headers, timeout=self.timeout, **kwargs)
        self._handle_error(resp)
        return resp

    def paginate(self, path: str, params: Optional[Dict] = None, page_size: int = PAGE_SIZE) -> Iterator[dict]:
        """Yield every item of a list endpoint using first/max paging.

        Args:
            path: API endpoint path returning a JSON array
            params: Extra query parameters
            page_size: Items requested per call
        """
        first = 0
        while True:
            query = dict(params or {})
            query.update({"first": first, "max": page_size})
            page = self.get(path, params=query).json() or []
            yield from page
            if len(page) < page_size:
                return
            first += page_size

    def _get_service_account_token(self, auth_realm: str, client_id: str, client_secret: str) -> dict:
        """Fetch a service account token using client credentials flow."""
        url = f"{self.base_url}/realms/{auth_realm}/protocol/openid-connect/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }
        resp = self._session.post(url, data=data, timeout=self.timeout)
        if resp.status_code != 200:
            raise KeycloakAPIError(resp.status_code, resp.text, url)
        return resp.json()

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Args:
            resp: Response object to check

        Raises:
            InsufficientPermissionsError: On 403
            KeycloakAPIError: If response status indicates any other error
        """
        if resp.status_code == 403:
            raise InsufficientPermissionsError(resp.status_code, resp.text, resp.url)
        if resp.status_code >= 400:
            raise KeycloakAPIError(resp.status_code, resp.text, resp.url)
