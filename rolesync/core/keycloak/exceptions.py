"""Errors raised while reading the realm through the service account."""


class KeycloakError(Exception):
    """Base class; the hierarchy could not be read from Keycloak."""
    pass


class KeycloakAPIError(KeycloakError):
    """A read-only Admin API call made by the sync service account failed.

    Attributes:
        status_code: HTTP status returned by Keycloak
        message: Error text taken from the response body
        endpoint: Admin API path that was being read
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] read {endpoint or 'token'} failed: {message}")


class ClientNotFoundError(KeycloakError):
    """A client listed in CLIENT_RESOURCES is missing from the realm."""
    pass


class InsufficientPermissionsError(KeycloakAPIError):
    """Service account lacks view-users / view-clients on the realm."""
    pass
