"""Settings loader with environment variable, Docker secrets and YAML mapping integration."""
from __future__ import annotations
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from rolesync.core.errors import ConfigurationError
from rolesync.core.executor import RetryPolicy
from rolesync.core.precedence import RolePrecedence
from rolesync.core.resolver import validate_client_resources

SECRETS_DIR = Path("/run/secrets")
DEFAULT_PRECEDENCE = "admin>editor>member"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = SECRETS_DIR / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from {SECRETS_DIR}", file=sys.stderr)
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read {secret_file}: {e}", file=sys.stderr)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _parse_list(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _parse_mapping(value: str) -> dict[str, str]:
    """Parse ``"c1=org-a,c2=org-b"``."""
    mapping = {}
    for entry in _parse_list(value):
        key, sep, target = entry.partition("=")
        if not sep or not key.strip() or not target.strip():
            raise ConfigurationError(f"Invalid client mapping entry '{entry}' (expected client=resource)")
        mapping[key.strip()] = target.strip()
    return mapping


def _number(var_name: str, default, cast, minimum=None):
    raw = os.environ.get(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{var_name} must be a number, got '{raw}'")
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{var_name} must be >= {minimum}, got {value}")
    return value


def _load_mapping_file(path: str) -> dict:
    """Read the optional YAML mapping file.

    Expected keys (all optional): ``client_resources`` (mapping),
    ``role_precedence`` (list of chains, highest first), ``managed_roles``
    and ``protected_users`` (lists).
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigurationError(f"Mapping file not found: {path}")
    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Mapping file {path} must contain a mapping at top level")
    return data


@dataclass
class SyncConfig:
    """Synchronization configuration container."""
    # Mode
    demo_mode: bool = False

    # Keycloak (identity provider)
    keycloak_url: str = "http://keycloak:8080"
    keycloak_realm: str = "demo"
    keycloak_service_realm: str = "demo"
    keycloak_service_client_id: str = "rolesync"
    keycloak_service_client_secret: str = ""
    keycloak_group_client_attribute: str = "client"

    # CKAN (target system)
    ckan_url: str = "http://ckan:5000"
    ckan_api_token: str = ""

    # Resolution
    client_resources: dict[str, str] = field(default_factory=dict)
    role_precedence: list[list[str]] = field(default_factory=lambda: [["admin", "editor", "member"]])
    managed_roles: Optional[list[str]] = None
    protected_users: list[str] = field(default_factory=list)

    # Execution
    max_workers: int = 4
    retry_max_attempts: int = 5
    retry_backoff_base: float = 0.5
    retry_backoff_max: float = 30.0
    request_timeout: float = 10.0
    run_deadline: float = 600.0

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    # Ops API
    api_token: str = ""

    def precedence(self) -> RolePrecedence:
        return RolePrecedence.from_chains(self.role_precedence)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            backoff_base=self.retry_backoff_base,
            backoff_max=self.retry_backoff_max,
        )

    @property
    def resources(self) -> list[str]:
        return sorted(self.client_resources.values())

    def validate(self) -> None:
        """Check cross-field consistency.

        Raises:
            ConfigurationError: On any inconsistency
        """
        if not self.client_resources:
            raise ConfigurationError(
                "No client mapping configured. Set ROLESYNC_CLIENT_RESOURCES or client_resources in ROLESYNC_CONFIG_FILE."
            )
        validate_client_resources(self.client_resources)
        self.precedence()
        if self.managed_roles is not None and not self.managed_roles:
            raise ConfigurationError("managed_roles is empty; nothing would ever be granted")


def load_settings() -> SyncConfig:
    """Load synchronization settings from environment, /run/secrets and the YAML mapping file."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    file_data: dict = {}
    config_file = os.environ.get("ROLESYNC_CONFIG_FILE")
    if config_file:
        file_data = _load_mapping_file(config_file)

    # ─────────────────────────────────────────────────────────────────────────
    # Secrets: /run/secrets > environment > demo defaults
    # ─────────────────────────────────────────────────────────────────────────
    keycloak_secret = _load_secret_from_file("keycloak_service_client_secret", "KEYCLOAK_SERVICE_CLIENT_SECRET")
    ckan_token = _load_secret_from_file("ckan_api_token", "CKAN_API_TOKEN")
    if demo_mode:
        keycloak_secret = keycloak_secret or "demo-service-secret"
        ckan_token = ckan_token or "demo-ckan-token"
    if not keycloak_secret:
        raise ConfigurationError("KEYCLOAK_SERVICE_CLIENT_SECRET not found in /run/secrets or environment")
    if not ckan_token:
        raise ConfigurationError("CKAN_API_TOKEN not found in /run/secrets or environment")

    audit_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    api_token = _load_secret_from_file("rolesync_api_token", "ROLESYNC_API_TOKEN") or ""

    # ─────────────────────────────────────────────────────────────────────────
    # Resolution: environment overrides the mapping file
    # ─────────────────────────────────────────────────────────────────────────
    if os.environ.get("ROLESYNC_CLIENT_RESOURCES"):
        client_resources = _parse_mapping(os.environ["ROLESYNC_CLIENT_RESOURCES"])
    else:
        raw = file_data.get("client_resources") or {}
        if not isinstance(raw, dict):
            raise ConfigurationError("client_resources must be a mapping of clientId to resource")
        client_resources = {str(k): str(v) for k, v in raw.items()}

    if os.environ.get("ROLESYNC_ROLE_PRECEDENCE"):
        role_precedence = [
            [role.strip() for role in chain.split(">") if role.strip()]
            for chain in os.environ["ROLESYNC_ROLE_PRECEDENCE"].split(";")
            if chain.strip()
        ]
    elif file_data.get("role_precedence"):
        role_precedence = [[str(role) for role in chain] for chain in file_data["role_precedence"]]
    else:
        role_precedence = [DEFAULT_PRECEDENCE.split(">")]

    managed_roles: Optional[list[str]] = None
    if os.environ.get("ROLESYNC_MANAGED_ROLES"):
        managed_roles = _parse_list(os.environ["ROLESYNC_MANAGED_ROLES"])
    elif file_data.get("managed_roles") is not None:
        managed_roles = [str(role) for role in file_data["managed_roles"]]

    protected_users = _parse_list(os.environ.get("ROLESYNC_PROTECTED_USERS"))
    if not protected_users:
        protected_users = [str(user) for user in file_data.get("protected_users") or []]

    keycloak_realm = os.environ.get("KEYCLOAK_REALM", "demo")

    config = SyncConfig(
        demo_mode=demo_mode,
        keycloak_url=os.environ.get("KEYCLOAK_URL", "http://keycloak:8080"),
        keycloak_realm=keycloak_realm,
        keycloak_service_realm=os.environ.get("KEYCLOAK_SERVICE_REALM", keycloak_realm),
        keycloak_service_client_id=os.environ.get("KEYCLOAK_SERVICE_CLIENT_ID", "rolesync"),
        keycloak_service_client_secret=keycloak_secret,
        keycloak_group_client_attribute=os.environ.get("KEYCLOAK_GROUP_CLIENT_ATTRIBUTE", "client"),
        ckan_url=os.environ.get("CKAN_URL", "http://ckan:5000"),
        ckan_api_token=ckan_token,
        client_resources=client_resources,
        role_precedence=role_precedence,
        managed_roles=managed_roles,
        protected_users=[user.lower() for user in protected_users],
        max_workers=_number("ROLESYNC_MAX_WORKERS", 4, int, minimum=1),
        retry_max_attempts=_number("ROLESYNC_RETRY_MAX_ATTEMPTS", 5, int, minimum=1),
        retry_backoff_base=_number("ROLESYNC_RETRY_BACKOFF_BASE", 0.5, float, minimum=0),
        retry_backoff_max=_number("ROLESYNC_RETRY_BACKOFF_MAX", 30.0, float, minimum=0),
        request_timeout=_number("ROLESYNC_REQUEST_TIMEOUT", 10.0, float, minimum=0.1),
        run_deadline=_number("ROLESYNC_RUN_DEADLINE", 600.0, float, minimum=1),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        audit_log_signing_key=audit_signing_key,
        api_token=api_token,
    )
    config.validate()

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(
        f"[settings] Mode={mode_label}; realm={config.keycloak_realm}; "
        f"clients={','.join(sorted(config.client_resources))}",
        file=sys.stderr,
    )
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.", file=sys.stderr)

    return config
