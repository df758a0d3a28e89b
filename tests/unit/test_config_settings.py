import pytest

from rolesync.config import settings
from rolesync.core.errors import ConfigurationError

ENV_VARS = [
    "DEMO_MODE",
    "KEYCLOAK_URL",
    "KEYCLOAK_REALM",
    "KEYCLOAK_SERVICE_REALM",
    "KEYCLOAK_SERVICE_CLIENT_ID",
    "KEYCLOAK_SERVICE_CLIENT_SECRET",
    "KEYCLOAK_GROUP_CLIENT_ATTRIBUTE",
    "CKAN_URL",
    "CKAN_API_TOKEN",
    "ROLESYNC_CONFIG_FILE",
    "ROLESYNC_CLIENT_RESOURCES",
    "ROLESYNC_ROLE_PRECEDENCE",
    "ROLESYNC_MANAGED_ROLES",
    "ROLESYNC_PROTECTED_USERS",
    "ROLESYNC_MAX_WORKERS",
    "ROLESYNC_RETRY_MAX_ATTEMPTS",
    "ROLESYNC_RETRY_BACKOFF_BASE",
    "ROLESYNC_RETRY_BACKOFF_MAX",
    "ROLESYNC_REQUEST_TIMEOUT",
    "ROLESYNC_RUN_DEADLINE",
    "ROLESYNC_API_TOKEN",
    "AUDIT_LOG_DIR",
    "AUDIT_LOG_SIGNING_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Empty /run/secrets and no inherited configuration."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    secrets_dir = tmp_path / "secrets"
    secrets_dir.mkdir()
    monkeypatch.setattr(settings, "SECRETS_DIR", secrets_dir)
    return secrets_dir


@pytest.fixture
def minimal_env(monkeypatch):
    monkeypatch.setenv("KEYCLOAK_SERVICE_CLIENT_SECRET", "kc-secret")
    monkeypatch.setenv("CKAN_API_TOKEN", "ckan-token")
    monkeypatch.setenv("ROLESYNC_CLIENT_RESOURCES", "c1=org-a, c2=org-b")


def test_load_settings_from_environment(minimal_env, monkeypatch):
    monkeypatch.setenv("ROLESYNC_ROLE_PRECEDENCE", "admin>publisher>editor;editor>member")
    monkeypatch.setenv("ROLESYNC_PROTECTED_USERS", "SysAdmin, ckan_admin")
    monkeypatch.setenv("ROLESYNC_MAX_WORKERS", "8")
    monkeypatch.setenv("KEYCLOAK_REALM", "courses")

    cfg = settings.load_settings()

    assert cfg.client_resources == {"c1": "org-a", "c2": "org-b"}
    assert cfg.resources == ["org-a", "org-b"]
    assert cfg.protected_users == ["sysadmin", "ckan_admin"]
    assert cfg.max_workers == 8
    assert cfg.keycloak_service_realm == "courses"
    assert cfg.precedence().outranks("admin", "member")
    assert cfg.managed_roles is None


def test_default_precedence(minimal_env):
    cfg = settings.load_settings()
    assert cfg.role_precedence == [["admin", "editor", "member"]]


def test_secrets_directory_wins_over_environment(minimal_env, clean_env):
    (clean_env / "keycloak_service_client_secret").write_text("file-secret\n")
    cfg = settings.load_settings()
    assert cfg.keycloak_service_client_secret == "file-secret"
    assert cfg.ckan_api_token == "ckan-token"


def test_missing_secret_raises(monkeypatch):
    monkeypatch.setenv("ROLESYNC_CLIENT_RESOURCES", "c1=org-a")
    monkeypatch.setenv("CKAN_API_TOKEN", "t")
    with pytest.raises(ConfigurationError, match="KEYCLOAK_SERVICE_CLIENT_SECRET"):
        settings.load_settings()


def test_demo_mode_uses_demo_credentials(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.setenv("ROLESYNC_CLIENT_RESOURCES", "c1=org-a")
    cfg = settings.load_settings()
    assert cfg.demo_mode is True
    assert cfg.keycloak_service_client_secret == "demo-service-secret"
    assert cfg.ckan_api_token == "demo-ckan-token"


def test_mapping_file_is_read(monkeypatch, tmp_path, minimal_env):
    monkeypatch.delenv("ROLESYNC_CLIENT_RESOURCES")
    mapping = tmp_path / "rolesync.yaml"
    mapping.write_text(
        "client_resources:\n"
        "  c1: org-a\n"
        "role_precedence:\n"
        "  - [admin, publisher, editor, member]\n"
        "managed_roles: [editor, publisher]\n"
        "protected_users: [Root]\n"
    )
    monkeypatch.setenv("ROLESYNC_CONFIG_FILE", str(mapping))

    cfg = settings.load_settings()

    assert cfg.client_resources == {"c1": "org-a"}
    assert cfg.role_precedence == [["admin", "publisher", "editor", "member"]]
    assert cfg.managed_roles == ["editor", "publisher"]
    assert cfg.protected_users == ["root"]


def test_environment_overrides_mapping_file(monkeypatch, tmp_path, minimal_env):
    mapping = tmp_path / "rolesync.yaml"
    mapping.write_text("client_resources:\n  c9: org-z\n")
    monkeypatch.setenv("ROLESYNC_CONFIG_FILE", str(mapping))
    assert settings.load_settings().client_resources == {"c1": "org-a", "c2": "org-b"}


def test_invalid_yaml_raises(monkeypatch, tmp_path, minimal_env):
    mapping = tmp_path / "broken.yaml"
    mapping.write_text("client_resources: [unclosed\n")
    monkeypatch.setenv("ROLESYNC_CONFIG_FILE", str(mapping))
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        settings.load_settings()


def test_missing_mapping_raises(monkeypatch):
    monkeypatch.setenv("KEYCLOAK_SERVICE_CLIENT_SECRET", "s")
    monkeypatch.setenv("CKAN_API_TOKEN", "t")
    with pytest.raises(ConfigurationError, match="No client mapping"):
        settings.load_settings()


@pytest.mark.parametrize(
    "var,value",
    [
        ("ROLESYNC_CLIENT_RESOURCES", "c1=org-a,c2=org-a"),
        ("ROLESYNC_CLIENT_RESOURCES", "c1"),
        ("ROLESYNC_ROLE_PRECEDENCE", "admin>editor>admin"),
        ("ROLESYNC_MAX_WORKERS", "zero"),
        ("ROLESYNC_MAX_WORKERS", "0"),
        ("ROLESYNC_MANAGED_ROLES", " , "),
    ],
)
def test_inconsistent_settings_rejected(monkeypatch, minimal_env, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(ConfigurationError):
        settings.load_settings()


def test_retry_policy_from_settings(minimal_env, monkeypatch):
    monkeypatch.setenv("ROLESYNC_RETRY_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("ROLESYNC_RETRY_BACKOFF_BASE", "0.25")
    policy = settings.load_settings().retry_policy()
    assert policy.max_attempts == 2
    assert policy.backoff_base == 0.25
