"""Builds the immutable host configuration from raw YAML values."""

from typing import Any, Dict, Mapping, Optional, Tuple

from bootgate.constants import (
    DEFAULT_ADMIN_USER,
    DEFAULT_APP_HOST,
    DEFAULT_APP_PORT,
    DEFAULT_DB_HOST,
    DEFAULT_DB_PORT,
    DEFAULT_DB_SCHEMA,
    DEFAULT_MANIFEST_FILE,
    DEFAULT_MIGRATE_COMMAND,
    DEFAULT_PROBE_ATTEMPTS,
    DEFAULT_PROBE_INTERVAL,
    DEFAULT_RESTART_SEC,
    DEFAULT_STATE_FILE,
    EMAIL_PROVIDERS,
    HOST_ROLES,
    LOOPBACK_HOSTS,
    ROLE_API,
)
from bootgate.errors import ConfigurationFatal
from bootgate.errors_catalog import actionable_error
from bootgate.models import (
    AppConfig,
    DatabaseTarget,
    HostConfig,
    MigrationConfig,
    ProbeSettings,
    RestartPolicy,
)
from bootgate.services.secrets import SecretStore


def _command(value: Any, key: str, default: Optional[Tuple[str, ...]] = None) -> Tuple[str, ...]:
    if value is None:
        if default is None:
            raise ConfigurationFatal(f"Missing required configuration key '{key}'.")
        return default
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list) or not value:
        raise ConfigurationFatal(f"'{key}' must be a command string or a non-empty list.")
    return tuple(str(part) for part in value)


def _positive_int(value: Any, key: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationFatal(f"'{key}' must be an integer, got {value!r}.") from exc
    if number < 1:
        raise ConfigurationFatal(f"'{key}' must be a positive integer, got {number}.")
    return number


def _number(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationFatal(f"'{key}' must be a number, got {value!r}.") from exc
    if number < 0:
        raise ConfigurationFatal(f"'{key}' cannot be negative.")
    return number


class HostConfigBuilder:
    """Turns a validated raw mapping into a ``HostConfig`` value.

    Secrets are loaded exactly once here and injected into the environment
    bindings; nothing downstream reads secret files again.
    """

    def __init__(self, logger, secret_store: Optional[SecretStore] = None):
        self.logger = logger
        self.secret_store = secret_store or SecretStore()

    def build(self, raw: Mapping[str, Any]) -> HostConfig:
        role = raw.get("role")
        if role not in HOST_ROLES:
            raise ConfigurationFatal(
                f"'role' must be one of: {', '.join(HOST_ROLES)} (got {role!r})."
            )

        secrets = self.secret_store.load(raw.get("secrets") or {})
        probe_raw = raw.get("probe") or {}
        probe = ProbeSettings(
            max_attempts=_positive_int(
                probe_raw.get("max_attempts", DEFAULT_PROBE_ATTEMPTS), "probe.max_attempts"
            ),
            interval=_number(
                probe_raw.get("interval_seconds", DEFAULT_PROBE_INTERVAL), "probe.interval_seconds"
            ),
        )

        database_raw = raw.get("database")
        database = None
        strict_ownership = False
        min_server_version = None
        if role == ROLE_API:
            if not database_raw:
                raise ConfigurationFatal("The api role requires a 'database' section.")
            database = self._build_database(database_raw, secrets)
            strict_ownership = bool(database_raw.get("strict_ownership", False))
            if database_raw.get("min_server_version") is not None:
                min_server_version = str(database_raw["min_server_version"])
        elif database_raw:
            raise ConfigurationFatal("The frontend role has no database; remove the 'database' section.")

        migrations_raw = raw.get("migrations") or {}
        timeout = migrations_raw.get("timeout_minutes")
        migrations = MigrationConfig(
            command=_command(
                migrations_raw.get("command"), "migrations.command", DEFAULT_MIGRATE_COMMAND
            ),
            timeout_minutes=_number(timeout, "migrations.timeout_minutes") if timeout else None,
        )

        app = self._build_app(role, raw.get("app") or {}, secrets)

        return HostConfig(
            role=role,
            app=app,
            probe=probe,
            migrations=migrations,
            database=database,
            strict_ownership=strict_ownership,
            min_server_version=min_server_version,
            state_file=str(raw.get("state_file") or DEFAULT_STATE_FILE),
            manifest_file=str(raw.get("manifest_file") or DEFAULT_MANIFEST_FILE),
        )

    def _build_database(self, raw: Mapping[str, Any], secrets: Dict[str, str]) -> DatabaseTarget:
        for key in ("name", "shadow_name", "role", "password_secret"):
            if not raw.get(key):
                raise ConfigurationFatal(f"Missing required configuration key 'database.{key}'.")

        secret_name = raw["password_secret"]
        if secret_name not in secrets:
            raise ConfigurationFatal(f"'database.password_secret' refers to unknown secret '{secret_name}'.")

        if raw["name"] == raw["shadow_name"]:
            raise ConfigurationFatal("The shadow database must differ from the primary database.")

        host = str(raw.get("host", DEFAULT_DB_HOST))
        if host == "localhost":
            self.logger.warning(
                "database.host is 'localhost'; prefer 127.0.0.1 to avoid resolving to ::1."
            )

        return DatabaseTarget(
            host=host,
            port=_positive_int(raw.get("port", DEFAULT_DB_PORT), "database.port"),
            database=str(raw["name"]),
            shadow_database=str(raw["shadow_name"]),
            role=str(raw["role"]),
            credential=secrets[secret_name],
            schema=str(raw.get("schema", DEFAULT_DB_SCHEMA)),
            admin_user=str(raw.get("admin_user", DEFAULT_ADMIN_USER)),
            admin_host=raw.get("admin_host"),
        )

    def _build_app(self, role: str, raw: Mapping[str, Any], secrets: Dict[str, str]) -> AppConfig:
        host = str(raw.get("host", DEFAULT_APP_HOST))
        if host not in LOOPBACK_HOSTS:
            raise ConfigurationFatal(actionable_error("non_loopback_host", host=host))
        port = _positive_int(raw.get("port", DEFAULT_APP_PORT), "app.port")

        try:
            restart = RestartPolicy(raw.get("restart", RestartPolicy.ALWAYS.value))
        except ValueError as exc:
            choices = ", ".join(policy.value for policy in RestartPolicy)
            raise ConfigurationFatal(f"'app.restart' must be one of: {choices}.") from exc

        env: Dict[str, str] = {
            "NODE_ENV": str(raw.get("node_env", "production")),
            "PORT": str(port),
            "HOST": host,
        }

        app_url = raw.get("app_url")
        api_base_url = raw.get("api_base_url")
        if role == ROLE_API:
            app_url = app_url or f"http://localhost:{port}"
            api_base_url = api_base_url or f"{app_url}/v1"

            provider = str(raw.get("email_provider", "console"))
            if provider not in EMAIL_PROVIDERS:
                raise ConfigurationFatal(
                    f"'app.email_provider' must be one of: {', '.join(EMAIL_PROVIDERS)}."
                )
            env["EMAIL_PROVIDER"] = provider
            env["RATE_LIMIT_PER_MINUTE"] = str(
                _positive_int(raw.get("rate_limit_per_minute", 100), "app.rate_limit_per_minute")
            )
            env["MAGIC_LINK_TTL_MINUTES"] = str(
                _positive_int(raw.get("magic_link_ttl_minutes", 15), "app.magic_link_ttl_minutes")
            )

        optional = {
            "APP_URL": app_url,
            "API_BASE_URL": api_base_url,
            "EMAIL_FROM": raw.get("email_from"),
            "AWS_REGION": raw.get("aws_region"),
            "ARTIFACTS_BUCKET": raw.get("artifacts_bucket"),
        }
        env.update({key: str(value) for key, value in optional.items() if value})

        extra = raw.get("environment") or {}
        if not isinstance(extra, dict):
            raise ConfigurationFatal("'app.environment' must be a mapping.")
        env.update({str(key): str(value) for key, value in extra.items()})

        secret_env = raw.get("secret_environment") or {}
        if not isinstance(secret_env, dict):
            raise ConfigurationFatal("'app.secret_environment' must be a mapping.")
        for variable, secret_name in secret_env.items():
            if secret_name not in secrets:
                raise ConfigurationFatal(
                    f"'app.secret_environment.{variable}' refers to unknown secret '{secret_name}'."
                )
            env[str(variable)] = secrets[secret_name]

        default_name = "api" if role == ROLE_API else "frontend"
        return AppConfig(
            name=str(raw.get("name", default_name)),
            command=_command(raw.get("command"), "app.command"),
            host=host,
            port=port,
            restart=restart,
            restart_sec=_number(raw.get("restart_sec", DEFAULT_RESTART_SEC), "app.restart_sec"),
            environment=env,
            health_path=str(raw.get("health_path", "/")),
        )
