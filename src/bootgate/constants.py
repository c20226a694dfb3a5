"""Defaults shared across bootgate services."""

DEFAULT_CONFIG_FILE = "bootgate.yml"
DEFAULT_STATE_FILE = "/var/lib/bootgate/state.json"
DEFAULT_MANIFEST_FILE = "/var/lib/bootgate/run-manifest.json"

ROLE_API = "api"
ROLE_FRONTEND = "frontend"
HOST_ROLES = (ROLE_API, ROLE_FRONTEND)

DEFAULT_DB_HOST = "127.0.0.1"
DEFAULT_DB_PORT = 5432
DEFAULT_DB_SCHEMA = "public"
DEFAULT_ADMIN_USER = "postgres"

DEFAULT_APP_HOST = "127.0.0.1"
DEFAULT_APP_PORT = 3000
LOOPBACK_HOSTS = ("127.0.0.1", "::1")

DEFAULT_PROBE_ATTEMPTS = 30
DEFAULT_PROBE_INTERVAL = 1.0
DEFAULT_RESTART_SEC = 3.0

DEFAULT_MIGRATE_COMMAND = ("gradedescent-migrate", "deploy")

EMAIL_PROVIDERS = ("console", "ses", "sendgrid", "smtp")

UNIT_DB_READY = "db-ready"
UNIT_DB_INIT = "db-init"
UNIT_MIGRATE = "migrate"

MIGRATION_LOG_TAIL = 40

TRANSITION_HISTORY_LIMIT = 50
DEFAULT_COMMAND_TIMEOUT = 120.0
