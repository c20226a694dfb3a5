"""Actionable error catalog for bootgate."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "database_not_ready": {
        "what": "Database at {host}:{port} did not accept connections after {attempts} attempt(s).",
        "next": "Check that PostgreSQL is running and listening on {host}:{port}, then rerun.",
    },
    "endpoint_not_ready": {
        "what": "{label} at {location} did not become ready after {attempts} attempt(s).",
        "next": "Inspect the {label} logs and confirm it listens on {location}.",
    },
    "role_create_failed": {
        "what": "Could not create login role '{role}'.",
        "next": "Run bootstrap as a database superuser (default `postgres`) with CREATEROLE.",
    },
    "role_password_failed": {
        "what": "Could not set the password for role '{role}'.",
        "next": "Verify the admin connection and that the credential secret is valid.",
    },
    "database_create_failed": {
        "what": "Could not create database '{database}'.",
        "next": "Check that the admin user has CREATEDB and that the name is not in use.",
    },
    "schema_grant_failed": {
        "what": "Could not grant schema privileges on {database}.{schema} to '{role}'.",
        "next": "Confirm schema `{schema}` exists in `{database}` and the admin user owns it.",
    },
    "ownership_mismatch": {
        "what": "{object_type} '{object_name}' is owned by '{owner}' instead of '{role}'.",
        "next": "Reassign ownership manually or disable `strict_ownership` to tolerate it.",
    },
    "server_too_old": {
        "what": "PostgreSQL server version {found} is older than the required {required}.",
        "next": "Upgrade the database server or lower `database.min_server_version`.",
    },
    "migration_failed": {
        "what": "Schema migration exited with code {code}.",
        "next": "Inspect the migration output above, fix the schema change, then rerun `migrate deploy`.",
    },
    "migration_timeout": {
        "what": "Schema migration exceeded {minutes} minute(s).",
        "next": "Increase `migrations.timeout_minutes` or investigate locks on the database.",
    },
    "dependency_cycle": {
        "what": "Unit dependency cycle detected between: {units}.",
        "next": "Remove one of the `requires` edges so the startup graph is acyclic.",
    },
    "unknown_dependency": {
        "what": "Unit '{unit}' requires unknown unit '{dependency}'.",
        "next": "Declare the missing unit or fix the name in `requires`.",
    },
    "missing_secret": {
        "what": "Secret '{name}' could not be loaded: {reason}",
        "next": "Create the secret file or export the variable before running bootgate.",
    },
    "non_loopback_host": {
        "what": "Application host '{host}' is not a loopback address.",
        "next": "Bind the application to 127.0.0.1 and let the reverse proxy expose it.",
    },
}


def actionable_error(error_key: str, **kwargs: object) -> str:
    if error_key not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {error_key}")

    template = _ERROR_MESSAGES[error_key]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
