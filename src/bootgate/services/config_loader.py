"""Configuration loader for bootgate."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from bootgate.errors import ConfigurationFatal


class ConfigLoader:
    """Loads the host YAML configuration and rejects unknown keys."""

    SUPPORTED_KEYS = {
        "role",
        "app",
        "database",
        "migrations",
        "probe",
        "secrets",
        "state_file",
        "manifest_file",
    }

    SECTION_KEYS = {
        "app": {
            "name",
            "command",
            "host",
            "port",
            "restart",
            "restart_sec",
            "node_env",
            "app_url",
            "api_base_url",
            "email_provider",
            "email_from",
            "rate_limit_per_minute",
            "magic_link_ttl_minutes",
            "aws_region",
            "artifacts_bucket",
            "secret_environment",
            "environment",
            "health_path",
        },
        "database": {
            "host",
            "port",
            "name",
            "shadow_name",
            "role",
            "password_secret",
            "schema",
            "admin_user",
            "admin_host",
            "strict_ownership",
            "min_server_version",
        },
        "migrations": {"command", "timeout_minutes"},
        "probe": {"max_attempts", "interval_seconds"},
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigurationFatal(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationFatal(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigurationFatal("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigurationFatal(f"Unknown configuration keys: {unknown_list}")

        for section, allowed in self.SECTION_KEYS.items():
            value = parsed.get(section)
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ConfigurationFatal(f"Config section '{section}' must be a mapping.")
            unknown = sorted(set(value.keys()) - allowed)
            if unknown:
                unknown_list = ", ".join(f"{section}.{key}" for key in unknown)
                raise ConfigurationFatal(f"Unknown configuration keys: {unknown_list}")

        secrets = parsed.get("secrets")
        if secrets is not None and not isinstance(secrets, dict):
            raise ConfigurationFatal("Config section 'secrets' must be a mapping.")

        return parsed
