"""Secret loading and redaction helpers."""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from bootgate.errors import ConfigurationFatal
from bootgate.errors_catalog import actionable_error


def redact_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.password is None:
        return url
    user = parts.username or ""
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{user}:***@{host}", parts.path, parts.query, parts.fragment))


class SecretStore:
    """Resolves secret definitions once, at configuration build time.

    A definition is either ``{"file": path}`` or ``{"env": VARIABLE}``. File
    values lose a single trailing newline so keys can be embedded in URLs.
    """

    def __init__(self, base_dir: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.environ = os.environ if environ is None else environ

    def load(self, definitions: Mapping[str, Any]) -> Dict[str, str]:
        return {name: self._load_one(name, definition) for name, definition in definitions.items()}

    def _load_one(self, name: str, definition: Any) -> str:
        if not isinstance(definition, dict) or len(definition) != 1:
            raise ConfigurationFatal(
                f"Secret '{name}' must define exactly one of `file` or `env`."
            )

        if "file" in definition:
            path = Path(str(definition["file"]))
            if not path.is_absolute():
                path = self.base_dir / path
            try:
                value = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigurationFatal(
                    actionable_error("missing_secret", name=name, reason=str(exc))
                ) from exc
            if value.endswith("\n"):
                value = value[:-1]
        elif "env" in definition:
            variable = str(definition["env"])
            if variable not in self.environ:
                raise ConfigurationFatal(
                    actionable_error(
                        "missing_secret", name=name, reason=f"variable {variable} is not set"
                    )
                )
            value = self.environ[variable]
        else:
            raise ConfigurationFatal(
                f"Secret '{name}' must define exactly one of `file` or `env`."
            )

        if not value:
            raise ConfigurationFatal(
                actionable_error("missing_secret", name=name, reason="value is empty")
            )
        return value
