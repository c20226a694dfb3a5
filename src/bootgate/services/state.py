"""Applied-plan persistence for reconciliation between runs."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from bootgate.errors import ConfigurationFatal


class StateService:
    """Persists which unit fingerprints were last applied on this host.

    Only names, fingerprints and final states are stored. Bootstrap state is
    always derived from the live database and is never written here.
    """

    SCHEMA_VERSION = 1

    def __init__(self, state_file: str, logger):
        self.state_file = state_file
        self.logger = logger

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.state_file):
            return None

        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationFatal(f"Could not read state file '{self.state_file}': {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigurationFatal(f"State file '{self.state_file}' has invalid format.")

        return data

    def save(self, state: Dict[str, Any]):
        directory = os.path.dirname(self.state_file) or "."
        os.makedirs(directory, exist_ok=True)
        state["schema_version"] = self.SCHEMA_VERSION
        state["updated_at"] = self._now()

        fd, temp_path = tempfile.mkstemp(prefix="state-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(state, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            raise ConfigurationFatal(f"Could not write state file '{self.state_file}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def applied_fingerprints(self, role: str) -> Dict[str, str]:
        state = self.load()
        if not state:
            return {}

        if state.get("role") != role:
            raise ConfigurationFatal(
                f"State file '{self.state_file}' belongs to host role '{state.get('role')}', "
                f"not '{role}'. Remove it or choose another state_file."
            )
        units = state.get("units", {})
        return {name: entry["fingerprint"] for name, entry in units.items() if "fingerprint" in entry}

    def record_plan(self, role: str, fingerprints: Mapping[str, str]) -> Dict[str, Any]:
        state = {
            "role": role,
            "applied_at": self._now(),
            "units": {name: {"fingerprint": value, "state": None} for name, value in fingerprints.items()},
        }
        self.save(state)
        return state

    def record_unit_states(self, state: Dict[str, Any], unit_states: Mapping[str, str]):
        for name, value in unit_states.items():
            state["units"].setdefault(name, {})["state"] = value
        self.save(state)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
