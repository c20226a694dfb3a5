"""Run journal generation service."""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bootgate.constants import TRANSITION_HISTORY_LIMIT


class ManifestService:
    """Collects unit transitions for one run and writes them as JSON."""

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self._lock = threading.RLock()
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "role": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "reconcile": {},
            "units": {},
            "error": None,
        }

    def start_run(self, run_id: str, role: str):
        with self._lock:
            self.manifest["run_id"] = run_id
            self.manifest["role"] = role
            self.manifest["status"] = "running"
            self.manifest["started_at"] = self._now()
            self.write()

    def set_reconcile(self, reconcile: Dict[str, Any]):
        with self._lock:
            self.manifest["reconcile"] = reconcile
            self.write()

    def unit_transition(self, name: str, state: str, error: Optional[str] = None):
        with self._lock:
            unit = self.manifest["units"].setdefault(
                name, {"state": None, "transitions": [], "transition_count": 0, "error": None}
            )
            unit["state"] = state
            unit["transition_count"] += 1
            unit["transitions"].append({"state": state, "at": self._now()})
            # Only the newest entries are kept; transition_count holds the full tally.
            del unit["transitions"][:-TRANSITION_HISTORY_LIMIT]
            if error:
                unit["error"] = error
            self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        with self._lock:
            self.manifest["status"] = status
            self.manifest["finished_at"] = self._now()
            if self.manifest.get("started_at"):
                started_at = datetime.fromisoformat(self.manifest["started_at"])
                finished_at = datetime.fromisoformat(self.manifest["finished_at"])
                self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
            self.manifest["error"] = error
            self.write()

    def write(self):
        with self._lock:
            directory = os.path.dirname(self.manifest_file) or "."
            try:
                os.makedirs(directory, exist_ok=True)
                fd, temp_path = tempfile.mkstemp(prefix="run-manifest-", suffix=".json", dir=directory)
            except OSError as exc:
                self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
                return

            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                    json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                    file_obj.write("\n")
                os.replace(temp_path, self.manifest_file)
            except OSError as exc:
                self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
