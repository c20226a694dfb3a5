"""Child process launching for supervised units."""

import os
import subprocess

from bootgate.errors import ExternalToolFailure
from bootgate.models import UnitSpec


class ProcessHandle:
    def __init__(self, process, name: str, logger):
        self.process = process
        self.name = name
        self.logger = logger

    @property
    def pid(self) -> int:
        return self.process.pid

    def wait(self) -> int:
        return self.process.wait()

    def terminate(self, grace_seconds: float = 10.0):
        if self.process.poll() is not None:
            return
        self.logger.debug("Terminating unit %s (pid %s)", self.name, self.pid)
        self.process.terminate()
        try:
            self.process.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            self.logger.warning("Unit %s ignored SIGTERM; killing it.", self.name)
            self.process.kill()


class ProcessLauncher:
    """Starts a unit's command with its environment bindings layered over ours."""

    def __init__(self, logger, subprocess_module=subprocess):
        self.logger = logger
        self.subprocess = subprocess_module

    def start(self, unit: UnitSpec) -> ProcessHandle:
        if not unit.command:
            raise ExternalToolFailure(f"Unit '{unit.name}' has no command to launch.")

        env = dict(os.environ)
        env.update(unit.environment)
        self.logger.debug("Launching unit %s: %s", unit.name, " ".join(unit.command))
        try:
            process = self.subprocess.Popen(list(unit.command), env=env)
        except FileNotFoundError as exc:
            raise ExternalToolFailure(
                f"Required command not found: {unit.command[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise ExternalToolFailure(f"Failed to launch unit '{unit.name}': {exc}") from exc
        return ProcessHandle(process, unit.name, self.logger)
