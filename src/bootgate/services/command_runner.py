"""Subprocess execution for the psql and pg_isready helpers."""

import subprocess
from typing import List, Optional

from bootgate.errors import ExternalToolFailure


class CommandRunner:
    """Runs short-lived external commands and maps their failures to domain errors.

    Standard input is never logged, so secrets must be passed through
    ``input_text`` rather than argv. Every command is bounded by
    ``default_timeout`` when one is set.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=self.default_timeout,
                input=input_text,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolFailure(
                f"Command timed out after {self.default_timeout}s: {cmd_str}"
            ) from exc
        except FileNotFoundError as exc:
            raise ExternalToolFailure(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise ExternalToolFailure(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if result.returncode == 0:
            return result

        failure = f"Command failed ({result.returncode}): {cmd_str}"
        stderr = (result.stderr or "").strip() if capture_output else ""
        if stderr:
            failure = f"{failure}\n{stderr}"
        if check:
            raise ExternalToolFailure(failure)
        self.logger.debug(failure)
        return result
