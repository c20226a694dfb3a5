"""Schema migration gate for bootgate."""

import os
import subprocess
import threading
from collections import deque
from typing import Deque, Optional, Sequence

from bootgate.constants import MIGRATION_LOG_TAIL
from bootgate.errors import ExternalToolFailure
from bootgate.errors_catalog import actionable_error
from bootgate.services.secrets import redact_url


class MigrationGate:
    """Runs the external migration tool once against the primary and shadow databases.

    Any non-zero exit is fatal. Retrying a half-applied migration is left to
    the migration tool itself.
    """

    def __init__(
        self,
        command: Sequence[str],
        logger,
        console,
        timeout_minutes: Optional[float] = None,
        subprocess_module=subprocess,
    ):
        self.command = list(command)
        self.logger = logger
        self.console = console
        self.timeout_minutes = timeout_minutes
        self.subprocess = subprocess_module

    def build_environment(self, primary_url: str, shadow_url: str):
        env = dict(os.environ)
        env.update(
            {
                "NODE_ENV": "production",
                "DATABASE_URL": primary_url,
                "SHADOW_DATABASE_URL": shadow_url,
            }
        )
        return env

    def apply_migrations(self, primary_url: str, shadow_url: str):
        cmd_str = " ".join(self.command)
        self.console.print("[blue]Applying schema migrations...[/blue]")
        self.logger.info(
            "Running '%s' against %s (shadow %s)",
            cmd_str,
            redact_url(primary_url),
            redact_url(shadow_url),
        )

        try:
            process = self.subprocess.Popen(
                self.command,
                stdout=self.subprocess.PIPE,
                stderr=self.subprocess.STDOUT,
                text=True,
                bufsize=1,
                env=self.build_environment(primary_url, shadow_url),
            )
        except FileNotFoundError as exc:
            raise ExternalToolFailure(
                f"Required command not found: {self.command[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise ExternalToolFailure(f"Failed to start migration tool: {exc}") from exc

        if not process.stdout:
            process.terminate()
            process.wait()
            raise ExternalToolFailure("Migration process did not expose logs. Aborting.")

        timed_out = threading.Event()
        watchdog = None
        if self.timeout_minutes:

            def _expire():
                timed_out.set()
                process.terminate()

            watchdog = threading.Timer(self.timeout_minutes * 60, _expire)
            watchdog.daemon = True
            watchdog.start()

        last_lines: Deque[str] = deque(maxlen=MIGRATION_LOG_TAIL)
        try:
            for line in process.stdout:
                cleaned = line.rstrip()
                if not cleaned:
                    continue
                last_lines.append(cleaned)
                self.logger.debug(cleaned)
            returncode = process.wait()
        finally:
            if watchdog:
                watchdog.cancel()

        if timed_out.is_set():
            self.console.print("[bold red]Schema migration timed out.[/bold red]")
            raise ExternalToolFailure(
                actionable_error("migration_timeout", minutes=self.timeout_minutes)
            )

        if returncode != 0:
            if last_lines:
                self.logger.error("Recent migration output:\n%s", "\n".join(last_lines))
            self.console.print(f"[bold red]Migration exited with code {returncode}[/bold red]")
            raise ExternalToolFailure(actionable_error("migration_failed", code=returncode))

        self.console.print("[green]Schema migrations applied.[/green]")
        self.logger.info("Schema migrations applied.")
