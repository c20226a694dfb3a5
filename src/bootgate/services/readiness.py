"""Readiness gate polling for databases and loopback services."""

import socket
import time
from typing import Callable, Optional

import requests

from bootgate.constants import DEFAULT_PROBE_ATTEMPTS, DEFAULT_PROBE_INTERVAL
from bootgate.errors import BootstrapError, ConfigurationFatal, TransientUnavailable
from bootgate.errors_catalog import actionable_error
from bootgate.models import ProbeResult


class PgIsReadyCheck:
    """Asks ``pg_isready`` whether the PostgreSQL listener accepts connections."""

    def __init__(self, host: str, port: int, run_cmd: Callable, user: Optional[str] = None):
        self.host = host
        self.port = port
        self.run_cmd = run_cmd
        self.user = user

    def describe(self) -> str:
        return f"PostgreSQL at {self.host}:{self.port}"

    def not_ready_message(self, attempts: int) -> str:
        return actionable_error(
            "database_not_ready", host=self.host, port=self.port, attempts=attempts
        )

    def check(self) -> bool:
        cmd = ["pg_isready", "-h", self.host, "-p", str(self.port)]
        if self.user:
            cmd += ["-U", self.user]
        result = self.run_cmd(cmd, check=False, capture_output=True)
        return result.returncode == 0


class TcpCheck:
    def __init__(self, host: str, port: int, timeout: float = 1.0, label: str = "service"):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.label = label

    def describe(self) -> str:
        return f"{self.label} at {self.host}:{self.port}"

    def not_ready_message(self, attempts: int) -> str:
        return actionable_error(
            "endpoint_not_ready",
            label=self.label,
            location=f"{self.host}:{self.port}",
            attempts=attempts,
        )

    def check(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError:
            return False


class HttpCheck:
    """Treats any non-5xx HTTP answer as a live application."""

    def __init__(
        self,
        url: str,
        timeout: float = 2.0,
        label: str = "application",
        requests_module=requests,
    ):
        self.url = url
        self.timeout = timeout
        self.label = label
        self.requests = requests_module

    def describe(self) -> str:
        return f"{self.label} at {self.url}"

    def not_ready_message(self, attempts: int) -> str:
        return actionable_error(
            "endpoint_not_ready", label=self.label, location=self.url, attempts=attempts
        )

    def check(self) -> bool:
        try:
            response = self.requests.get(self.url, timeout=self.timeout, allow_redirects=False)
        except self.requests.RequestException:
            return False
        try:
            return response.status_code < 500
        finally:
            response.close()


class ReadinessProber:
    """Polls a readiness check on a fixed interval within a bounded budget."""

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def wait_ready(
        self,
        target,
        max_attempts: int = DEFAULT_PROBE_ATTEMPTS,
        interval: float = DEFAULT_PROBE_INTERVAL,
    ) -> ProbeResult:
        if max_attempts < 1:
            raise ConfigurationFatal("Readiness probe needs at least one attempt.")
        if interval < 0:
            raise ConfigurationFatal("Readiness probe interval cannot be negative.")

        self.console.print(f"[yellow]Waiting for {target.describe()}...[/yellow]")

        for attempt in range(1, max_attempts + 1):
            try:
                ready = target.check()
            except BootstrapError as exc:
                self.logger.debug("Readiness check %s/%s errored: %s", attempt, max_attempts, exc)
                ready = False

            if ready:
                self.logger.info(
                    "%s is ready (attempt %s/%s).", target.describe(), attempt, max_attempts
                )
                self.console.print(f"[green]{target.describe()} is ready.[/green]")
                return ProbeResult.READY

            self.logger.debug("%s not ready (attempt %s/%s).", target.describe(), attempt, max_attempts)
            if attempt < max_attempts:
                time.sleep(interval)

        self.logger.warning(
            "%s not ready after %s attempt(s).", target.describe(), max_attempts
        )
        return ProbeResult.TIMED_OUT

    def require_ready(
        self,
        target,
        max_attempts: int = DEFAULT_PROBE_ATTEMPTS,
        interval: float = DEFAULT_PROBE_INTERVAL,
    ):
        result = self.wait_ready(target, max_attempts=max_attempts, interval=interval)
        if result is not ProbeResult.READY:
            raise TransientUnavailable(target.not_ready_message(max_attempts))
