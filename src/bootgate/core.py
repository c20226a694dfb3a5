import logging
import os
import signal
import threading
import uuid
from typing import Optional, Tuple

from rich.console import Console
from rich.table import Table

from .constants import DEFAULT_COMMAND_TIMEOUT, ROLE_API, UNIT_DB_INIT, UNIT_DB_READY, UNIT_MIGRATE
from .errors import BootstrapError, ConfigurationFatal, ExternalToolFailure
from .models import BootstrapReport, HostConfig, HostPlan, ProbeResult, UnitState
from .services.bootstrap import BootstrapExecutor
from .services.command_runner import CommandRunner
from .services.graph import DependencyGraph
from .services.launcher import ProcessLauncher
from .services.manifest import ManifestService
from .services.migration import MigrationGate
from .services.plans import application_environment, build_host_plan
from .services.readiness import HttpCheck, PgIsReadyCheck, ReadinessProber
from .services.reconcile import ReconcilePlan, diff_plans
from .services.state import StateService
from .services.supervisor import Supervisor

console = Console()
logger = logging.getLogger("bootgate")


class HostBootstrapper:
    """Wires the readiness, bootstrap, migration and supervision services for one host."""

    def __init__(self, config: HostConfig, launcher=None):
        self.config = config
        self.run_id = uuid.uuid4().hex[:10]

        self.command_runner = CommandRunner(logger=logger, default_timeout=DEFAULT_COMMAND_TIMEOUT)
        self.prober = ReadinessProber(logger=logger, console=console)
        self.bootstrap_executor = BootstrapExecutor(
            run_cmd=self._run_cmd,
            logger=logger,
            console=console,
            strict_ownership=config.strict_ownership,
            min_server_version=config.min_server_version,
        )
        self.migration_gate = MigrationGate(
            command=config.migrations.command,
            logger=logger,
            console=console,
            timeout_minutes=config.migrations.timeout_minutes,
        )
        self.launcher = launcher or ProcessLauncher(logger=logger)
        self.state_service = StateService(state_file=config.state_file, logger=logger)
        self.manifest_service = ManifestService(manifest_file=config.manifest_file, logger=logger)
        self.supervisor: Optional[Supervisor] = None

    def _run_cmd(self, cmd, check: bool = True, capture_output: bool = False, **kwargs):
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, **kwargs)

    def _require_database(self):
        if self.config.role != ROLE_API or self.config.database is None:
            raise ConfigurationFatal(
                f"The {self.config.role} role has no database to bootstrap or migrate."
            )
        return self.config.database

    def database_check(self) -> PgIsReadyCheck:
        target = self._require_database()
        return PgIsReadyCheck(host=target.host, port=target.port, run_cmd=self._run_cmd)

    def application_check(self) -> HttpCheck:
        app = self.config.app
        host = f"[{app.host}]" if ":" in app.host else app.host
        return HttpCheck(url=f"http://{host}:{app.port}{app.health_path}")

    def wait_for_database(self):
        self.prober.require_ready(
            self.database_check(),
            max_attempts=self.config.probe.max_attempts,
            interval=self.config.probe.interval,
        )

    def bootstrap_database(self) -> BootstrapReport:
        return self.bootstrap_executor.ensure_role(self._require_database())

    def apply_migrations(self):
        target = self._require_database()
        self.migration_gate.apply_migrations(target.primary_url, target.shadow_url)

    def db_ready_step(self) -> int:
        self.wait_for_database()
        return 0

    def db_init_step(self) -> int:
        self.bootstrap_database()
        return 0

    def migrate_step(self) -> int:
        # Re-probe: the listener may have restarted since db-ready released.
        self.wait_for_database()
        self.apply_migrations()
        return 0

    def build_plan(self) -> HostPlan:
        steps = {
            UNIT_DB_READY: self.db_ready_step,
            UNIT_DB_INIT: self.db_init_step,
            UNIT_MIGRATE: self.migrate_step,
        }
        return build_host_plan(self.config, steps if self.config.role == ROLE_API else None)

    def reconcile(self) -> Tuple[HostPlan, ReconcilePlan]:
        plan = self.build_plan()
        observed = self.state_service.applied_fingerprints(self.config.role)
        return plan, diff_plans(plan, observed)

    def _guard(self, label: str, callback) -> int:
        try:
            callback()
            return 0
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return 1
        except BootstrapError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error("%s failed: %s", label, exc)
            return 1

    def run_bootstrap_db(self) -> int:
        def _run():
            self.wait_for_database()
            self.bootstrap_database()

        return self._guard("bootstrap-db", _run)

    def run_migrate_deploy(self) -> int:
        def _run():
            self.wait_for_database()
            self.apply_migrations()

        return self._guard("migrate deploy", _run)

    def run_wait_ready(
        self,
        target: str = "database",
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> int:
        def _run():
            check = self.database_check() if target == "database" else self.application_check()
            probe = self.config.probe
            result = self.prober.wait_ready(
                check,
                max_attempts=probe.max_attempts if max_attempts is None else max_attempts,
                interval=probe.interval if interval is None else interval,
            )
            if result is not ProbeResult.READY:
                console.print(f"[bold red]{check.describe()} is not ready.[/bold red]")
                raise BootstrapError(f"{check.describe()} timed out")

        return self._guard("wait-ready", _run)

    def serve(self):
        """Replaces this process with the application and its environment bindings."""
        command = list(self.config.app.command)
        env = dict(os.environ)
        env.update(application_environment(self.config))
        logger.info("Exec %s for %s role", command[0], self.config.role)
        try:
            os.execvpe(command[0], command, env)
        except OSError as exc:
            raise ExternalToolFailure(f"Could not exec application '{command[0]}': {exc}") from exc

    def run_plan(self) -> int:
        try:
            plan, reconcile_plan = self.reconcile()
        except BootstrapError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            return 1

        table = Table(title=f"{plan.role} host units")
        table.add_column("Unit")
        table.add_column("Kind")
        table.add_column("Requires")
        table.add_column("Restart")
        table.add_column("Change")
        changes = {}
        for name in reconcile_plan.to_start:
            changes[name] = "start"
        for name in reconcile_plan.to_restart:
            changes[name] = "restart"
        for name in DependencyGraph(plan.units).startup_order():
            unit = plan.unit(name)
            table.add_row(
                unit.name,
                unit.kind.value,
                ", ".join(unit.requires) or "-",
                unit.restart.value,
                changes.get(name, "-"),
            )
        console.print(table)
        for name in reconcile_plan.to_stop:
            console.print(f"[yellow]Unit {name} is no longer declared and would be stopped.[/yellow]")

        return 2 if reconcile_plan.has_drift else 0

    def up(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        state = None
        restore_sigterm = None

        try:
            logger.info("Starting bootgate for %s host (run %s)...", self.config.role, self.run_id)
            self.manifest_service.start_run(self.run_id, self.config.role)

            plan, reconcile_plan = self.reconcile()
            self.manifest_service.set_reconcile(reconcile_plan.as_dict())
            if reconcile_plan.has_drift:
                logger.info(
                    "Configuration drift: start=%s restart=%s stop=%s",
                    reconcile_plan.to_start,
                    reconcile_plan.to_restart,
                    reconcile_plan.to_stop,
                )
            state = self.state_service.record_plan(self.config.role, plan.fingerprints())

            self.supervisor = Supervisor(
                plan,
                launcher=self.launcher,
                logger=logger,
                console=console,
                journal=self.manifest_service,
            )
            restore_sigterm = self._install_sigterm_handler()
            exit_code = self.supervisor.run_forever()
            manifest_status = "success" if exit_code == 0 else "failed"
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold yellow]Stopping on request...[/bold yellow]")
            logger.info("Stop requested")
            manifest_status = "stopped"
            exit_code = 0 if self.supervisor is None else self.supervisor.exit_code()
            return exit_code
        except BootstrapError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            manifest_error = str(exc)
            exit_code = 1
            return exit_code
        finally:
            if self.supervisor is not None:
                self.supervisor.stop()
                if state is not None:
                    states = {
                        name: status.state.value
                        for name, status in self.supervisor.statuses().items()
                    }
                    try:
                        self.state_service.record_unit_states(state, states)
                    except BootstrapError as exc:
                        logger.warning(str(exc))
                failed = [
                    name
                    for name, status in self.supervisor.statuses().items()
                    if status.state in (UnitState.FATAL, UnitState.BLOCKED)
                ]
                if failed:
                    manifest_error = manifest_error or f"Failed units: {', '.join(failed)}"
            if restore_sigterm:
                restore_sigterm()
            self.manifest_service.finalize(manifest_status, error=manifest_error)

    def _install_sigterm_handler(self):
        if threading.current_thread() is not threading.main_thread():
            return None

        def _handle(_signum, _frame):
            raise KeyboardInterrupt

        previous = signal.signal(signal.SIGTERM, _handle)
        return lambda: signal.signal(signal.SIGTERM, previous)
