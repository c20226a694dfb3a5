"""Idempotent database role, ownership and schema bootstrap."""

from typing import Callable, Optional

from packaging import version

from bootgate.errors import ConfigurationFatal, ExternalToolFailure
from bootgate.errors_catalog import actionable_error
from bootgate.models import BootstrapReport, DatabaseTarget, StepOutcome
from bootgate.services.database import DatabaseService


class BootstrapExecutor:
    """Ensures the login role exists, has the configured credential and owns its databases.

    Every step reads the live catalog first, so running the executor any number
    of times converges on the same end state. Role, credential, database
    creation and grant failures are fatal. Ownership reassignment failures are
    tolerated because in steady state they almost always mean the owner is
    already correct; the live owner is re-read afterwards to confirm.
    """

    def __init__(
        self,
        run_cmd: Callable,
        logger,
        console,
        strict_ownership: bool = False,
        min_server_version: Optional[str] = None,
        database_service_factory=DatabaseService,
    ):
        self.run_cmd = run_cmd
        self.logger = logger
        self.console = console
        self.strict_ownership = strict_ownership
        self.min_server_version = min_server_version
        self.database_service_factory = database_service_factory

    def ensure_role(self, target: DatabaseTarget) -> BootstrapReport:
        self.console.print(f"[blue]Bootstrapping database role '{target.role}'...[/blue]")
        self.logger.info(
            "Bootstrapping role '%s' for databases %s", target.role, ", ".join(target.databases)
        )

        db = self.database_service_factory(target, self.run_cmd, self.logger)
        report = BootstrapReport(role=target.role)

        if self.min_server_version:
            self._check_server_version(db, report)

        self._ensure_role_exists(db, target, report)
        self._ensure_credential(db, target, report)

        for database in target.databases:
            self._ensure_database_exists(db, target, database, report)

        for database in target.databases:
            self._ensure_owner(
                report,
                step=f"owner:{database}",
                object_type="Database",
                object_name=database,
                role=target.role,
                read_owner=lambda name=database: db.database_owner(name),
                set_owner=lambda name=database: db.set_database_owner(name, target.role),
            )

        for database in target.databases:
            self._grant_schema(db, target, database, report)
            self._ensure_owner(
                report,
                step=f"schema_owner:{database}",
                object_type="Schema",
                object_name=f"{database}.{target.schema}",
                role=target.role,
                read_owner=lambda name=database: db.schema_owner(name, target.schema),
                set_owner=lambda name=database: db.set_schema_owner(
                    name, target.schema, target.role
                ),
            )

        self.logger.info(
            "Bootstrap complete for '%s': applied=%s satisfied=%s tolerated=%s",
            target.role,
            report.applied,
            report.already_satisfied,
            report.tolerated,
        )
        self.console.print(f"[green]Database role '{target.role}' is bootstrapped.[/green]")
        return report

    def _check_server_version(self, db: DatabaseService, report: BootstrapReport):
        try:
            found = db.server_version()
        except ExternalToolFailure as exc:
            raise ConfigurationFatal(f"Could not read PostgreSQL server version: {exc}") from exc

        try:
            too_old = version.parse(found) < version.parse(self.min_server_version)
        except version.InvalidVersion as exc:
            raise ConfigurationFatal(
                f"Unrecognised PostgreSQL server version '{found}'."
            ) from exc

        if too_old:
            raise ConfigurationFatal(
                actionable_error("server_too_old", found=found, required=self.min_server_version)
            )
        report.record("server_version", StepOutcome.ALREADY_SATISFIED, found)

    def _ensure_role_exists(self, db: DatabaseService, target: DatabaseTarget, report):
        try:
            if db.role_exists(target.role):
                self.logger.debug("Role '%s' already exists.", target.role)
                report.record("role", StepOutcome.ALREADY_SATISFIED)
                return
            db.create_role(target.role)
        except ExternalToolFailure as exc:
            raise ConfigurationFatal(
                f"{actionable_error('role_create_failed', role=target.role)}\n{exc}"
            ) from exc

        self.logger.info("Created login role '%s'.", target.role)
        report.record("role", StepOutcome.APPLIED)

    def _ensure_credential(self, db: DatabaseService, target: DatabaseTarget, report):
        # Always reset: the configured secret may have been rotated.
        try:
            db.set_password(target.role, target.credential)
        except ExternalToolFailure as exc:
            raise ConfigurationFatal(
                f"{actionable_error('role_password_failed', role=target.role)}\n{exc}"
            ) from exc
        self.logger.info("Credential for role '%s' set.", target.role)
        report.record("credential", StepOutcome.APPLIED)

    def _ensure_database_exists(self, db: DatabaseService, target: DatabaseTarget, database, report):
        step = f"database:{database}"
        try:
            if db.database_exists(database):
                report.record(step, StepOutcome.ALREADY_SATISFIED)
                return
            db.create_database(database, target.role)
        except ExternalToolFailure as exc:
            raise ConfigurationFatal(
                f"{actionable_error('database_create_failed', database=database)}\n{exc}"
            ) from exc

        self.logger.info("Created database '%s' owned by '%s'.", database, target.role)
        report.record(step, StepOutcome.APPLIED)

    def _grant_schema(self, db: DatabaseService, target: DatabaseTarget, database, report):
        try:
            db.grant_schema(database, target.schema, target.role)
        except ExternalToolFailure as exc:
            message = actionable_error(
                "schema_grant_failed", database=database, schema=target.schema, role=target.role
            )
            raise ConfigurationFatal(f"{message}\n{exc}") from exc
        report.record(f"grant:{database}", StepOutcome.APPLIED)

    def _read_owner(self, read_owner: Callable[[], str], object_name: str) -> Optional[str]:
        try:
            return read_owner()
        except ExternalToolFailure as exc:
            self.logger.debug("Could not read owner of %s: %s", object_name, exc)
            return None

    def _ensure_owner(
        self,
        report: BootstrapReport,
        step: str,
        object_type: str,
        object_name: str,
        role: str,
        read_owner: Callable[[], str],
        set_owner: Callable[[], None],
    ):
        if self._read_owner(read_owner, object_name) == role:
            report.record(step, StepOutcome.ALREADY_SATISFIED)
            return

        try:
            set_owner()
        except ExternalToolFailure as exc:
            self.logger.warning(
                "Ownership change for %s '%s' failed; continuing: %s",
                object_type.lower(),
                object_name,
                exc,
            )
            owner = self._read_owner(read_owner, object_name)
            if owner == role:
                report.record(step, StepOutcome.ALREADY_SATISFIED)
                return

            message = actionable_error(
                "ownership_mismatch",
                object_type=object_type,
                object_name=object_name,
                owner=owner or "<unknown>",
                role=role,
            )
            if self.strict_ownership:
                raise ConfigurationFatal(message) from exc
            self.logger.warning(message)
            report.record(step, StepOutcome.TOLERATED_FAILURE, str(exc))
            return

        self.logger.info("%s '%s' now owned by '%s'.", object_type, object_name, role)
        report.record(step, StepOutcome.APPLIED)
