"""PostgreSQL administration helpers built on ``psql``."""

import subprocess
from typing import Callable, List, Optional

from bootgate.errors import ExternalToolFailure
from bootgate.models import DatabaseTarget

MAINTENANCE_DATABASE = "postgres"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    escaped = value.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return f"'{escaped}'"


class DatabaseService:
    """Runs administrative queries as the database superuser.

    Each instance is bound to one target and shells out to ``psql`` for every
    call, so no connection outlives a single statement.
    """

    def __init__(self, target: DatabaseTarget, run_cmd: Callable, logger):
        self.target = target
        self.run_cmd = run_cmd
        self.logger = logger

    def _psql_cmd(self, database: Optional[str]) -> List[str]:
        cmd = ["psql", "-X", "-q", "-v", "ON_ERROR_STOP=1", "-U", self.target.admin_user]
        if self.target.admin_host:
            cmd += ["-h", self.target.admin_host, "-p", str(self.target.port)]
        cmd += ["-d", database or MAINTENANCE_DATABASE]
        return cmd

    def query_value(self, sql: str, database: Optional[str] = None) -> str:
        result = self.run_cmd(
            self._psql_cmd(database) + ["-t", "-A", "-c", sql],
            check=True,
            capture_output=True,
        )
        for line in (result.stdout or "").splitlines():
            cleaned = line.strip()
            if cleaned:
                return cleaned
        return ""

    def execute(self, sql: str, database: Optional[str] = None) -> subprocess.CompletedProcess:
        # SQL travels on stdin so literals such as passwords stay out of argv.
        return self.run_cmd(
            self._psql_cmd(database),
            check=True,
            capture_output=True,
            input_text=sql,
        )

    def server_version(self) -> str:
        raw = self.query_value("SHOW server_version;")
        return raw.split()[0] if raw else ""

    def role_exists(self, role: str) -> bool:
        sql = f"SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = {quote_literal(role)};"
        return self.query_value(sql) == "1"

    def database_exists(self, database: str) -> bool:
        sql = f"SELECT 1 FROM pg_catalog.pg_database WHERE datname = {quote_literal(database)};"
        return self.query_value(sql) == "1"

    def database_owner(self, database: str) -> str:
        sql = (
            "SELECT pg_catalog.pg_get_userbyid(datdba) FROM pg_catalog.pg_database "
            f"WHERE datname = {quote_literal(database)};"
        )
        return self.query_value(sql)

    def schema_owner(self, database: str, schema: str) -> str:
        sql = (
            "SELECT pg_catalog.pg_get_userbyid(nspowner) FROM pg_catalog.pg_namespace "
            f"WHERE nspname = {quote_literal(schema)};"
        )
        return self.query_value(sql, database=database)

    def create_role(self, role: str):
        self.execute(f"CREATE ROLE {quote_ident(role)} LOGIN;")

    def set_password(self, role: str, credential: str):
        try:
            self.execute(
                f"ALTER ROLE {quote_ident(role)} WITH LOGIN PASSWORD {quote_literal(credential)};"
            )
        except ExternalToolFailure:
            # psql echoes the failing statement, literal included.
            raise ExternalToolFailure(
                f"Setting the password for role '{role}' failed; psql output withheld."
            ) from None

    def create_database(self, database: str, owner: str):
        self.execute(f"CREATE DATABASE {quote_ident(database)} OWNER {quote_ident(owner)};")

    def set_database_owner(self, database: str, owner: str):
        self.execute(f"ALTER DATABASE {quote_ident(database)} OWNER TO {quote_ident(owner)};")

    def grant_schema(self, database: str, schema: str, role: str):
        self.execute(
            f"GRANT USAGE, CREATE ON SCHEMA {quote_ident(schema)} TO {quote_ident(role)};",
            database=database,
        )

    def set_schema_owner(self, database: str, schema: str, owner: str):
        self.execute(
            f"ALTER SCHEMA {quote_ident(schema)} OWNER TO {quote_ident(owner)};",
            database=database,
        )
