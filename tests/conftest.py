import re
import subprocess

import pytest

from bootgate.errors import ExternalToolFailure


def _unquote_literal(raw: str) -> str:
    if raw.startswith("E'"):
        return raw[2:-1].replace("''", "'").replace("\\\\", "\\")
    return raw[1:-1].replace("''", "'")


class FakeCluster:
    """In-memory PostgreSQL catalog that answers the psql calls bootgate issues."""

    def __init__(self, version: str = "16.2 (Debian 16.2-1)"):
        self.up = True
        self.version = version
        self.roles = {"postgres": None}
        self.databases = {"postgres": "postgres"}
        self.schema_owners = {}
        self.grants = set()
        self.statements = []
        self.fail_database_owner = False
        self.fail_schema_owner = False
        self.fail_grants = False
        self.fail_create_role = False
        self.fail_set_password = False
        self.pg_isready_calls = 0

    def _ok(self, cmd, stdout=""):
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    def _error(self, cmd, message):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr=f"ERROR:  {message}")

    def run_cmd(self, cmd, check=True, capture_output=False, input_text=None, **_kwargs):
        result = self._dispatch(cmd, input_text)
        if check and result.returncode != 0:
            raise ExternalToolFailure(f"Command failed ({result.returncode}): {' '.join(cmd)}\n{result.stderr}")
        return result

    def _dispatch(self, cmd, input_text):
        if cmd[0] == "pg_isready":
            self.pg_isready_calls += 1
            return subprocess.CompletedProcess(cmd, 0 if self.up else 2, stdout="", stderr="")

        assert cmd[0] == "psql"
        if not self.up:
            return self._error(cmd, "could not connect to server")

        database = cmd[cmd.index("-d") + 1]
        sql = cmd[cmd.index("-c") + 1] if "-c" in cmd else input_text
        self.statements.append((database, sql))
        return self._execute(cmd, database, sql.strip())

    def _execute(self, cmd, database, sql):
        if sql.startswith("SHOW server_version"):
            return self._ok(cmd, f"{self.version}\n")

        match = re.search(r"pg_roles WHERE rolname = (.+);$", sql)
        if match:
            return self._ok(cmd, "1\n" if _unquote_literal(match.group(1)) in self.roles else "")

        match = re.search(r"datdba\) FROM pg_catalog\.pg_database WHERE datname = (.+);$", sql)
        if match:
            return self._ok(cmd, f"{self.databases.get(_unquote_literal(match.group(1)), '')}\n")

        match = re.search(r"pg_database WHERE datname = (.+);$", sql)
        if match:
            return self._ok(cmd, "1\n" if _unquote_literal(match.group(1)) in self.databases else "")

        match = re.search(r"nspowner\) FROM pg_catalog\.pg_namespace WHERE nspname = (.+);$", sql)
        if match:
            owner = self.schema_owners.get((database, _unquote_literal(match.group(1))), "")
            return self._ok(cmd, f"{owner}\n")

        match = re.match(r'CREATE ROLE "(.+)" LOGIN;$', sql)
        if match:
            if self.fail_create_role:
                return self._error(cmd, "permission denied to create role")
            if match.group(1) in self.roles:
                return self._error(cmd, f'role "{match.group(1)}" already exists')
            self.roles[match.group(1)] = None
            return self._ok(cmd)

        match = re.match(r'ALTER ROLE "(.+)" WITH LOGIN PASSWORD (.+);$', sql)
        if match:
            if self.fail_set_password:
                # psql repeats the offending statement under the error.
                return self._error(cmd, f"password is too weak\nLINE 1: {sql}")
            if match.group(1) not in self.roles:
                return self._error(cmd, f'role "{match.group(1)}" does not exist')
            self.roles[match.group(1)] = _unquote_literal(match.group(2))
            return self._ok(cmd)

        match = re.match(r'CREATE DATABASE "(.+)" OWNER "(.+)";$', sql)
        if match:
            name, owner = match.groups()
            if name in self.databases:
                return self._error(cmd, f'database "{name}" already exists')
            self.databases[name] = owner
            self.schema_owners[(name, "public")] = "pg_database_owner"
            return self._ok(cmd)

        match = re.match(r'ALTER DATABASE "(.+)" OWNER TO "(.+)";$', sql)
        if match:
            if self.fail_database_owner:
                return self._error(cmd, "must be able to SET ROLE")
            self.databases[match.group(1)] = match.group(2)
            return self._ok(cmd)

        match = re.match(r'GRANT USAGE, CREATE ON SCHEMA "(.+)" TO "(.+)";$', sql)
        if match:
            if self.fail_grants:
                return self._error(cmd, f'schema "{match.group(1)}" does not exist')
            self.grants.add((database, match.group(1), match.group(2)))
            return self._ok(cmd)

        match = re.match(r'ALTER SCHEMA "(.+)" OWNER TO "(.+)";$', sql)
        if match:
            if self.fail_schema_owner:
                return self._error(cmd, "must be owner of schema")
            self.schema_owners[(database, match.group(1))] = match.group(2)
            return self._ok(cmd)

        raise AssertionError(f"Unexpected SQL: {sql}")

    def snapshot(self):
        return (
            dict(self.roles),
            dict(self.databases),
            dict(self.schema_owners),
            set(self.grants),
        )

    def count(self, prefix):
        return sum(1 for _db, sql in self.statements if sql.strip().startswith(prefix))


@pytest.fixture
def fake_cluster():
    return FakeCluster()
