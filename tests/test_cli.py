from click.testing import CliRunner

import bootgate.cli as cli_module
from bootgate.errors import ExternalToolFailure

API_CONFIG = """\
role: api
secrets:
  db_password:
    file: secrets/db-password
app:
  command: node dist/server.js
  port: 4000
database:
  name: gradedescent
  shadow_name: gradedescent_shadow
  role: gradedescent
  password_secret: db_password
probe:
  max_attempts: 5
  interval_seconds: 0.5
"""


def _write_api_config(directory, name="bootgate.yml"):
    (directory / "secrets").mkdir(exist_ok=True)
    (directory / "secrets" / "db-password").write_text("from-file\n", encoding="utf-8")
    config_file = directory / name
    config_file.write_text(API_CONFIG, encoding="utf-8")
    return config_file


def _fake_bootstrapper(captured, **results):
    class FakeBootstrapper:
        def __init__(self, config):
            captured["config"] = config

        def run_bootstrap_db(self):
            return results.get("bootstrap_db", 0)

        def run_migrate_deploy(self):
            return results.get("migrate", 0)

        def up(self):
            return results.get("up", 0)

        def run_plan(self):
            return results.get("plan", 0)

        def run_wait_ready(self, **kwargs):
            captured["wait_ready"] = kwargs
            return results.get("wait_ready", 0)

        def serve(self):
            if "serve_error" in results:
                raise results["serve_error"]

    return FakeBootstrapper


def test_cli_loads_config_and_secret_files(tmp_path, monkeypatch):
    config_file = _write_api_config(tmp_path)
    captured = {}
    monkeypatch.setattr(cli_module, "HostBootstrapper", _fake_bootstrapper(captured))

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "bootstrap-db"])

    assert result.exit_code == 0, result.output
    config = captured["config"]
    assert config.role == "api"
    assert config.database.credential == "from-file"
    assert config.app.port == 4000
    assert config.probe.max_attempts == 5
    assert config.probe.interval == 0.5


def test_cli_uses_default_config_file_when_present(tmp_path, monkeypatch):
    _write_api_config(tmp_path)
    captured = {}
    monkeypatch.setattr(cli_module, "HostBootstrapper", _fake_bootstrapper(captured, plan=2))
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["plan"])

    assert result.exit_code == 2
    assert captured["config"].database.database == "gradedescent"


def test_cli_requires_a_configuration(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, ["up"])

    assert result.exit_code == 1
    assert "No configuration found" in result.output


def test_cli_reports_invalid_configuration(tmp_path):
    config_file = tmp_path / "bootgate.yml"
    config_file.write_text("role: api\nunexpected: 1\n", encoding="utf-8")

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "up"])

    assert result.exit_code == 1
    assert "Unknown configuration keys: unexpected" in result.output


def test_cli_migrate_deploy_propagates_failure(tmp_path, monkeypatch):
    config_file = _write_api_config(tmp_path)
    monkeypatch.setattr(cli_module, "HostBootstrapper", _fake_bootstrapper({}, migrate=1))

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "migrate", "deploy"])

    assert result.exit_code == 1


def test_cli_wait_ready_passes_overrides(tmp_path, monkeypatch):
    config_file = _write_api_config(tmp_path)
    captured = {}
    monkeypatch.setattr(cli_module, "HostBootstrapper", _fake_bootstrapper(captured))

    result = CliRunner().invoke(
        cli_module.main,
        [
            "--config",
            str(config_file),
            "wait-ready",
            "--target",
            "app",
            "--max-attempts",
            "60",
        ],
    )

    assert result.exit_code == 0
    assert captured["wait_ready"] == {"target": "app", "max_attempts": 60, "interval": None}


def test_cli_serve_reports_exec_failure(tmp_path, monkeypatch):
    config_file = _write_api_config(tmp_path)
    error = ExternalToolFailure("Could not exec application 'node'")
    monkeypatch.setattr(cli_module, "HostBootstrapper", _fake_bootstrapper({}, serve_error=error))

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "serve"])

    assert result.exit_code == 1
    assert "Could not exec application" in result.output


def test_cli_writes_log_file(tmp_path, monkeypatch):
    config_file = _write_api_config(tmp_path)
    log_file = tmp_path / "bootgate.log"
    monkeypatch.setattr(cli_module, "HostBootstrapper", _fake_bootstrapper({}))

    result = CliRunner().invoke(
        cli_module.main,
        ["--config", str(config_file), "--verbose", "--log-file", str(log_file), "up"],
    )

    assert result.exit_code == 0
    assert log_file.exists()
