import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE
from .core import HostBootstrapper
from .errors import BootstrapError, ConfigurationFatal
from .models import HostConfig
from .services.config_loader import ConfigLoader
from .services.host_config import HostConfigBuilder
from .services.secrets import SecretStore

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _resolve_config_path(cli_value):
    if cli_value is not None:
        return cli_value
    default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
    if os.path.exists(default_config_path):
        return default_config_path
    return None


def load_host_config(config_path) -> HostConfig:
    resolved = _resolve_config_path(config_path)
    if not resolved:
        raise ConfigurationFatal(
            f"No configuration found. Pass --config or create ./{DEFAULT_CONFIG_FILE}."
        )

    raw = ConfigLoader().load(resolved)
    base_dir = os.path.dirname(os.path.abspath(resolved))
    builder = HostConfigBuilder(
        logger=logging.getLogger("bootgate"),
        secret_store=SecretStore(base_dir=base_dir),
    )
    return builder.build(raw)


def _bootstrapper(ctx: click.Context) -> HostBootstrapper:
    try:
        host_config = load_host_config(ctx.obj["config"])
        return HostBootstrapper(host_config)
    except BootstrapError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to the host YAML configuration. Defaults to ./{DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Bootstrap, migrate and supervise an api or frontend host."""
    logger = logging.getLogger("bootgate")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command("bootstrap-db")
@click.pass_context
def bootstrap_db(ctx):
    """Wait for the database, then ensure role, credential, ownership and grants."""
    raise SystemExit(_bootstrapper(ctx).run_bootstrap_db())


@main.group()
def migrate():
    """Schema migration commands."""


@migrate.command("deploy")
@click.pass_context
def migrate_deploy(ctx):
    """Apply pending schema migrations once; non-zero exit on failure."""
    raise SystemExit(_bootstrapper(ctx).run_migrate_deploy())


@main.command()
@click.pass_context
def serve(ctx):
    """Exec the application with its environment bindings."""
    bootstrapper = _bootstrapper(ctx)
    try:
        bootstrapper.serve()
    except BootstrapError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.pass_context
def up(ctx):
    """Run the full unit graph for this host and keep services alive."""
    raise SystemExit(_bootstrapper(ctx).up())


@main.command()
@click.pass_context
def plan(ctx):
    """Show the unit graph and what changed since the last `up`."""
    raise SystemExit(_bootstrapper(ctx).run_plan())


@main.command("wait-ready")
@click.option(
    "--target",
    type=click.Choice(["database", "app"]),
    default="database",
    show_default=True,
    help="Which endpoint to probe.",
)
@click.option("--max-attempts", type=int, default=None, help="Override probe.max_attempts.")
@click.option("--interval", type=float, default=None, help="Override probe.interval_seconds.")
@click.pass_context
def wait_ready(ctx, target, max_attempts, interval):
    """Block until the target accepts connections or the retry budget runs out."""
    raise SystemExit(
        _bootstrapper(ctx).run_wait_ready(target=target, max_attempts=max_attempts, interval=interval)
    )


if __name__ == "__main__":
    main()
