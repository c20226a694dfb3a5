"""Host role unit graphs."""

from typing import Callable, Dict, Mapping, Optional

from bootgate.constants import ROLE_API, UNIT_DB_INIT, UNIT_DB_READY, UNIT_MIGRATE
from bootgate.errors import ConfigurationFatal
from bootgate.models import HostConfig, HostPlan, RestartPolicy, UnitKind, UnitSpec


def application_environment(config: HostConfig) -> Dict[str, str]:
    """Environment bindings the application process reads its settings from."""
    env = dict(config.app.environment)
    if config.database is not None:
        env["DATABASE_URL"] = config.database.primary_url
        env["SHADOW_DATABASE_URL"] = config.database.shadow_url
    return env


def application_unit(config: HostConfig, requires=()) -> UnitSpec:
    return UnitSpec(
        name=config.app.name,
        kind=UnitKind.SERVICE,
        command=config.app.command,
        environment=application_environment(config),
        requires=tuple(requires),
        restart=config.app.restart,
        restart_sec=config.app.restart_sec,
        description=f"{config.role} application on {config.app.host}:{config.app.port}",
    )


def build_host_plan(
    config: HostConfig, steps: Optional[Mapping[str, Callable[[], int]]] = None
) -> HostPlan:
    """Builds the desired unit graph for the configured host role.

    The api role gates the application behind readiness, bootstrap and
    migration oneshot units; ``steps`` supplies their in-process actions.
    """
    if config.role != ROLE_API:
        return HostPlan(role=config.role, units=(application_unit(config),))

    steps = steps or {}
    missing = [name for name in (UNIT_DB_READY, UNIT_DB_INIT, UNIT_MIGRATE) if name not in steps]
    if missing:
        raise ConfigurationFatal(f"No action provided for unit(s): {', '.join(missing)}")

    units = (
        UnitSpec(
            name=UNIT_DB_READY,
            kind=UnitKind.ONESHOT,
            action=steps[UNIT_DB_READY],
            restart=RestartPolicy.NEVER,
            description="Wait for the database listener",
        ),
        UnitSpec(
            name=UNIT_DB_INIT,
            kind=UnitKind.ONESHOT,
            action=steps[UNIT_DB_INIT],
            requires=(UNIT_DB_READY,),
            restart=RestartPolicy.NEVER,
            description="Ensure database role, ownership and schema grants",
        ),
        UnitSpec(
            name=UNIT_MIGRATE,
            kind=UnitKind.ONESHOT,
            action=steps[UNIT_MIGRATE],
            requires=(UNIT_DB_INIT,),
            restart=RestartPolicy.NEVER,
            description="Apply pending schema migrations",
        ),
        application_unit(config, requires=(UNIT_MIGRATE,)),
    )
    return HostPlan(role=config.role, units=units)
