"""Shared domain models for bootgate."""

import enum
import hashlib
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Tuple
from urllib.parse import quote

from .constants import (
    DEFAULT_ADMIN_USER,
    DEFAULT_DB_SCHEMA,
    DEFAULT_PROBE_ATTEMPTS,
    DEFAULT_PROBE_INTERVAL,
    DEFAULT_RESTART_SEC,
    TRANSITION_HISTORY_LIMIT,
)


class ProbeResult(enum.Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


class StepOutcome(enum.Enum):
    APPLIED = "applied"
    ALREADY_SATISFIED = "already_satisfied"
    TOLERATED_FAILURE = "tolerated_failure"


class UnitKind(enum.Enum):
    ONESHOT = "oneshot"
    SERVICE = "service"


class RestartPolicy(enum.Enum):
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    NEVER = "never"


class UnitState(enum.Enum):
    PENDING = "pending"
    WAITING_ON_DEPENDENCIES = "waiting_on_dependencies"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FATAL = "fatal"
    EXITED = "exited"
    RESTART_SCHEDULED = "restart_scheduled"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class DatabaseTarget:
    """Connection coordinates and ownership expectations for the app database."""

    host: str
    port: int
    database: str
    shadow_database: str
    role: str
    credential: str = field(repr=False)
    schema: str = DEFAULT_DB_SCHEMA
    admin_user: str = DEFAULT_ADMIN_USER
    admin_host: Optional[str] = None

    @property
    def databases(self) -> Tuple[str, str]:
        return (self.database, self.shadow_database)

    def connection_url(self, database: str) -> str:
        return (
            f"postgresql://{quote(self.role, safe='')}:{quote(self.credential, safe='')}"
            f"@{self.host}:{self.port}/{database}?schema={self.schema}"
        )

    @property
    def primary_url(self) -> str:
        return self.connection_url(self.database)

    @property
    def shadow_url(self) -> str:
        return self.connection_url(self.shadow_database)


@dataclass(frozen=True)
class ProbeSettings:
    max_attempts: int = DEFAULT_PROBE_ATTEMPTS
    interval: float = DEFAULT_PROBE_INTERVAL


@dataclass(frozen=True)
class BootstrapStep:
    name: str
    outcome: StepOutcome
    detail: str = ""


@dataclass
class BootstrapReport:
    """Per-run record of what the bootstrap executor did."""

    role: str
    steps: List[BootstrapStep] = field(default_factory=list)

    def record(self, name: str, outcome: StepOutcome, detail: str = "") -> BootstrapStep:
        step = BootstrapStep(name=name, outcome=outcome, detail=detail)
        self.steps.append(step)
        return step

    def _with(self, outcome: StepOutcome) -> List[str]:
        return [step.name for step in self.steps if step.outcome is outcome]

    @property
    def applied(self) -> List[str]:
        return self._with(StepOutcome.APPLIED)

    @property
    def already_satisfied(self) -> List[str]:
        return self._with(StepOutcome.ALREADY_SATISFIED)

    @property
    def tolerated(self) -> List[str]:
        return self._with(StepOutcome.TOLERATED_FAILURE)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class UnitSpec:
    """One schedulable step or long-running process with explicit predecessors."""

    name: str
    kind: UnitKind
    command: Tuple[str, ...] = ()
    action: Optional[Callable[[], int]] = field(default=None, compare=False, repr=False)
    environment: Dict[str, str] = field(default_factory=dict, repr=False, hash=False)
    requires: Tuple[str, ...] = ()
    restart: RestartPolicy = RestartPolicy.NEVER
    restart_sec: float = DEFAULT_RESTART_SEC
    description: str = ""

    def fingerprint(self) -> str:
        # Environment values are hashed so secrets never reach the state file.
        payload = {
            "name": self.name,
            "kind": self.kind.value,
            "command": list(self.command),
            "action": getattr(self.action, "__qualname__", None) if self.action else None,
            "environment": {key: _digest(value) for key, value in self.environment.items()},
            "requires": list(self.requires),
            "restart": self.restart.value,
            "restart_sec": self.restart_sec,
        }
        return _digest(json.dumps(payload, sort_keys=True))


@dataclass
class UnitStatus:
    """Observed lifecycle of a unit inside one supervisor run."""

    name: str
    state: UnitState = UnitState.PENDING
    started_at: Optional[float] = None
    released_at: Optional[float] = None
    settled_at: Optional[float] = None
    exit_code: Optional[int] = None
    restarts: int = 0
    error: Optional[str] = None
    transitions: int = 0
    history: Deque[Tuple[UnitState, float]] = field(
        default_factory=lambda: deque(maxlen=TRANSITION_HISTORY_LIMIT)
    )


@dataclass(frozen=True)
class HostPlan:
    """Desired unit graph for one host role."""

    role: str
    units: Tuple[UnitSpec, ...]

    def unit(self, name: str) -> UnitSpec:
        for unit in self.units:
            if unit.name == name:
                return unit
        raise KeyError(name)

    def fingerprints(self) -> Dict[str, str]:
        return {unit.name: unit.fingerprint() for unit in self.units}


@dataclass(frozen=True)
class AppConfig:
    name: str
    command: Tuple[str, ...]
    host: str
    port: int
    restart: RestartPolicy
    restart_sec: float
    environment: Dict[str, str] = field(default_factory=dict, repr=False, hash=False)
    health_path: str = "/"


@dataclass(frozen=True)
class MigrationConfig:
    command: Tuple[str, ...]
    timeout_minutes: Optional[float] = None


@dataclass(frozen=True)
class HostConfig:
    """Immutable configuration value for one reconciliation run."""

    role: str
    app: AppConfig
    probe: ProbeSettings
    migrations: MigrationConfig
    database: Optional[DatabaseTarget] = None
    strict_ownership: bool = False
    min_server_version: Optional[str] = None
    state_file: Optional[str] = None
    manifest_file: Optional[str] = None
