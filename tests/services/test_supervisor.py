import threading
import time

import pytest

from bootgate.constants import TRANSITION_HISTORY_LIMIT
from bootgate.errors import ExternalToolFailure, TransientUnavailable
from bootgate.models import HostPlan, RestartPolicy, UnitKind, UnitSpec, UnitState
from bootgate.services.supervisor import Supervisor


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None

    def exception(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class RecordingJournal:
    def __init__(self):
        self.transitions = []
        self._lock = threading.Lock()

    def unit_transition(self, name, state, error=None):
        with self._lock:
            self.transitions.append((name, state, error))


class FakeHandle:
    def __init__(self, exit_code=None):
        self.exit_code = exit_code
        self.done = threading.Event()
        if exit_code is not None:
            self.done.set()

    def wait(self):
        self.done.wait()
        return self.exit_code

    def terminate(self):
        if not self.done.is_set():
            self.exit_code = -15
            self.done.set()


class FakeLauncher:
    """Hands out scripted exit codes per unit; ``None`` runs until terminated."""

    def __init__(self, scripts=None, failures=()):
        self.scripts = {name: list(codes) for name, codes in (scripts or {}).items()}
        self.failures = set(failures)
        self.started = []
        self._lock = threading.Lock()

    def start(self, unit):
        with self._lock:
            self.started.append(unit.name)
            if unit.name in self.failures:
                raise ExternalToolFailure(f"Required command not found: {unit.command[0]}")
            codes = self.scripts.get(unit.name) or [None]
            code = codes.pop(0) if len(codes) > 1 else codes[0]
        return FakeHandle(code)


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _oneshot(name, action, *requires):
    return UnitSpec(name=name, kind=UnitKind.ONESHOT, action=action, requires=tuple(requires))


def _service(name, *requires, restart=RestartPolicy.ALWAYS, restart_sec=0.01):
    return UnitSpec(
        name=name,
        kind=UnitKind.SERVICE,
        command=("node", "server.js"),
        requires=tuple(requires),
        restart=restart,
        restart_sec=restart_sec,
    )


def _supervisor(units, launcher=None, journal=None):
    return Supervisor(
        HostPlan(role="api", units=tuple(units)),
        launcher=launcher or FakeLauncher(),
        logger=DummyLogger(),
        console=DummyConsole(),
        journal=journal,
    )


def _api_units(migrate_action=lambda: 0):
    return [
        _service("api", "migrate"),
        _oneshot("migrate", migrate_action, "db-init"),
        _oneshot("db-init", lambda: 0, "db-ready"),
        _oneshot("db-ready", lambda: 0),
    ]


def test_units_start_only_after_predecessors_are_released():
    journal = RecordingJournal()
    supervisor = _supervisor(_api_units(), journal=journal)

    supervisor.start()
    try:
        assert supervisor.wait_settled(timeout=5)
        statuses = supervisor.statuses()
        chain = ["db-ready", "db-init", "migrate", "api"]
        for before, after in zip(chain, chain[1:]):
            assert statuses[after].started_at >= statuses[before].released_at
        assert statuses["migrate"].state is UnitState.SUCCEEDED
        assert statuses["api"].state is UnitState.RUNNING
        assert supervisor.exit_code() == 0
        assert ("db-ready", "succeeded", None) in journal.transitions
    finally:
        supervisor.stop(timeout=5)

    assert supervisor.status("api").state is UnitState.EXITED


def test_failed_oneshot_blocks_every_dependent():
    def failing_migration():
        raise ExternalToolFailure("Schema migration exited with code 1.")

    launcher = FakeLauncher()
    supervisor = _supervisor(_api_units(failing_migration), launcher=launcher)

    assert supervisor.run_forever() == 1

    assert supervisor.status("migrate").state is UnitState.FATAL
    assert "exited with code 1" in supervisor.status("migrate").error
    api = supervisor.status("api")
    assert api.state is UnitState.BLOCKED
    assert api.started_at is None
    assert "migrate" in api.error
    assert launcher.started == []


def test_readiness_timeout_blocks_the_whole_chain():
    def never_ready():
        raise TransientUnavailable("Database at 127.0.0.1:5432 did not accept connections")

    units = _api_units()
    units[-1] = _oneshot("db-ready", never_ready)
    supervisor = _supervisor(units)

    assert supervisor.run_forever() == 1
    states = {name: status.state for name, status in supervisor.statuses().items()}
    assert states == {
        "db-ready": UnitState.FATAL,
        "db-init": UnitState.BLOCKED,
        "migrate": UnitState.BLOCKED,
        "api": UnitState.BLOCKED,
    }


def test_oneshot_non_zero_exit_code_is_fatal():
    supervisor = _supervisor([_oneshot("db-init", lambda: 3)])

    assert supervisor.run_forever() == 1
    status = supervisor.status("db-init")
    assert status.state is UnitState.FATAL
    assert status.exit_code == 3


def test_always_policy_restarts_crashed_service_until_stopped():
    launcher = FakeLauncher(scripts={"frontend": [1, 0, None]})
    supervisor = _supervisor([_service("frontend")], launcher=launcher)

    supervisor.start()
    try:
        assert _wait_until(lambda: supervisor.status("frontend").restarts == 2)
        assert _wait_until(lambda: supervisor.status("frontend").state is UnitState.RUNNING)
    finally:
        supervisor.stop(timeout=5)

    status = supervisor.status("frontend")
    history = [state for state, _at in status.history]
    assert history.count(UnitState.RESTART_SCHEDULED) == 2
    assert status.state is UnitState.EXITED
    assert launcher.started == ["frontend", "frontend", "frontend"]
    assert supervisor.exit_code() == 0


def test_on_failure_policy_does_not_restart_clean_exit():
    launcher = FakeLauncher(scripts={"worker": [0]})
    supervisor = _supervisor(
        [_service("worker", restart=RestartPolicy.ON_FAILURE)], launcher=launcher
    )

    assert supervisor.run_forever() == 0
    assert supervisor.status("worker").state is UnitState.EXITED
    assert launcher.started == ["worker"]


def test_never_policy_service_failure_is_fatal():
    launcher = FakeLauncher(scripts={"worker": [2]})
    supervisor = _supervisor([_service("worker", restart=RestartPolicy.NEVER)], launcher=launcher)

    assert supervisor.run_forever() == 1
    status = supervisor.status("worker")
    assert status.state is UnitState.FATAL
    assert status.exit_code == 2


def test_launch_failure_of_predecessor_blocks_dependents():
    launcher = FakeLauncher(failures={"backend"})
    supervisor = _supervisor(
        [
            _service("backend", restart=RestartPolicy.NEVER),
            _service("frontend", "backend"),
        ],
        launcher=launcher,
    )

    assert supervisor.run_forever() == 1
    assert supervisor.status("backend").state is UnitState.FATAL
    assert "Required command not found" in supervisor.status("backend").error
    assert supervisor.status("frontend").state is UnitState.BLOCKED
    assert launcher.started == ["backend"]


def test_stop_while_waiting_leaves_dependents_unstarted():
    gate = threading.Event()

    def slow_ready():
        gate.wait(5)
        return 0

    launcher = FakeLauncher()
    supervisor = _supervisor(
        [_oneshot("db-ready", slow_ready), _service("api", "db-ready")], launcher=launcher
    )

    supervisor.start()
    assert _wait_until(lambda: supervisor.status("db-ready").state is UnitState.RUNNING)
    release = threading.Timer(0.1, gate.set)
    release.start()
    supervisor.stop(timeout=5)
    release.join()

    assert supervisor.join(timeout=5)
    assert supervisor.status("api").started_at is None
    assert launcher.started == []


class GatedLauncher:
    """Blocks inside ``start`` until the test opens the gate."""

    def __init__(self):
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.handles = []

    def start(self, unit):
        self.entered.set()
        self.gate.wait(5)
        handle = FakeHandle()
        self.handles.append(handle)
        return handle


@pytest.mark.parametrize(
    "unit",
    [
        _service("frontend"),
        UnitSpec(name="frontend", kind=UnitKind.ONESHOT, command=("node", "seed.js")),
    ],
    ids=["service", "oneshot"],
)
def test_unit_started_after_stop_is_terminated(unit):
    launcher = GatedLauncher()
    supervisor = _supervisor([unit], launcher=launcher)

    supervisor.start()
    assert launcher.entered.wait(5)
    supervisor.stop(timeout=0.05)
    launcher.gate.set()

    assert supervisor.join(timeout=5)
    assert len(launcher.handles) == 1
    assert launcher.handles[0].exit_code == -15
    status = supervisor.status("frontend")
    assert status.state is UnitState.EXITED
    assert status.released_at is None
    assert supervisor.exit_code() == 0


def test_crash_looping_service_keeps_bounded_history():
    launcher = FakeLauncher(scripts={"frontend": [1]})
    supervisor = _supervisor([_service("frontend", restart_sec=0.0)], launcher=launcher)

    supervisor.start()
    try:
        assert _wait_until(
            lambda: supervisor.status("frontend").restarts > TRANSITION_HISTORY_LIMIT
        )
    finally:
        supervisor.stop(timeout=5)

    status = supervisor.status("frontend")
    assert len(status.history) == TRANSITION_HISTORY_LIMIT
    assert status.transitions > 3 * TRANSITION_HISTORY_LIMIT
    assert status.history[-1][0] is status.state
