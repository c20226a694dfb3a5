"""Dependency-ordered unit supervision for bootgate."""

import threading
import time
from collections import deque
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from bootgate.constants import TRANSITION_HISTORY_LIMIT
from bootgate.errors import BootstrapError
from bootgate.models import HostPlan, RestartPolicy, UnitKind, UnitSpec, UnitState, UnitStatus
from bootgate.services.graph import DependencyGraph

FAILED_STATES = (UnitState.FATAL, UnitState.BLOCKED)
POLL_SECONDS = 0.1


class Supervisor:
    """Runs one thread per unit and releases dependents only on predecessor success.

    A unit settles exactly once: when it is released (a oneshot unit succeeded
    or a service first reached ``RUNNING``) or when it fails (``FATAL`` or
    ``BLOCKED``). Dependents wait on every predecessor's settle event and start
    only if all of them were released; otherwise they become ``BLOCKED`` and
    never start.
    """

    def __init__(
        self,
        plan: HostPlan,
        launcher,
        logger,
        console,
        journal=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.plan = plan
        self.graph = DependencyGraph(plan.units)
        self.launcher = launcher
        self.logger = logger
        self.console = console
        self.journal = journal
        self.clock = clock

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._handles: Dict[str, object] = {}
        self._settled = {name: threading.Event() for name in self.graph.startup_order()}
        self._statuses: Dict[str, UnitStatus] = {}
        now = self.clock()
        for name in self.graph.startup_order():
            status = UnitStatus(name=name)
            status.history.append((UnitState.PENDING, now))
            self._statuses[name] = status

    def start(self):
        if self._threads:
            return
        self.logger.info("Starting units in order: %s", ", ".join(self.graph.startup_order()))
        for name in self.graph.startup_order():
            thread = threading.Thread(target=self._run_unit, args=(name,), name=f"unit-{name}")
            thread.daemon = True
            self._threads.append(thread)
            thread.start()

    def wait_settled(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else self.clock() + timeout
        for event in self._settled.values():
            remaining = None if deadline is None else max(0.0, deadline - self.clock())
            if not event.wait(remaining):
                return False
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else self.clock() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - self.clock())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in self._threads)

    def run_forever(self) -> int:
        """Blocks until every unit thread ends or ``stop`` is called."""
        self.start()
        while not self._stop.is_set():
            if not any(thread.is_alive() for thread in self._threads):
                break
            self._stop.wait(0.5)
        return self.exit_code()

    def stop(self, timeout: float = 15.0):
        if not self._stop.is_set():
            self.logger.info("Stopping supervised units...")
        self._stop.set()
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            handle.terminate()
        self.join(timeout)

    def status(self, name: str) -> UnitStatus:
        with self._lock:
            status = self._statuses[name]
            return replace(
                status, history=deque(status.history, maxlen=TRANSITION_HISTORY_LIMIT)
            )

    def statuses(self) -> Dict[str, UnitStatus]:
        return {name: self.status(name) for name in self.graph.startup_order()}

    def exit_code(self) -> int:
        with self._lock:
            failed = [s for s in self._statuses.values() if s.state in FAILED_STATES]
        return 1 if failed else 0

    def _transition(self, name: str, state: UnitState, **changes) -> float:
        with self._lock:
            status = self._statuses[name]
            now = self.clock()
            status.state = state
            status.transitions += 1
            status.history.append((state, now))
            if state is UnitState.RUNNING and status.started_at is None:
                status.started_at = now
            for key, value in changes.items():
                setattr(status, key, value)

        self.logger.info("Unit %s -> %s", name, state.value)
        if self.journal:
            self.journal.unit_transition(name, state.value, error=changes.get("error"))
        return now

    def _release(self, name: str, state: UnitState, **changes):
        now = self._transition(name, state, **changes)
        with self._lock:
            status = self._statuses[name]
            if status.released_at is None:
                status.released_at = now
                status.settled_at = now
        self._settled[name].set()

    def _fail(self, name: str, state: UnitState, error: str, **changes):
        now = self._transition(name, state, error=error, **changes)
        with self._lock:
            status = self._statuses[name]
            if status.settled_at is None:
                status.settled_at = now
        if state is UnitState.FATAL:
            self.console.print(f"[bold red]Unit {name} failed:[/bold red] {error}")
            self.logger.error("Unit %s failed: %s", name, error)
        self._settled[name].set()

    def _wait_for_predecessors(self, name: str) -> Optional[List[str]]:
        blockers: List[str] = []
        for dependency in self.graph.predecessors(name):
            while not self._settled[dependency].wait(POLL_SECONDS):
                if self._stop.is_set():
                    return None
            with self._lock:
                released = self._statuses[dependency].released_at is not None
            if not released:
                blockers.append(dependency)
        return blockers

    def _run_unit(self, name: str):
        unit = self.graph.units[name]
        try:
            self._transition(name, UnitState.WAITING_ON_DEPENDENCIES)
            blockers = self._wait_for_predecessors(name)
            if blockers is None:
                return
            if blockers:
                self._fail(
                    name,
                    UnitState.BLOCKED,
                    f"blocked by failed predecessor(s): {', '.join(blockers)}",
                )
                return
            if self._stop.is_set():
                return

            if unit.kind is UnitKind.ONESHOT:
                self._run_oneshot(unit)
            else:
                self._run_service(unit)
        except Exception as exc:
            self.logger.exception("Unexpected error while supervising unit %s", name)
            self._fail(name, UnitState.FATAL, f"unexpected error: {exc}")

    def _run_oneshot(self, unit: UnitSpec):
        self._transition(unit.name, UnitState.RUNNING)
        try:
            if unit.action is not None:
                code = int(unit.action())
            else:
                code = self._run_process(unit)
        except BootstrapError as exc:
            self._fail(unit.name, UnitState.FATAL, str(exc))
            return
        if code is None:
            self._transition(unit.name, UnitState.EXITED)
            return

        if code == 0:
            self._release(unit.name, UnitState.SUCCEEDED, exit_code=0)
            self.console.print(f"[green]Unit {unit.name} succeeded.[/green]")
        else:
            self._fail(unit.name, UnitState.FATAL, f"exited with code {code}", exit_code=code)

    def _register(self, name: str, handle) -> bool:
        """Tracks a started handle, or terminates it when stop() already ran."""
        with self._lock:
            if not self._stop.is_set():
                self._handles[name] = handle
                return True
        self.logger.info("Unit %s started after stop was requested; terminating it.", name)
        handle.terminate()
        return False

    def _run_process(self, unit: UnitSpec) -> Optional[int]:
        handle = self.launcher.start(unit)
        if not self._register(unit.name, handle):
            handle.wait()
            return None
        try:
            return handle.wait()
        finally:
            with self._lock:
                self._handles.pop(unit.name, None)

    def _run_service(self, unit: UnitSpec):
        while True:
            error = None
            try:
                handle = self.launcher.start(unit)
            except BootstrapError as exc:
                code = None
                error = str(exc)
                self.logger.error("Unit %s could not start: %s", unit.name, exc)
            else:
                if not self._register(unit.name, handle):
                    code = handle.wait()
                    self._transition(unit.name, UnitState.EXITED, exit_code=code)
                    return
                with self._lock:
                    first_run = self._statuses[unit.name].released_at is None
                if first_run:
                    self._release(unit.name, UnitState.RUNNING)
                    self.console.print(f"[green]Unit {unit.name} is running.[/green]")
                else:
                    self._transition(unit.name, UnitState.RUNNING)
                try:
                    code = handle.wait()
                finally:
                    with self._lock:
                        self._handles.pop(unit.name, None)

            failed = code != 0
            if error is None and failed:
                error = f"exited with code {code}"
            self._transition(unit.name, UnitState.EXITED, exit_code=code, error=error)
            if self._stop.is_set():
                return

            restart = unit.restart is RestartPolicy.ALWAYS or (
                unit.restart is RestartPolicy.ON_FAILURE and failed
            )
            if not restart:
                if failed:
                    self._fail(unit.name, UnitState.FATAL, error or "failed", exit_code=code)
                return

            with self._lock:
                self._statuses[unit.name].restarts += 1
            self._transition(unit.name, UnitState.RESTART_SCHEDULED)
            self.logger.warning(
                "Unit %s exited (%s); restarting in %.1fs.", unit.name, code, unit.restart_sec
            )
            if self._stop.wait(unit.restart_sec):
                return
