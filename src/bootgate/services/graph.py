"""Unit dependency graph validation and ordering."""

from collections import deque
from typing import Dict, Iterable, List, Set

from bootgate.errors import ConfigurationFatal
from bootgate.errors_catalog import actionable_error
from bootgate.models import UnitSpec


class DependencyGraph:
    """Directed acyclic graph of ``requires`` edges between units."""

    def __init__(self, units: Iterable[UnitSpec]):
        self.units: Dict[str, UnitSpec] = {}
        for unit in units:
            if unit.name in self.units:
                raise ConfigurationFatal(f"Duplicate unit name: {unit.name}")
            self.units[unit.name] = unit

        self._dependents: Dict[str, List[str]] = {name: [] for name in self.units}
        for unit in self.units.values():
            for dependency in dict.fromkeys(unit.requires):
                if dependency == unit.name:
                    raise ConfigurationFatal(f"Unit '{unit.name}' cannot require itself.")
                if dependency not in self.units:
                    raise ConfigurationFatal(
                        actionable_error("unknown_dependency", unit=unit.name, dependency=dependency)
                    )
                self._dependents[dependency].append(unit.name)

        self._order = self._topological_order()

    def _topological_order(self) -> List[str]:
        in_degree = {name: len(set(unit.requires)) for name, unit in self.units.items()}
        ready = deque(name for name in self.units if in_degree[name] == 0)
        order: List[str] = []

        while ready:
            name = ready.popleft()
            order.append(name)
            for dependent in self._dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self.units):
            cyclic = sorted(name for name in self.units if name not in order)
            raise ConfigurationFatal(actionable_error("dependency_cycle", units=", ".join(cyclic)))
        return order

    def startup_order(self) -> List[str]:
        return list(self._order)

    def roots(self) -> List[str]:
        return [name for name in self._order if not self.units[name].requires]

    def predecessors(self, name: str) -> List[str]:
        return list(dict.fromkeys(self.units[name].requires))

    def dependents(self, name: str) -> Set[str]:
        found: Set[str] = set()
        pending = deque(self._dependents[name])
        while pending:
            current = pending.popleft()
            if current in found:
                continue
            found.add(current)
            pending.extend(self._dependents[current])
        return found
