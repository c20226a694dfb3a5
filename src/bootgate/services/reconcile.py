"""Desired-versus-observed unit graph diffing."""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from bootgate.models import HostPlan


@dataclass(frozen=True)
class ReconcilePlan:
    to_start: List[str] = field(default_factory=list)
    to_restart: List[str] = field(default_factory=list)
    to_stop: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.to_start or self.to_restart or self.to_stop)

    def as_dict(self) -> Dict[str, List[str]]:
        return {
            "to_start": list(self.to_start),
            "to_restart": list(self.to_restart),
            "to_stop": list(self.to_stop),
            "unchanged": list(self.unchanged),
        }


def diff_plans(desired: HostPlan, observed: Mapping[str, str]) -> ReconcilePlan:
    """Compares desired unit fingerprints with the ones applied last time."""
    to_start: List[str] = []
    to_restart: List[str] = []
    unchanged: List[str] = []

    for name, fingerprint in desired.fingerprints().items():
        if name not in observed:
            to_start.append(name)
        elif observed[name] != fingerprint:
            to_restart.append(name)
        else:
            unchanged.append(name)

    desired_names = {unit.name for unit in desired.units}
    to_stop = sorted(name for name in observed if name not in desired_names)
    return ReconcilePlan(
        to_start=to_start, to_restart=to_restart, to_stop=to_stop, unchanged=unchanged
    )
