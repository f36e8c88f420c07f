# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .errors import SuiteError


class UnitKind(str, Enum):
    SEQUENTIAL = "sequential"
    INDEPENDENT = "independent"


class MarkerKind(str, Enum):
    START = "start"
    RUNNING = "running"
    COMPLETE = "complete"


DEFAULT_SEQUENTIAL_ENV = "sequential"


@dataclass(frozen=True)
class Step:
    """A single shell command inside a test unit."""
    name: str
    run: str
    cwd: str | None = None


@dataclass
class Unit:
    """
    One test phase: steps + prerequisites + the environment its state lives in.

    Sequential units share one environment and assume earlier phases already
    ran there. Independent units each own a dedicated environment.
    """
    id: str
    kind: UnitKind = UnitKind.SEQUENTIAL
    prerequisites: list[str] = field(default_factory=list)
    environment_name: str = DEFAULT_SEQUENTIAL_ENV
    steps: list[Step] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    # Independent-unit knobs
    seed: Optional[str] = None     # environment whose working tree is copied in
    fresh: bool = False            # recreate the environment on every activation

    @property
    def is_sequential(self) -> bool:
        return self.kind == UnitKind.SEQUENTIAL


@dataclass(frozen=True)
class Suite:
    """
    Declared units plus the explicit total order of the sequential ones.

    Built once (see dsl.suite / runner.load_suite) and never mutated.
    """
    units: Dict[str, Unit]
    order: List[str]

    def get(self, unit_id: str) -> Unit:
        try:
            return self.units[unit_id]
        except KeyError:
            raise SuiteError(f"Unknown unit '{unit_id}'. Known units: {sorted(self.units)}") from None

    def position(self, unit_id: str) -> int | None:
        """Index of unit_id in the sequential order, or None for independent units."""
        try:
            return self.order.index(unit_id)
        except ValueError:
            return None

    def after(self, unit_id: str) -> list[str]:
        """Sequential units ordered strictly after unit_id."""
        pos = self.position(unit_id)
        if pos is None:
            return []
        return self.order[pos + 1:]

    @property
    def sequential_environment(self) -> str | None:
        if not self.order:
            return None
        return self.units[self.order[0]].environment_name
