# resolver.py
from __future__ import annotations

from typing import Callable, Tuple

from .detector import DirtyStateDetector
from .environments import Environment, EnvironmentManager
from .errors import PrerequisiteFailure, SuiteError, UnitExecutionFailure
from .model import MarkerKind, Suite, Unit
from .ui.console import Console, get_console

# run(unit_id) -> success. Must be safe to call against a freshly wiped environment.
RunUnit = Callable[[str], bool]


class PrerequisiteResolver:
    """
    Makes sure every prerequisite of a unit has completed, running the
    missing ones through the execution collaborator.

    A prerequisite is always ensure()d itself before its complete marker is
    trusted: a unit that declares only its immediate predecessor relies on
    that predecessor's own chain having been validated in this run.
    """

    def __init__(
        self,
        suite: Suite,
        manager: EnvironmentManager,
        detector: DirtyStateDetector,
        run: RunUnit,
        console: Console | None = None,
    ):
        self.suite = suite
        self.manager = manager
        self.detector = detector
        self.run = run
        self.console = console or get_console()

    def ensure(self, env: Environment, unit: Unit, _chain: Tuple[str, ...] = ()) -> None:
        chain = _chain + (unit.id,)
        if unit.prerequisites:
            self.console.debug(2, f"ensure: {unit.id} requires {', '.join(unit.prerequisites)}")

        for p in unit.prerequisites:
            if p in chain:
                raise SuiteError(f"Prerequisite cycle: {' -> '.join(chain + (p,))}")
            punit = self.suite.get(p)

            if punit.environment_name == env.name:
                penv = env
            else:
                # another environment's state was never checked by our caller
                penv = self.manager.load_or_create(punit.environment_name)
                pollution = self.detector.check(penv, punit)
                if pollution is not None:
                    self.detector.report(pollution)
                    self._materialize(unit, punit, chain)
                    continue

            self.ensure(penv, punit, chain)

            if penv.marker_store.exists(p, MarkerKind.COMPLETE):
                self.console.debug(2, f"ensure: prerequisite {p} already complete")
                continue

            self._materialize(unit, punit, chain)

    def _materialize(self, unit: Unit, prereq: Unit, chain: Tuple[str, ...]) -> None:
        self.console.out(f"Running prerequisite: {prereq.id}")
        try:
            ok = self.run(prereq.id)
        except PrerequisiteFailure:
            raise
        except UnitExecutionFailure as e:
            raise PrerequisiteFailure(
                unit=unit.id, prerequisite=prereq.id, chain=list(chain) + [prereq.id], cause=str(e)
            ) from e

        if not ok:
            self.console.out(f"ERROR: Prerequisite {prereq.id} failed")
            raise PrerequisiteFailure(unit=unit.id, prerequisite=prereq.id, chain=list(chain) + [prereq.id])
        self.console.out(f"Prerequisite {prereq.id} completed")
