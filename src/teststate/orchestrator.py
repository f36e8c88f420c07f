# orchestrator.py
from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional

from .detector import DirtyStateDetector
from .environments import Environment, EnvironmentManager
from .errors import StepFailure, TestStateError, UnitExecutionFailure
from .model import MarkerKind, Suite, Unit
from .resolver import PrerequisiteResolver, RunUnit
from .runner import ShellRunner
from .ui.console import Console, get_console

# body(env) -> anything; False or an exception means failure
UnitBody = Callable[[Environment], Any]


@dataclass
class Activation:
    """A unit that passed pre-flight and now has a start marker."""
    unit: Unit
    environment: Environment
    started_at: float = field(default_factory=time.time)
    rebuilt: bool = False

    @property
    def unit_id(self) -> str:
        return self.unit.id


class Orchestrator:
    """
    Per-unit lifecycle:

      1. load_or_create the unit's environment
      2. dirty check; on dirty wipe and recreate
      3. ensure prerequisites (recursively)
      4. start marker (+ running marker)
      5. the unit body runs
      6. complete marker on success only

    A failed or interrupted unit keeps its start marker without a complete
    marker, which the next dirty check turns into a full rebuild.
    """

    def __init__(
        self,
        suite: Suite,
        manager: EnvironmentManager,
        *,
        runner: Optional[ShellRunner] = None,
        bodies: Optional[Dict[str, UnitBody]] = None,
        run: Optional[RunUnit] = None,
        stale_seconds: float = 10.0,
        console: Console | None = None,
    ):
        self.suite = suite
        self.manager = manager
        self.console = console or get_console()
        self.runner = runner or ShellRunner(console=self.console)
        self.bodies: Dict[str, UnitBody] = dict(bodies or {})
        self.stale_seconds = stale_seconds
        self.detector = DirtyStateDetector(suite, console=self.console)
        self.resolver = PrerequisiteResolver(
            suite,
            manager,
            self.detector,
            run or self._run_prerequisite,
            console=self.console,
        )

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def activate(self, unit_id: str) -> Activation:
        """Steps 1-4: everything up to and including the start marker."""
        unit = self.suite.get(unit_id)
        self.console.debug(2, f"=== activate: unit={unit.id} env={unit.environment_name} "
                              f"prereqs={unit.prerequisites}")

        env = self.manager.load_or_create(unit.environment_name)
        rebuilt = False

        if unit.fresh:
            if env.marker_store.started() or any(env.work_dir.iterdir()):
                self.console.out(f"Creating fresh {env.name} environment...")
                self.manager.wipe(env.name)
                env = self.manager.load_or_create(unit.environment_name)
        elif self.detector.is_dirty(env, unit):
            self.console.out(f"Rebuilding {env.name} environment for {unit.id}")
            self.manager.wipe(env.name)
            env = self.manager.load_or_create(unit.environment_name)
            rebuilt = True

        self.resolver.ensure(env, unit)

        if unit.seed:
            self._seed(env, unit)

        store = env.marker_store
        # a rerun of a completed unit must look incomplete until it finishes again
        store.remove(unit.id, MarkerKind.COMPLETE)
        store.put(unit.id, MarkerKind.START)
        store.put(unit.id, MarkerKind.RUNNING)
        self.console.debug(3, f"start marker written for {unit.id}: {store.describe(unit.id, MarkerKind.START)}")

        return Activation(unit=unit, environment=env, rebuilt=rebuilt)

    def complete(self, activation: Activation) -> None:
        """Step 6, success path."""
        store = activation.environment.marker_store
        store.put(activation.unit_id, MarkerKind.COMPLETE)
        store.remove(activation.unit_id, MarkerKind.RUNNING)
        self.console.debug(3, f"complete marker written for {activation.unit_id}")

    def abandon(self, activation: Activation) -> None:
        """Step 6, failure path: no complete marker, the unit stays incomplete."""
        activation.environment.marker_store.remove(activation.unit_id, MarkerKind.RUNNING)
        self.console.debug(2, f"{activation.unit_id} left incomplete")

    @contextmanager
    def unit(self, unit_id: str) -> Iterator[Activation]:
        """
        Wrap a unit body:

            with orchestrator.unit("02-dist") as act:
                ... work inside act.environment.work_dir ...
        """
        activation = self.activate(unit_id)
        try:
            yield activation
        except BaseException:
            self.abandon(activation)
            raise
        self.complete(activation)

    def execute(self, unit_id: str, body: Optional[UnitBody] = None) -> Activation:
        """
        Run the whole protocol for one unit.

        The body is, in order of preference: the argument, a registered body,
        the unit's declared shell steps. Raises UnitExecutionFailure when the
        body fails.
        """
        activation = self.activate(unit_id)
        env = activation.environment
        self.console.print_unit_start(unit_id, env.name)

        fn = body or self.bodies.get(unit_id)
        try:
            if fn is not None:
                result = fn(env)
            else:
                result = self.runner.run_unit(activation.unit, env)
        except StepFailure as e:
            self.abandon(activation)
            self.console.print_unit_result(unit_id, False)
            raise UnitExecutionFailure(environment=env.name, unit=unit_id, message=str(e)) from e
        except TestStateError:
            self.abandon(activation)
            raise
        except Exception as e:
            self.abandon(activation)
            self.console.print_unit_result(unit_id, False)
            raise UnitExecutionFailure(
                environment=env.name, unit=unit_id, message=f"{type(e).__name__}: {e}"
            ) from e
        except BaseException:
            self.abandon(activation)
            raise

        if result is False:
            self.abandon(activation)
            self.console.print_unit_result(unit_id, False)
            raise UnitExecutionFailure(environment=env.name, unit=unit_id, message="body reported failure")

        self.complete(activation)
        self.console.print_unit_result(unit_id, True)
        return activation

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_prerequisite(self, unit_id: str) -> bool:
        self.execute(unit_id)
        return True

    def _seed(self, env: Environment, unit: Unit) -> None:
        source = self.manager.get(unit.seed)
        completes = [
            m for m in source.marker_store.trace() if m.kind == MarkerKind.COMPLETE
        ]
        if completes:
            age = time.time() - completes[-1].written_ns / 1e9
            self.console.debug(3, f"seed: {unit.seed} is {age:.0f} seconds old")
            if age > self.stale_seconds:
                self.console.out(f"WARNING: {unit.seed} environment is {age:.0f} seconds old, may be out of date.")
                self.console.out(f"         Run 'teststate clean {unit.seed}' to rebuild it.")
        self.manager.seed(env, unit.seed)
