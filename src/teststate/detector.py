# detector.py
from __future__ import annotations

from typing import Optional

from .environments import Environment, pid_alive
from .errors import PollutionError
from .model import MarkerKind, Suite, Unit
from .ui.console import Console, get_console


class DirtyStateDetector:
    """
    Decides whether an environment's recorded state can be trusted by a unit.

    Dirty when either:
      1. some unit started but never completed (crash, kill, or still running)
      2. a sequential unit ordered after the current one has started

    A unit that already completed is *not* dirt on its own: its state is what
    later units are meant to reuse. Independent units are not part of the
    sequential order, so only rule 1 applies to them.
    """

    def __init__(self, suite: Suite, console: Console | None = None):
        self.suite = suite
        self.console = console or get_console()

    def check(self, env: Environment, unit: Unit) -> Optional[PollutionError]:
        store = env.marker_store
        self.console.debug(2, f"is_dirty: checking pollution for {unit.id} in {env.name}")

        if not store.state_dir.exists():
            self.console.debug(3, "is_dirty: no state dir, clean")
            return None

        store.verify()

        # 1. incomplete units
        self.console.debug(2, "is_dirty: checking for incomplete units")
        for uid in sorted(store.list_incomplete()):
            started = store.describe(uid, MarkerKind.START)
            pid = store.running_pid(uid)
            if pid is not None and pid_alive(pid):
                status = f"still running (PID {pid})"
            elif pid is not None:
                status = f"crashed (stale PID {pid})"
            else:
                status = "complete marker missing"
            return PollutionError(
                environment=env.name,
                unit=unit.id,
                reason=f"unit {uid} started but didn't complete",
                offender=uid,
                detail=f"Started: {started}; {status}",
            )

        # 2. later sequential units
        later = self.suite.after(unit.id) if unit.environment_name == self._sequential_env() else []
        self.console.debug(3, f"is_dirty: order: {' '.join(self.suite.order)}")
        self.console.debug(2, "is_dirty: checking for later units")
        for uid in later:
            if store.exists(uid, MarkerKind.START):
                return PollutionError(
                    environment=env.name,
                    unit=unit.id,
                    reason=f"polluted by {uid} (runs after {unit.id})",
                    offender=uid,
                    detail=f"Later unit started: {store.describe(uid, MarkerKind.START)}",
                )

        self.console.debug(2, "is_dirty: environment is clean")
        return None

    def is_dirty(self, env: Environment, unit: Unit) -> bool:
        pollution = self.check(env, unit)
        if pollution is None:
            return False
        self.report(pollution)
        return True

    def report(self, pollution: PollutionError) -> None:
        self.console.debug(1, f"POLLUTION DETECTED: {pollution.reason}")
        self.console.debug(1, f"  Order: {' '.join(self.suite.order)}")
        for line in str(pollution).splitlines():
            self.console.out(line.strip())

    def _sequential_env(self) -> str | None:
        return self.suite.sequential_environment
