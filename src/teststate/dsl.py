# src/teststate/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from .dag import validate_suite
from .errors import SuiteError
from .model import DEFAULT_SEQUENTIAL_ENV, Step, Suite, Unit, UnitKind


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step. cwd is relative to the environment's working tree."""
    return Step(name=name, run=cmd, cwd=cwd)


# ---------------------------------------------------------------------
# Functional Unit helpers
# ---------------------------------------------------------------------

def _as_list(value: str | Sequence[str] | None) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def sequential(
    id: str,
    *steps: Step,
    after: str | Sequence[str] | None = None,
    env: str = DEFAULT_SEQUENTIAL_ENV,
    variables: Optional[Dict[str, str]] = None,
    cwd: str | None = None,
) -> Unit:
    """
    A sequential unit. `after` is normally just the immediate predecessor;
    that predecessor takes care of its own prerequisites.
    """
    steps_final = list(steps)
    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]
    return Unit(
        id=id,
        kind=UnitKind.SEQUENTIAL,
        prerequisites=_as_list(after),
        environment_name=env,
        steps=steps_final,
        env=dict(variables or {}),
    )


def independent(
    id: str,
    *steps: Step,
    needs: str | Sequence[str] | None = None,
    env: str | None = None,
    seed: str | None = None,
    fresh: bool = True,
    variables: Optional[Dict[str, str]] = None,
    cwd: str | None = None,
) -> Unit:
    """
    An independent unit with its own environment (defaults to its id).

    seed: environment whose working tree is copied in once prerequisites are done
    fresh: start from an empty environment on every activation
    """
    steps_final = list(steps)
    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]
    return Unit(
        id=id,
        kind=UnitKind.INDEPENDENT,
        prerequisites=_as_list(needs),
        environment_name=env or id,
        steps=steps_final,
        env=dict(variables or {}),
        seed=seed,
        fresh=fresh,
    )


def chain(*units: Unit) -> List[Unit]:
    """
    Wire sequential units to their immediate predecessor, in the given order.
    Units that already declare prerequisites are left alone.
    """
    out: List[Unit] = []
    prev: Unit | None = None
    for u in units:
        if prev is not None and not u.prerequisites:
            u = replace(u, prerequisites=[prev.id])
        out.append(u)
        prev = u
    return out


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class UnitBuilder:
    def __init__(self, id: str, kind: UnitKind = UnitKind.SEQUENTIAL):
        self.id = id
        self._kind = kind
        self._prereqs: list[str] = []
        self._steps: list[Step] = []
        self._env_name: str | None = None
        self._variables: dict[str, str] = {}
        self._seed: str | None = None
        self._fresh: bool = kind == UnitKind.INDEPENDENT

    def depends_on(self, *unit_ids: str):
        self._prereqs.extend(unit_ids)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def in_environment(self, name: str):
        self._env_name = name
        return self

    def with_env(self, **variables):
        self._variables.update({k: str(v) for k, v in variables.items()})
        return self

    def seeded_from(self, env_name: str):
        self._seed = env_name
        return self

    def keep_state(self):
        """Reuse the environment between activations instead of recreating it."""
        self._fresh = False
        return self

    def build(self) -> Unit:
        if self._kind == UnitKind.SEQUENTIAL:
            env_name = self._env_name or DEFAULT_SEQUENTIAL_ENV
        else:
            env_name = self._env_name or self.id
        return Unit(
            id=self.id,
            kind=self._kind,
            prerequisites=list(self._prereqs),
            environment_name=env_name,
            steps=list(self._steps),
            env=dict(self._variables),
            seed=self._seed,
            fresh=self._fresh,
        )


def build(id: str, kind: UnitKind = UnitKind.SEQUENTIAL) -> UnitBuilder:
    """Convenience: build('01-meta').define_step(...).build()"""
    return UnitBuilder(id, kind)


# ---------------------------------------------------------------------
# Suite helper
# ---------------------------------------------------------------------

def suite(*units: Unit, order: Optional[Sequence[str]] = None) -> Suite:
    """
    Assemble and validate a Suite.

    The sequential order is the declaration order of the sequential units
    unless `order` is given explicitly. It is never derived from the ids.
    """
    flat: List[Unit] = []
    for u in units:
        if isinstance(u, (list, tuple)):
            flat.extend(u)
        else:
            flat.append(u)

    by_id: Dict[str, Unit] = {}
    for u in flat:
        if u.id in by_id:
            raise SuiteError(f"Duplicate unit id: {u.id}")
        by_id[u.id] = u

    if order is None:
        order = [u.id for u in flat if u.is_sequential]

    return validate_suite(Suite(units=by_id, order=list(order)))
