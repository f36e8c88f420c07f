# dag.py
from __future__ import annotations

import os
from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import SuiteError
from .model import Suite, Unit, UnitKind


def build_graph(units: Iterable[Unit]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the prerequisite DAG from Unit objects.

    Requires:
      - unit.id: str (unique)
      - unit.prerequisites: ids of units that must complete BEFORE this unit
    """
    units = list(units)
    ids = [u.id for u in units]
    if len(set(ids)) != len(ids):
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        raise SuiteError(f"Duplicate unit ids found: {dupes}")

    id_set = set(ids)
    adj: Dict[str, Set[str]] = {i: set() for i in id_set}
    indeg: Dict[str, int] = {i: 0 for i in id_set}

    for unit in units:
        for prereq in unit.prerequisites:
            if prereq not in id_set:
                raise SuiteError(
                    f"Unit '{unit.id}' requires missing unit '{prereq}'. "
                    f"Known units: {sorted(id_set)}"
                )
            if prereq == unit.id:
                raise SuiteError(f"Unit '{unit.id}' lists itself as a prerequisite")
            # edge prereq -> unit.id
            if unit.id not in adj[prereq]:
                adj[prereq].add(unit.id)
                indeg[unit.id] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels".
    Raises SuiteError on a cycle.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise SuiteError(f"Prerequisite graph has a cycle. Stuck units: {remaining}")

    return levels


def prerequisite_closure(suite: Suite, unit_id: str) -> List[str]:
    """
    Every unit `unit_id` transitively requires, in the order the resolver
    would materialize them (depth-first, declared order), unit_id excluded.
    """
    out: List[str] = []
    seen: Set[str] = set()

    def visit(uid: str) -> None:
        for p in suite.get(uid).prerequisites:
            if p in seen:
                continue
            visit(p)
            seen.add(p)
            out.append(p)

    visit(unit_id)
    return out


def _check_id(value: str, what: str) -> None:
    if not value or value.startswith(".") or os.sep in value or (os.altsep and os.altsep in value):
        raise SuiteError(f"Invalid {what}: {value!r}")


def validate_suite(suite: Suite) -> Suite:
    """
    Enforce the declaration rules:
      - ids and environment names are usable as file names
      - prerequisites exist and form no cycle
      - `order` lists exactly the sequential units, once each
      - all sequential units share one environment
      - every independent unit has its own environment, distinct from the
        sequential one
    """
    units = list(suite.units.values())
    for u in units:
        _check_id(u.id, "unit id")
        _check_id(u.environment_name, f"environment name for unit '{u.id}'")

    adj, indeg = build_graph(units)
    topo_levels(adj, indeg)

    sequential = [u.id for u in units if u.is_sequential]
    if len(set(suite.order)) != len(suite.order):
        raise SuiteError(f"Sequential order lists a unit twice: {suite.order}")
    if set(suite.order) != set(sequential):
        missing = sorted(set(sequential) - set(suite.order))
        extra = sorted(set(suite.order) - set(sequential))
        raise SuiteError(f"Sequential order mismatch (missing={missing}, not sequential={extra})")

    seq_envs = {suite.units[i].environment_name for i in suite.order}
    if len(seq_envs) > 1:
        raise SuiteError(f"Sequential units must share one environment, found {sorted(seq_envs)}")

    owners: Dict[str, str] = {}
    for u in units:
        if u.kind != UnitKind.INDEPENDENT:
            continue
        if u.environment_name in seq_envs:
            raise SuiteError(
                f"Independent unit '{u.id}' uses the sequential environment '{u.environment_name}'"
            )
        if u.environment_name in owners:
            raise SuiteError(
                f"Independent units '{owners[u.environment_name]}' and '{u.id}' "
                f"share environment '{u.environment_name}'"
            )
        owners[u.environment_name] = u.id
        if u.seed is not None:
            _check_id(u.seed, f"seed environment for unit '{u.id}'")
            if u.seed == u.environment_name:
                raise SuiteError(f"Independent unit '{u.id}' cannot seed from its own environment")

    declared = seq_envs | set(owners)
    for u in units:
        if u.seed is not None and u.seed not in declared:
            raise SuiteError(
                f"Unit '{u.id}' seeds from '{u.seed}', which no unit in the suite declares"
            )

    # a sequential unit may only depend on units ordered before it
    for uid in suite.order:
        pos = suite.position(uid)
        for p in suite.units[uid].prerequisites:
            ppos = suite.position(p)
            if ppos is None:
                raise SuiteError(f"Sequential unit '{uid}' requires independent unit '{p}'")
            if ppos >= pos:
                raise SuiteError(f"Sequential unit '{uid}' requires '{p}', which is ordered after it")

    return suite
