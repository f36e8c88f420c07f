from __future__ import annotations

import io
from pathlib import Path

import pytest

from teststate.dsl import chain, independent, sequential, suite
from teststate.environments import EnvironmentManager
from teststate.model import MarkerKind
from teststate.orchestrator import Orchestrator
from teststate.ui.console import Console


class Recorder:
    """In-process unit bodies that log their invocation order."""

    def __init__(self):
        self.calls: list[str] = []
        self.fail: set[str] = set()

    def body(self, unit_id: str):
        def _body(env):
            self.calls.append(unit_id)
            (env.work_dir / f"{unit_id}.txt").write_text(unit_id, encoding="utf-8")
            if unit_id in self.fail:
                raise RuntimeError(f"{unit_id} exploded")
        return _body

    def bodies(self, s):
        return {uid: self.body(uid) for uid in s.units}


def trace(env) -> list[str]:
    """start/complete markers of an environment, oldest first."""
    return [str(m) for m in env.marker_store.trace() if m.kind != MarkerKind.RUNNING]


@pytest.fixture
def trace_of():
    return trace


@pytest.fixture
def console() -> Console:
    return Console(verbosity=5, stream=io.StringIO())


@pytest.fixture
def manager(tmp_path: Path, console: Console) -> EnvironmentManager:
    return EnvironmentManager(tmp_path / "envs", topdir=tmp_path, console=console)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def abc_suite():
    return suite(*chain(sequential("A"), sequential("B"), sequential("C")))


@pytest.fixture
def mixed_suite():
    return suite(
        *chain(sequential("A"), sequential("B"), sequential("C")),
        independent("doc", needs="B", seed="sequential"),
        independent("lint"),
    )


@pytest.fixture
def make_orchestrator(manager, recorder, console):
    def _make(s, **kwargs):
        return Orchestrator(s, manager, bodies=recorder.bodies(s), console=console, **kwargs)
    return _make
