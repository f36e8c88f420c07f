from __future__ import annotations

import os
from pathlib import Path

import pytest

from teststate.environments import EnvironmentManager
from teststate.errors import EnvironmentNameError, LockTimeout, SeedFailure, WipeFailure
from teststate.model import MarkerKind


def test_load_or_create_makes_empty_environment(manager: EnvironmentManager):
    env = manager.load_or_create("sequential")
    assert env.work_dir.is_dir()
    assert list(env.work_dir.iterdir()) == []
    assert env.marker_store.trace() == []
    assert manager.exists("sequential")

    text = env.env_file.read_text(encoding="utf-8")
    assert f'export TEST_DIR="{env.root_path}"' in text
    assert f'export TEST_REPO="{env.work_dir}"' in text


def test_load_or_create_is_idempotent(manager: EnvironmentManager):
    env = manager.load_or_create("sequential")
    (env.work_dir / "keep.txt").write_text("x")
    env.marker_store.put("A", MarkerKind.START)

    again = manager.load_or_create("sequential")
    assert again.root_path == env.root_path
    assert (again.work_dir / "keep.txt").read_text() == "x"
    assert again.marker_store.exists("A", MarkerKind.START)


def test_wipe_removes_tree_and_markers(manager: EnvironmentManager):
    env = manager.load_or_create("sequential")
    (env.work_dir / "file.txt").write_text("x")
    env.marker_store.put("A", MarkerKind.START)

    manager.wipe("sequential")
    assert not env.root_path.exists()
    assert not manager.exists("sequential")
    # nothing left behind in the root either
    assert [p.name for p in manager.root.iterdir() if p.name.startswith(".trash-")] == []


def test_wipe_missing_environment_is_noop(manager: EnvironmentManager):
    manager.wipe("never-created")


def test_wipe_refuses_while_another_process_runs(manager: EnvironmentManager):
    env = manager.load_or_create("sequential")
    env.marker_store.put("A", MarkerKind.START)
    env.marker_store.put("A", MarkerKind.RUNNING, pid=os.getppid())

    with pytest.raises(WipeFailure, match="still running"):
        manager.wipe("sequential")
    assert env.root_path.exists()


def test_wipe_ignores_stale_and_own_running_markers(manager: EnvironmentManager):
    env = manager.load_or_create("sequential")
    env.marker_store.put("A", MarkerKind.RUNNING)  # ours
    env.marker_store.put("B", MarkerKind.RUNNING, pid=2 ** 22 + 12345)  # no such process
    manager.wipe("sequential")
    assert not env.root_path.exists()


def test_wipe_fails_loudly_when_blocked(manager: EnvironmentManager, monkeypatch):
    env = manager.load_or_create("sequential")

    def _blocked(self, target):
        raise PermissionError("device busy")

    monkeypatch.setattr(Path, "rename", _blocked)
    with pytest.raises(WipeFailure, match="device busy"):
        manager.wipe("sequential")
    monkeypatch.undo()
    assert env.root_path.exists()


@pytest.mark.parametrize("name", ["", ".locks", "a/b", ".."])
def test_invalid_environment_names(manager: EnvironmentManager, name):
    with pytest.raises(EnvironmentNameError):
        manager.load_or_create(name)
    with pytest.raises(EnvironmentNameError):
        manager.wipe(name)


def test_environments_are_isolated(manager: EnvironmentManager):
    seq = manager.load_or_create("sequential")
    doc = manager.load_or_create("doc")
    seq.marker_store.put("A", MarkerKind.START)
    (seq.work_dir / "a.txt").write_text("a")

    assert doc.marker_store.started() == set()
    assert list(doc.work_dir.iterdir()) == []

    manager.wipe("doc")
    assert seq.marker_store.exists("A", MarkerKind.START)


def test_names_and_wipe_all(manager: EnvironmentManager):
    manager.load_or_create("sequential")
    manager.load_or_create("doc")
    assert manager.names() == ["doc", "sequential"]
    assert sorted(manager.wipe_all()) == ["doc", "sequential"]
    assert manager.names() == []


def test_seed_copies_working_tree(manager: EnvironmentManager):
    seq = manager.load_or_create("sequential")
    (seq.work_dir / "sub").mkdir()
    (seq.work_dir / "sub" / "f.txt").write_text("hello")
    doc = manager.load_or_create("doc")

    manager.seed(doc, "sequential")
    assert (doc.work_dir / "sub" / "f.txt").read_text() == "hello"
    # markers are not copied
    assert doc.marker_store.trace() == []


def test_seed_from_missing_environment(manager: EnvironmentManager):
    doc = manager.load_or_create("doc")
    with pytest.raises(SeedFailure, match="nosuch"):
        manager.seed(doc, "nosuch")
    assert list(doc.work_dir.iterdir()) == []


def test_lock_is_reentrant_and_exclusive(tmp_path: Path, console):
    first = EnvironmentManager(tmp_path / "envs", lock=True, console=console)
    first.load_or_create("sequential")
    first.load_or_create("sequential")

    second = EnvironmentManager(tmp_path / "envs", lock=True, lock_timeout=0.2, console=console)
    with pytest.raises(LockTimeout):
        second.load_or_create("sequential")

    # other environments are not blocked
    second.load_or_create("doc")

    first.release_locks()
    second.load_or_create("sequential")
    second.release_locks()
