from __future__ import annotations

import os
from pathlib import Path

import pytest

from teststate.errors import MarkerContractError
from teststate.markers import MarkerStore
from teststate.model import MarkerKind


@pytest.fixture
def store(tmp_path: Path) -> MarkerStore:
    return MarkerStore(tmp_path / ".state", environment="seq")


def test_put_and_exists(store: MarkerStore):
    assert not store.exists("A", MarkerKind.START)
    store.put("A", MarkerKind.START)
    assert store.exists("A", MarkerKind.START)
    assert not store.exists("A", MarkerKind.COMPLETE)
    assert (store.state_dir / "start-A").is_file()


def test_put_leaves_no_temp_files(store: MarkerStore):
    store.put("A", MarkerKind.START)
    store.put("A", MarkerKind.COMPLETE)
    assert sorted(p.name for p in store.state_dir.iterdir()) == ["complete-A", "start-A"]


def test_list_incomplete(store: MarkerStore):
    store.put("A", MarkerKind.START)
    store.put("A", MarkerKind.COMPLETE)
    store.put("B", MarkerKind.START)
    assert store.list_incomplete() == {"B"}


def test_list_incomplete_on_missing_dir(store: MarkerStore):
    assert store.list_incomplete() == set()
    assert store.trace() == []


def test_clear_removes_every_marker(store: MarkerStore):
    for uid in ("A", "B"):
        store.put(uid, MarkerKind.START)
        store.put(uid, MarkerKind.COMPLETE)
    store.put("C", MarkerKind.RUNNING)
    store.clear()
    assert store.started() == set()
    assert store.completed() == set()
    assert store.running() == set()


def test_running_marker_records_pid(store: MarkerStore):
    store.put("A", MarkerKind.RUNNING)
    assert store.running_pid("A") == os.getpid()
    store.put("B", MarkerKind.RUNNING, pid=12345)
    assert store.running_pid("B") == 12345
    assert store.running_pid("C") is None


def test_trace_is_ordered_by_write(store: MarkerStore):
    store.put("A", MarkerKind.START)
    store.put("A", MarkerKind.COMPLETE)
    store.put("B", MarkerKind.START)
    assert [str(m) for m in store.trace()] == ["start(A)", "complete(A)", "start(B)"]


def test_verify_flags_complete_without_start(store: MarkerStore):
    store.put("A", MarkerKind.COMPLETE)
    with pytest.raises(MarkerContractError):
        store.verify()


def test_remove_is_quiet_when_missing(store: MarkerStore):
    store.remove("A", MarkerKind.COMPLETE)
    store.put("A", MarkerKind.START)
    store.remove("A", MarkerKind.START)
    assert not store.exists("A", MarkerKind.START)


def test_unit_ids_with_dashes(store: MarkerStore):
    store.put("02-dist", MarkerKind.START)
    assert store.started() == {"02-dist"}
    assert store.describe("02-dist", MarkerKind.START) != "<missing>"


def test_snapshot(store: MarkerStore):
    store.put("A", MarkerKind.START)
    store.put("A", MarkerKind.RUNNING)
    assert store.snapshot() == {("start", "A")}
