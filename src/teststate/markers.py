# markers.py
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Set

from .errors import MarkerContractError
from .model import MarkerKind

# ---------------------------------------------------------------------
# One file per fact:
#
#   <state_dir>/
#     start-<unit_id>
#     running-<unit_id>
#     complete-<unit_id>
#
# File content:
#   line 1: human readable timestamp (microsecond precision, with offset)
#   line 2: time.time_ns() at write, used to order the trace
#   line 3: pid (running markers only)
#
# Writes go to a temp file, are fsync'ed and renamed into place, then the
# directory itself is fsync'ed. A crash right after put(START) is therefore
# always visible to the next run.
# ---------------------------------------------------------------------

STATE_DIRNAME = ".state"
_KIND_RANK = {MarkerKind.START: 0, MarkerKind.RUNNING: 1, MarkerKind.COMPLETE: 2}


@dataclass(frozen=True)
class Marker:
    unit_id: str
    kind: MarkerKind
    written_at: str
    written_ns: int
    pid: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.kind.value}({self.unit_id})"


def _timestamp() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S.%f %z")


def _fsync_dir(path: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _parse_name(name: str) -> tuple[MarkerKind, str] | None:
    kind_s, sep, unit_id = name.partition("-")
    if not sep or not unit_id:
        return None
    try:
        return MarkerKind(kind_s), unit_id
    except ValueError:
        return None


class MarkerStore:
    """
    File-based marker store for a single environment.

    Owned 1:1 by an Environment; never shared between environments.
    """

    def __init__(self, state_dir: str | Path, environment: str = ""):
        self.state_dir = Path(state_dir)
        self.environment = environment

    def _path(self, unit_id: str, kind: MarkerKind) -> Path:
        return self.state_dir / f"{MarkerKind(kind).value}-{unit_id}"

    # ---- writes ----

    def put(self, unit_id: str, kind: MarkerKind, *, pid: int | None = None) -> Path:
        kind = MarkerKind(kind)
        self.state_dir.mkdir(parents=True, exist_ok=True)

        lines = [_timestamp(), str(time.time_ns())]
        if kind == MarkerKind.RUNNING:
            lines.append(str(pid if pid is not None else os.getpid()))
        payload = "\n".join(lines) + "\n"

        dest = self._path(unit_id, kind)
        tmp = dest.with_name(f".{dest.name}.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(dest)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
        _fsync_dir(self.state_dir)
        return dest

    def remove(self, unit_id: str, kind: MarkerKind) -> None:
        self._path(unit_id, kind).unlink(missing_ok=True)

    def clear(self) -> None:
        """Remove every marker of this environment."""
        if not self.state_dir.exists():
            return
        for p in self.state_dir.iterdir():
            if p.is_file() and _parse_name(p.name) is not None:
                p.unlink()
        _fsync_dir(self.state_dir)

    # ---- reads ----

    def exists(self, unit_id: str, kind: MarkerKind) -> bool:
        return self._path(unit_id, kind).is_file()

    def read(self, unit_id: str, kind: MarkerKind) -> Optional[Marker]:
        kind = MarkerKind(kind)
        p = self._path(unit_id, kind)
        try:
            raw = p.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None

        written_at = raw[0] if raw else ""
        try:
            written_ns = int(raw[1])
        except (IndexError, ValueError):
            written_ns = p.stat().st_mtime_ns
        pid = None
        if kind == MarkerKind.RUNNING and len(raw) > 2 and raw[2].strip().isdigit():
            pid = int(raw[2].strip())
        return Marker(unit_id=unit_id, kind=kind, written_at=written_at, written_ns=written_ns, pid=pid)

    def describe(self, unit_id: str, kind: MarkerKind) -> str:
        m = self.read(unit_id, kind)
        return m.written_at if m else "<missing>"

    def _ids(self, kind: MarkerKind) -> Set[str]:
        if not self.state_dir.exists():
            return set()
        out: Set[str] = set()
        for p in self.state_dir.iterdir():
            parsed = _parse_name(p.name)
            if parsed and parsed[0] == kind and p.is_file():
                out.add(parsed[1])
        return out

    def started(self) -> Set[str]:
        return self._ids(MarkerKind.START)

    def completed(self) -> Set[str]:
        return self._ids(MarkerKind.COMPLETE)

    def running(self) -> Set[str]:
        return self._ids(MarkerKind.RUNNING)

    def list_incomplete(self) -> Set[str]:
        """Units with a start marker but no complete marker."""
        return self.started() - self.completed()

    def running_pid(self, unit_id: str) -> Optional[int]:
        m = self.read(unit_id, MarkerKind.RUNNING)
        return m.pid if m else None

    def verify(self) -> None:
        """complete(u) implies start(u)."""
        orphans = sorted(self.completed() - self.started())
        if orphans:
            raise MarkerContractError(
                f"Environment '{self.environment}': complete marker without start marker for {orphans}"
            )

    def trace(self) -> List[Marker]:
        """All markers, oldest first."""
        markers: List[Marker] = []
        for kind in MarkerKind:
            for unit_id in self._ids(kind):
                m = self.read(unit_id, kind)
                if m is not None:
                    markers.append(m)
        markers.sort(key=lambda m: (m.written_ns, _KIND_RANK[m.kind]))
        return markers

    def snapshot(self, kinds: Iterable[MarkerKind] = (MarkerKind.START, MarkerKind.COMPLETE)) -> Set[tuple[str, str]]:
        """Set of (kind, unit_id) pairs, handy for comparing states."""
        kinds = [MarkerKind(k) for k in kinds]
        return {(k.value, u) for k in kinds for u in self._ids(k)}
