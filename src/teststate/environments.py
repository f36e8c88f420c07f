# environments.py
from __future__ import annotations

import os
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import EnvironmentNameError, LockTimeout, SeedFailure, WipeFailure
from .markers import STATE_DIRNAME, MarkerStore
from .ui.console import Console, get_console

# ---------------------------------------------------------------------
# Layout under the environments root:
#
#   <root>/
#     <name>/
#       .env          shell exports for unit steps (TOPDIR, TEST_DIR, ...)
#       .state/       marker files (see markers.py)
#       repo/         working tree mutated by unit steps
#     .locks/
#       <name>.lock   advisory lock files (outside the env so wipes keep them)
#     .trash-*        transient, an environment being deleted
# ---------------------------------------------------------------------

ENV_FILENAME = ".env"
WORK_DIRNAME = "repo"
LOCKS_DIRNAME = ".locks"
TRASH_PREFIX = ".trash-"
LOCK_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class Environment:
    name: str
    root_path: Path
    marker_store: MarkerStore
    topdir: Path

    @property
    def work_dir(self) -> Path:
        return self.root_path / WORK_DIRNAME

    @property
    def env_file(self) -> Path:
        return self.root_path / ENV_FILENAME

    @property
    def result_dir(self) -> Path:
        return self.topdir / "results"

    def variables(self) -> Dict[str, str]:
        """Variables exported to unit steps (mirrors the .env file)."""
        return {
            "TOPDIR": str(self.topdir),
            "TEST_DIR": str(self.root_path),
            "TEST_REPO": str(self.work_dir),
            "RESULT_DIR": str(self.result_dir),
            "TESTSTATE_ENV": self.name,
        }


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    except OSError:
        return False
    return True


def _acquire_lock(path: Path, name: str, timeout: Optional[float]) -> Any:
    import fcntl

    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("a+", encoding="utf-8")
    if timeout is None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        return handle

    deadline = time.monotonic() + timeout
    while True:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return handle
        except BlockingIOError:
            if time.monotonic() >= deadline:
                handle.close()
                raise LockTimeout(environment=name, timeout=timeout)
            time.sleep(LOCK_POLL_SECONDS)


def _release_lock(handle: Any) -> None:
    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


class EnvironmentManager:
    """
    Creates, loads and destroys named, isolated environments.

    Every environment exclusively owns its directory under `root`; nothing
    outside this class and the orchestrator touches it.
    """

    def __init__(
        self,
        root: str | Path = ".envs",
        *,
        topdir: str | Path | None = None,
        lock: bool = False,
        lock_timeout: Optional[float] = None,
        console: Console | None = None,
    ):
        self.root = Path(root).resolve()
        self.topdir = Path(topdir).resolve() if topdir is not None else Path.cwd().resolve()
        self.lock = lock
        self.lock_timeout = lock_timeout
        self.console = console or get_console()
        self._locks: Dict[str, Any] = {}

    # ---- paths ----

    def _env_dir(self, name: str) -> Path:
        if not name or name.startswith(".") or os.sep in name or (os.altsep and os.altsep in name):
            raise EnvironmentNameError(f"Invalid environment name: {name!r}")
        d = (self.root / name).resolve()
        if d.parent != self.root:
            raise EnvironmentNameError(f"Environment {name!r} resolves outside {self.root}")
        return d

    def _handle(self, name: str) -> Environment:
        d = self._env_dir(name)
        return Environment(
            name=name,
            root_path=d,
            marker_store=MarkerStore(d / STATE_DIRNAME, environment=name),
            topdir=self.topdir,
        )

    # ---- queries ----

    def exists(self, name: str) -> bool:
        return self._env_dir(name).joinpath(ENV_FILENAME).is_file()

    def names(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and not p.name.startswith(".") and (p / ENV_FILENAME).is_file()
        )

    def get(self, name: str) -> Environment:
        """Handle for an environment without creating anything."""
        return self._handle(name)

    # ---- lifecycle ----

    def load_or_create(self, name: str) -> Environment:
        """
        Return the environment called `name`, creating it empty if missing.

        Idempotent: an existing environment is returned untouched.
        """
        if self.lock:
            self.acquire(name)

        env = self._handle(name)
        if env.env_file.is_file():
            self.console.debug(5, f"load_or_create: reusing {name} at {env.root_path}")
            return env

        self.console.out(f"Creating {name} environment...")
        env.marker_store.state_dir.mkdir(parents=True, exist_ok=True)
        env.work_dir.mkdir(parents=True, exist_ok=True)
        lines = [f'export {k}="{v}"' for k, v in env.variables().items()]
        env.env_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return env

    def wipe(self, name: str) -> None:
        """
        Delete the working directory and every marker of `name`.

        The directory is first renamed out of the way, so callers see either
        the whole environment or none of it. Raises WipeFailure on any blocked
        deletion and when another live process is running a unit in it.
        """
        env = self._handle(name)
        d = env.root_path
        self.console.debug(5, f"wipe: cleaning {name} at {d}")

        if not d.exists():
            self.console.debug(5, "wipe: directory doesn't exist, nothing to clean")
            return

        store = env.marker_store
        for unit_id in sorted(store.running()):
            pid = store.running_pid(unit_id)
            self.console.debug(5, f"wipe: found running marker for {unit_id} with PID {pid}")
            if pid is not None and pid != os.getpid() and pid_alive(pid):
                raise WipeFailure(
                    environment=name,
                    path=str(d),
                    message=f"unit {unit_id} is still running (PID {pid})",
                )
            self.console.debug(5, f"wipe: PID {pid} is stale or ours")

        self.console.out(f"Removing {name} environment...")

        trash = self.root / f"{TRASH_PREFIX}{name}-{time.time_ns()}"
        try:
            d.rename(trash)
        except OSError as e:
            raise WipeFailure(environment=name, path=str(d), message=str(e)) from e

        errors: List[str] = []

        def _onexc(func, path, exc):
            errors.append(f"{path}: {exc}")

        if sys.version_info >= (3, 12):
            shutil.rmtree(trash, onexc=_onexc)
        else:
            shutil.rmtree(trash, onerror=lambda func, path, exc_info: _onexc(func, path, exc_info[1]))
        if errors or trash.exists():
            raise WipeFailure(
                environment=name,
                path=str(trash),
                message="; ".join(errors) or "directory still present after removal",
            )
        self.console.debug(5, f"wipe: successfully removed {d}")

    def wipe_all(self) -> List[str]:
        wiped = []
        for name in self.names():
            self.wipe(name)
            wiped.append(name)
        return wiped

    def seed(self, target: Environment, source_name: str) -> None:
        """Copy the source environment's working tree over the target's."""
        source = self._handle(source_name)
        if not source.work_dir.is_dir():
            raise SeedFailure(environment=target.name, source=source_name, path=str(source.work_dir))
        self.console.out(f"Copying {source_name} working tree to {target.name} environment...")
        shutil.copytree(source.work_dir, target.work_dir, symlinks=True, dirs_exist_ok=True)

    # ---- advisory locking ----

    def acquire(self, name: str) -> None:
        """Take the exclusive lock for `name`; re-entrant within this process."""
        if name in self._locks:
            return
        path = self.root / LOCKS_DIRNAME / f"{name}.lock"
        self.console.debug(5, f"lock: acquiring {path}")
        self._locks[name] = _acquire_lock(path, name, self.lock_timeout)

    def release_locks(self) -> None:
        for name in list(self._locks):
            _release_lock(self._locks.pop(name))
