# runner.py
from __future__ import annotations

import os
import runpy
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List

from .dsl import suite as dsl_suite
from .environments import Environment
from .errors import StepFailure, SuiteError, TestStateError
from .model import Step, Suite, Unit
from .ui.console import Console, get_console

if TYPE_CHECKING:
    from .orchestrator import Orchestrator


# ----------------------------------------------------------------------
# Suite loading (local file)
# ----------------------------------------------------------------------

def load_suite(path: str | Path) -> Suite:
    """
    Load a suite from a python file path.

    The file must define either:
      - suite() -> Suite
      - SUITE = Suite(...)  (e.g. built with teststate.dsl.suite)
    """
    suite_path = Path(path).expanduser().resolve()
    if not suite_path.exists():
        raise SuiteError(f"Suite file not found: {suite_path}")
    if suite_path.suffix != ".py":
        raise SuiteError(f"Suite must be a .py file, got: {suite_path.name}")

    module_name = f"teststate_suite_{suite_path.stem}"
    globals_dict = runpy.run_path(str(suite_path), run_name=module_name)

    loaded = None
    fn = globals_dict.get("suite")
    if "SUITE" in globals_dict:
        loaded = globals_dict["SUITE"]
    elif fn is dsl_suite:
        raise SuiteError(
            "Suite file only imports the dsl helper `suite`. "
            "Define SUITE = suite(...), or import the helper under another name: "
            "`from teststate.dsl import suite as make_suite` then `def suite(): return make_suite(...)`"
        )
    elif callable(fn):
        loaded = fn()

    if not isinstance(loaded, Suite):
        raise SuiteError(
            "Suite file must return/define a Suite. "
            "Define suite() -> Suite or SUITE = teststate.dsl.suite(...)."
        )
    return loaded


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

class ShellRunner:
    """Runs a unit's declared shell steps inside its environment's working tree."""

    def __init__(self, console: Console | None = None, output_tail: int = 4000):
        self.console = console or get_console()
        self.output_tail = output_tail

    def environ(self, unit: Unit, env: Environment) -> Dict[str, str]:
        out = os.environ.copy()
        out.update(env.variables())
        out["TESTSTATE_UNIT"] = unit.id
        out.update(unit.env)
        return out

    def run_step(self, unit: Unit, step: Step, env: Environment) -> None:
        cwd = (env.work_dir / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"[{unit.id}] step '{step.name}' cwd not found: {cwd}")

        self.console.print_step(unit.id, step.name)
        proc = subprocess.run(
            step.run,
            shell=True,
            cwd=str(cwd),
            env=self.environ(unit, env),
            text=True,
            capture_output=True,
        )
        if proc.stdout:
            self.console.debug(4, proc.stdout.rstrip())

        if proc.returncode != 0:
            raise StepFailure(
                unit=unit.id,
                step=step.name,
                cmd=step.run,
                exit_code=proc.returncode,
                stdout=proc.stdout[-self.output_tail:],
                stderr=proc.stderr[-self.output_tail:],
            )

    def run_unit(self, unit: Unit, env: Environment) -> bool:
        for step in unit.steps:
            self.run_step(unit, step, env)
        return True


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_units(
    orchestrator: "Orchestrator",
    unit_ids: List[str],
    *,
    fail_fast: bool = True,
) -> Dict[str, str]:
    """
    Run units one after another through the full lifecycle.

    Returns {unit_id: "ok" | "failed" | "not run"}.
    """
    console = orchestrator.console
    results: Dict[str, str] = {}
    failed = False

    for uid in unit_ids:
        if failed and fail_fast:
            results[uid] = "not run"
            continue
        try:
            orchestrator.execute(uid)
            results[uid] = "ok"
        except TestStateError as e:
            results[uid] = "failed"
            failed = True
            console.print_error(type(e).__name__, str(e), details=_step_output(e))

    return results


def _step_output(exc: BaseException) -> List[str] | None:
    cause = exc
    while cause is not None and not isinstance(cause, StepFailure):
        cause = cause.__cause__
    if cause is None:
        return None
    lines = []
    if cause.stdout:
        lines.append("stdout:\n" + cause.stdout.rstrip())
    if cause.stderr:
        lines.append("stderr:\n" + cause.stderr.rstrip())
    return lines or None
