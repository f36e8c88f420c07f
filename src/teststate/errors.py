# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class TestStateError(Exception):
    """Base class for every error raised by the orchestrator."""
    __test__ = False  # keep pytest from collecting this as a test class


class SuiteError(TestStateError, ValueError):
    """The suite declaration is invalid (duplicates, unknown ids, cycles...)."""


class MarkerContractError(TestStateError):
    """A complete marker exists without its start marker."""


class EnvironmentNameError(TestStateError, ValueError):
    """An environment name that cannot live directly under the environments root."""


@dataclass
class PollutionError(TestStateError):
    """
    Recorded state does not match what the unit about to run expects.

    Handled internally by wipe + rebuild; only logged, never surfaced on its own.
    """
    environment: str
    unit: str
    reason: str
    offender: str | None = None
    detail: str | None = None

    def __str__(self) -> str:
        lines = [f"Environment '{self.environment}' polluted for {self.unit}: {self.reason}"]
        if self.detail:
            lines.append(f"  {self.detail}")
        return "\n".join(lines)


@dataclass
class PrerequisiteFailure(TestStateError):
    unit: str
    prerequisite: str
    chain: list[str] = field(default_factory=list)
    cause: str | None = None

    def __str__(self) -> str:
        msg = f"Prerequisite {self.prerequisite} failed (required by {self.unit})"
        if self.chain:
            msg += f"\nchain={' -> '.join(self.chain)}"
        if self.cause:
            msg += f"\ncause={self.cause}"
        return msg


@dataclass
class WipeFailure(TestStateError):
    environment: str
    path: str
    message: str

    def __str__(self) -> str:
        return f"Cannot wipe environment '{self.environment}' at {self.path}: {self.message}"


@dataclass
class SeedFailure(TestStateError):
    environment: str
    source: str
    path: str

    def __str__(self) -> str:
        return (
            f"Cannot seed environment '{self.environment}' from '{self.source}': "
            f"no working tree at {self.path}"
        )


@dataclass
class UnitExecutionFailure(TestStateError):
    environment: str
    unit: str
    message: str

    def __str__(self) -> str:
        return f"[{self.unit}] failed in environment '{self.environment}': {self.message}"


@dataclass
class LockTimeout(TestStateError):
    environment: str
    timeout: float

    def __str__(self) -> str:
        return f"Timed out after {self.timeout:g}s waiting for the lock on environment '{self.environment}'"


@dataclass
class StepFailure(TestStateError):
    unit: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.unit}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"
