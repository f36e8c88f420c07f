from .dsl import sh, sequential, independent, chain, suite, build, UnitBuilder
from .environments import Environment, EnvironmentManager
from .errors import (
    EnvironmentNameError,
    LockTimeout,
    MarkerContractError,
    PollutionError,
    PrerequisiteFailure,
    SeedFailure,
    StepFailure,
    SuiteError,
    TestStateError,
    UnitExecutionFailure,
    WipeFailure,
)
from .markers import MarkerStore
from .model import MarkerKind, Step, Suite, Unit, UnitKind
from .orchestrator import Activation, Orchestrator
from .runner import load_suite, run_units

__all__ = [
    "sh", "sequential", "independent", "chain", "suite", "build", "UnitBuilder",
    "Environment", "EnvironmentManager", "MarkerStore",
    "MarkerKind", "Step", "Suite", "Unit", "UnitKind",
    "Activation", "Orchestrator", "load_suite", "run_units",
    "TestStateError", "SuiteError", "MarkerContractError", "PollutionError",
    "PrerequisiteFailure", "WipeFailure", "UnitExecutionFailure", "LockTimeout", "StepFailure",
    "EnvironmentNameError", "SeedFailure",
]
