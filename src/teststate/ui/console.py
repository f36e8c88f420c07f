"""Console output formatting utilities for teststate."""

from __future__ import annotations

import sys
from typing import Optional


class Console:
    """
    Centralized console output.

    Two channels:
      - out(): always visible operator messages (pollution, wipes, prerequisites)
      - debug(level, ...): shown only when verbosity >= level

    Verbosity levels:
      1  why an environment was judged dirty
      2  lifecycle protocol steps
      3  marker details
      5  filesystem detail
    """

    def __init__(self, verbosity: int = 0, stream=None):
        self.verbosity = verbosity
        self._stream = stream

    @property
    def stream(self):
        # resolved lazily so pytest's capsys / CliRunner swaps are honoured
        return self._stream if self._stream is not None else sys.stdout

    def out(self, message: str) -> None:
        print(f"# {message}", file=self.stream)

    def debug(self, level: int, message: str) -> None:
        if self.verbosity >= level:
            print(f"# DEBUG[{level}]: {message}", file=self.stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}", file=self.stream)
        print("-" * len(title), file=self.stream)

    def print_run_started(self, suite: str, units: list[str], root: str) -> None:
        print("\nRUN STARTED", file=self.stream)
        print(f"Suite: {suite}", file=self.stream)
        print(f"Units: {', '.join(units)}", file=self.stream)
        print(f"Environments: {root}", file=self.stream)
        print(file=self.stream)

    def print_unit_start(self, unit: str, environment: str) -> None:
        print(f"\nUNIT STARTED: {unit} (env={environment})", file=self.stream)

    def print_step(self, unit: str, name: str) -> None:
        print(f"[{unit}] STEP: {name}", file=self.stream)

    def print_unit_result(self, unit: str, ok: bool) -> None:
        print(f"[{unit}] STATUS: {'success' if ok else 'failed'}", file=self.stream)

    def print_results(self, results: dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40, file=self.stream)
        print("RESULTS", file=self.stream)
        print("=" * 40, file=self.stream)
        for unit, status in results.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            print(f"  {unit}: {status_display}", file=self.stream)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only at high verbosity."""
        if self.verbosity >= 3:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        print(message, file=self.stream)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        from ..settings import DEBUG

        _console = Console(verbosity=DEBUG)
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
