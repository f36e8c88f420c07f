# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from teststate import settings
from teststate.dag import prerequisite_closure
from teststate.environments import EnvironmentManager
from teststate.errors import SuiteError, TestStateError
from teststate.model import MarkerKind
from teststate.orchestrator import Orchestrator
from teststate.runner import load_suite, run_units
from teststate.ui.console import Console, set_console, get_console


def discover_suite(suite_arg: str | None) -> Path:
    """
    Resolve the suite file from the argument or the configured default.

    Raises:
        SystemExit: if the file cannot be found
    """
    console = get_console()
    path = Path(suite_arg or settings.SUITE_FILE)
    if not path.exists() and path.suffix != ".py":
        path = Path(str(path) + ".py")
    if not path.exists():
        console.print_error(
            "Suite file not found",
            f"Could not find suite file: {path}",
            suggestion="Create teststate_suite.py or specify one explicitly:\n  teststate --suite my_suite.py run 01-meta",
        )
        sys.exit(1)
    return path


def _manager(ctx, lock: bool = False, lock_timeout: float | None = None) -> EnvironmentManager:
    return EnvironmentManager(
        ctx.obj["root"],
        lock=lock,
        lock_timeout=lock_timeout,
        console=get_console(),
    )


def _load(ctx):
    path = discover_suite(ctx.obj["suite"])
    try:
        return path, load_suite(path)
    except SuiteError as e:
        get_console().print_error("Invalid suite", str(e))
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    "verbosity",
    default=settings.DEBUG,
    type=click.IntRange(0, 5),
    show_default=True,
    help="Diagnostics verbosity (1 = pollution reasons ... 5 = filesystem detail)",
)
@click.option("--root", default=settings.ROOT, show_default=True, help="Environments root directory")
@click.option("--suite", default=None, help=f"Suite file (defaults to {settings.SUITE_FILE})")
@click.pass_context
def cli(ctx, verbosity, root, suite):
    """teststate: ordered test phases over shared, pollution-checked state."""
    set_console(Console(verbosity=verbosity))
    ctx.ensure_object(dict)
    ctx.obj["root"] = root
    ctx.obj["suite"] = suite


@cli.command()
@click.argument("units", nargs=-1)
@click.option("--all", "run_all", is_flag=True, default=False, help="Run every unit: sequential order first, then independent units")
@click.option("--fail-fast/--no-fail-fast", default=True, show_default=True, help="Stop after the first failed unit")
@click.option("--lock/--no-lock", default=settings.LOCK, show_default=True, help="Take an exclusive lock per environment")
@click.option("--lock-timeout", default=settings.LOCK_TIMEOUT, type=float, help="Seconds to wait for a lock (default: wait forever)")
@click.option("--stale-seconds", default=settings.STALE_SECONDS, type=float, show_default=True, help="Warn when a seed environment is older than this")
@click.pass_context
def run(ctx, units, run_all, fail_fast, lock, lock_timeout, stale_seconds):
    """Run UNITS through the lifecycle, building prerequisites as needed."""
    console = get_console()
    suite_path, suite = _load(ctx)

    unit_ids = list(units)
    if run_all:
        unit_ids = list(suite.order) + sorted(u for u in suite.units if u not in suite.order)
    if not unit_ids:
        console.print_error("No units given", "Name the units to run, or pass --all.")
        sys.exit(2)

    manager = _manager(ctx, lock=lock, lock_timeout=lock_timeout)
    orchestrator = Orchestrator(suite, manager, stale_seconds=stale_seconds, console=console)

    try:
        for uid in unit_ids:
            suite.get(uid)
        console.print_run_started(suite=suite_path.name, units=unit_ids, root=str(manager.root))
        results = run_units(orchestrator, unit_ids, fail_fast=fail_fast)
        console.print_results(results)
        if any(v != "ok" for v in results.values()):
            sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except TestStateError as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        manager.release_locks()


@cli.command()
@click.argument("unit")
@click.pass_context
def plan(ctx, unit):
    """Show what running UNIT would do, without running anything."""
    console = get_console()
    _path, suite = _load(ctx)
    manager = _manager(ctx)
    try:
        target = suite.get(unit)
        chain = prerequisite_closure(suite, unit)
    except SuiteError as e:
        console.print_error("Unknown unit", str(e))
        sys.exit(1)

    console.print_header(f"PLAN: {unit}")
    console.print_info(f"Environment: {target.environment_name}")
    console.print_info(f"Prerequisite chain: {' -> '.join(chain + [unit])}")

    orchestrator = Orchestrator(suite, manager, console=console)
    try:
        env = manager.get(target.environment_name)
        if not manager.exists(target.environment_name):
            console.print_info("State: environment does not exist yet (will be created)")
        elif target.fresh:
            console.print_info("State: fresh unit, environment will be recreated")
        else:
            pollution = orchestrator.detector.check(env, target)
            if pollution is None:
                console.print_info("State: clean")
            else:
                console.print_info(f"State: dirty, will wipe and rebuild ({pollution.reason})")
    except TestStateError as e:
        console.print_exception(e)
        sys.exit(1)

    for uid in chain:
        punit = suite.get(uid)
        penv = manager.get(punit.environment_name)
        done = penv.marker_store.exists(uid, MarkerKind.COMPLETE)
        console.print_info(f"  {uid}: {'complete' if done else 'will run'} (env={punit.environment_name})")


@cli.command()
@click.argument("environments", nargs=-1)
@click.pass_context
def status(ctx, environments):
    """Show marker traces for ENVIRONMENTS (default: all)."""
    console = get_console()
    manager = _manager(ctx)
    names = list(environments) or manager.names()
    if not names:
        console.print_info(f"No environments under {manager.root}")
        return

    try:
        for name in names:
            console.print_header(f"ENVIRONMENT: {name}")
            if not manager.exists(name):
                console.print_info("  (does not exist)")
                continue
            store = manager.get(name).marker_store
            for m in store.trace():
                extra = f" pid={m.pid}" if m.pid is not None else ""
                console.print_info(f"  {m.written_at}  {m}{extra}")
            incomplete = sorted(store.list_incomplete())
            if incomplete:
                console.print_info(f"  incomplete: {', '.join(incomplete)}")
    except TestStateError as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.argument("environments", nargs=-1)
@click.option("--all", "clean_all", is_flag=True, default=False, help="Wipe every environment")
@click.pass_context
def clean(ctx, environments, clean_all):
    """Wipe ENVIRONMENTS (working tree and markers)."""
    console = get_console()
    manager = _manager(ctx)
    try:
        if clean_all:
            wiped = manager.wipe_all()
        else:
            if not environments:
                console.print_error("No environments given", "Name the environments to wipe, or pass --all.")
                sys.exit(2)
            wiped = []
            for name in environments:
                manager.wipe(name)
                wiped.append(name)
    except TestStateError as e:
        console.print_exception(e)
        sys.exit(1)
    console.print_info(f"Wiped: {', '.join(wiped) if wiped else '(nothing)'}")


if __name__ == "__main__":
    cli()
