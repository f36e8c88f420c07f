from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest
from click.testing import CliRunner

from teststate.cli import cli

SUITE = """
    from teststate.dsl import chain, independent, sequential, sh, suite

    SUITE = suite(
        *chain(
            sequential("01-meta", sh("meta", "echo meta > meta.txt")),
            sequential("02-dist", sh("dist", "cat meta.txt > dist.txt")),
            sequential("03-setup-final", sh("final", "touch final.txt")),
        ),
        independent("doc", sh("doc", "test -f dist.txt"), needs="02-dist", seed="sequential"),
        independent("broken", sh("boom", "exit 7")),
    )
"""


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "teststate_suite.py").write_text(dedent(SUITE), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _invoke(*args):
    return CliRunner().invoke(cli, ["--root", ".envs", *args])


def test_run_builds_prerequisites(project: Path):
    result = _invoke("run", "03-setup-final")
    assert result.exit_code == 0, result.output
    assert "Running prerequisite: 01-meta" in result.output
    assert "03-setup-final: SUCCESS" in result.output

    work = project / ".envs" / "sequential" / "repo"
    assert (work / "dist.txt").read_text().strip() == "meta"
    assert (work / "final.txt").exists()


def test_run_independent_unit_with_seed(project: Path):
    result = _invoke("run", "doc")
    assert result.exit_code == 0, result.output
    assert (project / ".envs" / "doc" / "repo" / "dist.txt").exists()


def test_run_failure_exit_code(project: Path):
    result = _invoke("run", "broken")
    assert result.exit_code == 1
    assert "broken: FAILED" in result.output


def test_run_all(project: Path):
    result = _invoke("run", "--all", "--no-fail-fast")
    assert result.exit_code == 1
    for uid in ("01-meta", "02-dist", "03-setup-final", "doc"):
        assert f"{uid}: SUCCESS" in result.output


def test_run_requires_units(project: Path):
    result = _invoke("run")
    assert result.exit_code == 2


def test_run_unknown_unit(project: Path):
    result = _invoke("run", "99-nope")
    assert result.exit_code == 1
    assert "Unknown unit" in result.output


def test_missing_suite_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = _invoke("run", "A")
    assert result.exit_code == 1
    assert "Suite file not found" in result.output


def test_plan_reports_dirty_state(project: Path):
    assert _invoke("run", "03-setup-final").exit_code == 0

    result = _invoke("plan", "01-meta")
    assert result.exit_code == 0, result.output
    assert "dirty" in result.output
    assert "02-dist" in result.output

    result = _invoke("plan", "03-setup-final")
    assert "State: clean" in result.output
    assert "01-meta -> 02-dist -> 03-setup-final" in result.output


def test_status_and_clean(project: Path):
    assert _invoke("run", "02-dist").exit_code == 0

    result = _invoke("status")
    assert result.exit_code == 0
    assert "ENVIRONMENT: sequential" in result.output
    assert "start(01-meta)" in result.output
    assert "complete(02-dist)" in result.output

    result = _invoke("clean", "sequential")
    assert result.exit_code == 0
    assert not (project / ".envs" / "sequential").exists()

    result = _invoke("status")
    assert "No environments" in result.output


def test_clean_all(project: Path):
    assert _invoke("run", "doc").exit_code == 0
    result = _invoke("clean", "--all")
    assert result.exit_code == 0
    assert "doc" in result.output and "sequential" in result.output


def test_debug_output(project: Path):
    result = _invoke("--debug", "2", "run", "01-meta")
    assert result.exit_code == 0
    assert "DEBUG[2]" in result.output


@pytest.mark.parametrize("command", [["clean", ".hidden"], ["status", "../x"]])
def test_invalid_environment_name_is_reported(project: Path, command):
    result = _invoke(*command)
    assert result.exit_code == 1
    assert "Invalid environment name" in result.output
