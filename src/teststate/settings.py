from __future__ import annotations
import os


def _float_or_none(raw: str | None) -> float | None:
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


def _verbosity(raw: str | None) -> int:
    # DEBUG is often a plain on/off flag in shells, not a level
    raw = (raw or "").strip()
    try:
        return min(max(int(raw), 0), 5)
    except ValueError:
        return 1 if raw.lower() in ("true", "yes", "on") else 0


ROOT = os.environ.get("TESTSTATE_ROOT", ".envs")
DEBUG = _verbosity(os.environ.get("TESTSTATE_DEBUG", os.environ.get("DEBUG")))
SUITE_FILE = os.environ.get("TESTSTATE_SUITE", "teststate_suite.py")
LOCK = os.environ.get("TESTSTATE_LOCK", "0").lower() in ("1", "true", "yes", "on")
LOCK_TIMEOUT = _float_or_none(os.environ.get("TESTSTATE_LOCK_TIMEOUT"))
STALE_SECONDS = float(os.environ.get("TESTSTATE_STALE_SECONDS", "10"))
