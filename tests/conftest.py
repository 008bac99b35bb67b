from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

import pytest


_ISOLATED_ENV_VARS = (
    "COINSIM_STARTING_CASH",
    "COINSIM_TICK_SECONDS",
    "COINSIM_SEED",
)

_PREVIOUS_CWD: Path | None = None
_PREVIOUS_ENV: dict[str, str | None] = {}
_WORKSPACE_ROOT: Path | None = None


def pytest_configure(config: pytest.Config) -> None:
    """Run every test from a throwaway workspace with COINSIM_* unset."""
    global _PREVIOUS_CWD, _PREVIOUS_ENV, _WORKSPACE_ROOT
    repo_root = Path(__file__).resolve().parent.parent
    workspace_root = repo_root / ".tmp" / "test-workspaces" / uuid.uuid4().hex
    workspace_root.mkdir(parents=True, exist_ok=True)

    _PREVIOUS_CWD = Path.cwd()
    _PREVIOUS_ENV = {key: os.environ.get(key) for key in _ISOLATED_ENV_VARS}
    _WORKSPACE_ROOT = workspace_root

    for key in _ISOLATED_ENV_VARS:
        os.environ.pop(key, None)
    os.chdir(workspace_root)


def pytest_unconfigure(config: pytest.Config) -> None:
    global _PREVIOUS_CWD, _PREVIOUS_ENV, _WORKSPACE_ROOT
    if _PREVIOUS_CWD is not None:
        os.chdir(_PREVIOUS_CWD)
    for key, value in _PREVIOUS_ENV.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    if _WORKSPACE_ROOT is not None:
        shutil.rmtree(_WORKSPACE_ROOT, ignore_errors=True)
