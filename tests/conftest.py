"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path
from unittest import mock

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
STUBBORN_CLI = FIXTURES_DIR / "stubborn_cli.py"

_DX_VARS = (
    "DX_TERM_TIMEOUT",
    "DX_KILL_GRACE",
    "DX_POLL_INTERVAL",
    "DX_RUN_KILL_GRACE",
    "DX_TOOL_EXECUTABLE",
    "DX_LOG_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_config() -> Iterator[None]:
    """Run each test with default configuration."""
    from dx_exec.config import reload_config

    env = {k: v for k, v in os.environ.items() if k not in _DX_VARS}
    with mock.patch.dict(os.environ, env, clear=True):
        reload_config()
        yield
    reload_config()


@pytest.fixture
def stubborn_cli() -> list[str]:
    """Command prefix for the stub CLI fixture script."""
    return [sys.executable, str(STUBBORN_CLI)]


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace
