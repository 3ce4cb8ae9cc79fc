"""
Root conftest.py for pydirenv tests.

This file provides:
1. Common pytest markers for test categorization
2. Shared fixtures used across multiple test modules
3. A fake script executor, so trust and diff logic can be tested without bash

Fixtures are organized by category:
- Logging fixtures (isolation of the pydirenv logger)
- Filesystem fixtures (scripts, settings rooted in tmp_path)
- Execution fixtures (fake executor)
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from pydirenv.config import Settings
from pydirenv.env import Env
from pydirenv.errors import RCExecutionError
from pydirenv.executor import ExecutionResult, normalize_result_env
from pydirenv.trust import TrustStore, Whitelist

# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    markers = {
        "unit": "Unit tests (fast, no external dependencies)",
        "requires_bash": "Tests that run scripts through a real bash",
    }
    for name, desc in markers.items():
        config.addinivalue_line("markers", f"{name}: {desc}")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        norm = str(item.fspath).replace("\\", "/")
        if "/tests/unit/" in norm:
            item.add_marker(pytest.mark.unit)
        if shutil.which("bash") is None and item.get_closest_marker("requires_bash"):
            item.add_marker(pytest.mark.skip(reason="bash not available"))


# =============================================================================
# LOGGING FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_pydirenv_logger():
    """Restore the pydirenv logger after tests that call configure_logging."""
    logger = logging.getLogger("pydirenv")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


# =============================================================================
# FILESYSTEM FIXTURES
# =============================================================================


def bump_mtime(path: Path) -> None:
    """Move a file's mtime forward so watch sets notice the change."""
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 2_000_000_000))


@pytest.fixture
def write_script() -> Callable[..., Path]:
    """Write a script file, creating parent directories."""

    def _write(directory: Path, content: str = "", name: str = ".envrc") -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        existed = path.exists()
        path.write_text(content)
        if existed:
            bump_mtime(path)
        return path

    return _write


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Build Settings rooted in tmp_path; keyword arguments override fields."""

    def _make(**overrides) -> Settings:
        values = {
            "work_dir": str(tmp_path),
            "config_dir": str(tmp_path / "config"),
            "cache_dir": str(tmp_path / "cache"),
            "data_dir": str(tmp_path / "data"),
            "bash_path": shutil.which("bash") or "bash",
            "warn_timeout": 0.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def trust_store(tmp_path: Path) -> TrustStore:
    return TrustStore(tmp_path / "data" / "allow")


@pytest.fixture
def empty_whitelist() -> Whitelist:
    return Whitelist()


# =============================================================================
# EXECUTION FIXTURES
# =============================================================================


class FakeExecutor:
    """Script executor driven by a table instead of a shell.

    ``effects[path]`` maps variable names to new values (None removes the
    variable). ``failures[path]`` makes the script fail with that stderr.
    """

    def __init__(self) -> None:
        self.effects: dict[str, dict[str, str | None]] = {}
        self.watched: dict[str, list[str]] = {}
        self.failures: dict[str, str] = {}
        self.calls: list[tuple[str, Env]] = []

    def on(self, path: str | Path, watched: list[str] | None = None, **effects: str | None) -> None:
        key = os.path.abspath(path)
        self.effects[key] = effects
        self.watched[key] = list(watched or [])

    def fail(self, path: str | Path, stderr: str = "boom") -> None:
        self.failures[os.path.abspath(path)] = stderr

    def execute(self, path: str, env: Env) -> ExecutionResult:
        path = os.path.abspath(path)
        self.calls.append((path, env))
        if path in self.failures:
            raise RCExecutionError(path, exit_code=1, stderr=self.failures[path])

        data = env.to_dict()
        for key, value in self.effects.get(path, {}).items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        start = time.monotonic()
        return ExecutionResult(
            env=normalize_result_env(env, data),
            watched=tuple(self.watched.get(path, [])),
            duration=time.monotonic() - start,
        )


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def bump() -> Callable[[Path], None]:
    return bump_mtime
