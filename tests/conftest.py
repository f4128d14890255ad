# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from steprunner.dotenv_loader import reset_dotenv_state
from steprunner.environment import PROXY_ENV_VARS
from steprunner.logging import SecretFilter
from steprunner.session import Session


def create_mock_popen(
    returncode: int = 0,
    stdout: bytes = b"",
    stderr: bytes = b"",
) -> MagicMock:
    """Create a mock Popen object for ExecutionEngine tests.

    Returns a MagicMock that behaves like subprocess.Popen with both
    streams piped:
    - stdout and stderr are binary streams supporting read1()
    - wait() returns the given exit code
    """
    mock = MagicMock()
    mock.returncode = returncode
    mock.stdout = io.BytesIO(stdout)
    mock.stderr = io.BytesIO(stderr)
    mock.wait.return_value = returncode
    return mock


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep host proxy settings, stage name and secrets out of tests."""
    for name in PROXY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("GITHUB_JOB", raising=False)
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()
    reset_dotenv_state()


@pytest.fixture
def binary_path(tmp_path: Path) -> Path:
    """Create a placeholder step binary.

    Returns:
        Path to ``<tmp>/bin/step``.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    path = bin_dir / "step"
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def session(binary_path: Path) -> Session:
    """Session with the binary path already resolved."""
    return Session(binary_path=binary_path)
