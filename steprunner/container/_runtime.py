# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Blocking calls to the container runtime CLI."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

from steprunner.errors import SpawnError


logger = logging.getLogger(__name__)


def run_runtime(container_command: str, args: Sequence[str]) -> str:
    """Run ``<container_command> <args...>`` and return its stdout.

    Args:
        container_command: Runtime CLI (docker or podman).
        args: Runtime arguments.

    Returns:
        Captured stdout, untrimmed.

    Raises:
        SpawnError: If the CLI cannot be started or exits nonzero.
    """
    cmd = [container_command, *args]
    logger.debug("Runtime command: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise SpawnError(f"{container_command} execute failed: {e}") from e

    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise SpawnError(
            f"{container_command} execute failed "
            f"(exit code {result.returncode}): {detail}"
        )
    return result.stdout
