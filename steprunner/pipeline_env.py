# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Pipeline environment hand-over through the step binary.

The pipeline environment is a JSON document the step binary keeps
under ``.pipeline/`` in the working directory. Before a step it is
written from the value handed over by a previous job; after the step it
can be read back so the next job can pick it up.
"""

from __future__ import annotations

import json
import logging

from steprunner.engine import ExecutionEngine, ExecutionTarget
from steprunner.errors import SpawnError, StepRunnerError


logger = logging.getLogger(__name__)

#: Child environment variable the binary reads the document from.
PIPELINE_ENV_VAR = "PIPER_pipelineEnv"


def load_pipeline_env(engine: ExecutionEngine, pipeline_env: str) -> None:
    """Write a pipeline environment document through the binary.

    Args:
        engine: Execution engine bound to the step binary.
        pipeline_env: JSON document; empty skips the load.

    Raises:
        StepRunnerError: If ``writePipelineEnv`` cannot run or fails.
    """
    if not pipeline_env:
        logger.debug("No pipeline environment given, skipping load")
        return

    try:
        parsed = json.loads(pipeline_env)
        if isinstance(parsed, dict):
            logger.debug("Pipeline environment contains %d keys", len(parsed))
    except json.JSONDecodeError as e:
        # The binary validates the document itself
        logger.debug("Failed to parse pipeline environment JSON: %s", e)

    try:
        result = engine.execute_operation(
            "writePipelineEnv",
            target=ExecutionTarget.local(),
            env={PIPELINE_ENV_VAR: pipeline_env},
        )
    except SpawnError as e:
        raise StepRunnerError(f"Can't load pipeline environment: {e}") from e
    if result.exit_code != 0:
        raise StepRunnerError(
            "Can't load pipeline environment: writePipelineEnv exited "
            f"with {result.exit_code}"
        )
    logger.debug("Pipeline environment loaded")


def export_pipeline_env(engine: ExecutionEngine, enabled: bool) -> str | None:
    """Read the pipeline environment back from the binary.

    Args:
        engine: Execution engine bound to the step binary.
        enabled: Export only when True.

    Returns:
        Compact JSON document, or None when disabled.

    Raises:
        StepRunnerError: If ``readPipelineEnv`` fails or prints invalid JSON.
    """
    if not enabled:
        return None

    logger.debug("Exporting pipeline environment")
    try:
        result = engine.execute_operation(
            "readPipelineEnv", target=ExecutionTarget.local()
        )
    except SpawnError as e:
        raise StepRunnerError(f"Can't export pipeline environment: {e}") from e

    try:
        document = json.loads(result.output)
    except json.JSONDecodeError as e:
        raise StepRunnerError(
            f"Could not export pipeline environment: {e}"
        ) from e
    return json.dumps(document, separators=(",", ":"))
