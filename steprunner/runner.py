# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Top-level orchestration of one step invocation.

Phases:

1. Setup: load the pipeline environment, check the binary runs
   (``version``), read the step's context configuration, then start
   network, sidecar and main container as configured.
2. Execution: run the step in the main container, or on the host when
   no image resolved.
3. Cleanup: always, through ``managed_session``.

Configuration and spawn errors propagate after cleanup has run. A
failing step is reported in the returned ``StepRun``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from steprunner.config import ActionConfig, read_context_config
from steprunner.container import ContainerManager, managed_session
from steprunner.engine import ExecutionEngine, ExecutionResult, ExecutionTarget
from steprunner.errors import ConfigurationError
from steprunner.pipeline_env import export_pipeline_env, load_pipeline_env
from steprunner.session import Session


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepRun:
    """Result of ``run_step``.

    Attributes:
        result: The step's execution result (None when no step ran).
        pipeline_env: Exported pipeline environment, if requested.
    """

    result: ExecutionResult | None
    pipeline_env: str | None = None

    @property
    def failed(self) -> bool:
        return self.result is not None and self.result.failed


def run_step(
    action: ActionConfig,
    *,
    session: Session | None = None,
    pipeline_env: str = "",
    environ: Mapping[str, str] | None = None,
) -> StepRun:
    """Run one step end to end with guaranteed container cleanup.

    Args:
        action: Action configuration.
        session: Session to use; a fresh one is created by default. Its
            binary path wins over ``action.binary_path``.
        pipeline_env: Pipeline environment document to load first.
        environ: Environment for the stage name (``GITHUB_JOB``).

    Returns:
        StepRun with the step result and exported pipeline environment.

    Raises:
        ConfigurationError: If no binary path is known.
        SpawnError: If a container or the binary cannot be started.
        StepRunnerError: If the pipeline environment cannot be handled.
    """
    env = os.environ if environ is None else environ
    if session is None:
        session = Session()
    if session.binary_path is None:
        session.binary_path = action.binary_path
    if session.binary_path is None:
        raise ConfigurationError("Can't run step: binary path not defined")

    engine = ExecutionEngine(
        session,
        action.container_command,
        stage_name=env.get("GITHUB_JOB", ""),
    )
    manager = ContainerManager(session, action.container_command)

    load_pipeline_env(engine, pipeline_env)
    engine.execute_operation("version", target=ExecutionTarget.local())

    result: ExecutionResult | None = None
    with managed_session(manager):
        if action.step_name:
            context = read_context_config(
                engine, action.step_name, action.flag_list
            )
            manager.run_containers(action, context)
            result = engine.execute_operation(
                action.step_name, action.flag_list
            )
            if result.failed:
                logger.error(
                    "Step %s failed (exit_code=%d)",
                    action.step_name,
                    result.exit_code,
                )
        exported = export_pipeline_env(
            engine, action.export_pipeline_environment
        )

    return StepRun(result=result, pipeline_env=exported)
