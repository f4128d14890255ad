# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Run named operations of a step binary inside ephemeral containers.

The library owns container lifecycle (main container, optional sidecar
and their private network), environment propagation, live output
classification, and unconditional cleanup. Acquiring the step binary is
the caller's job: hand its path to the ``Session``.
"""

from steprunner.config import (
    ActionConfig,
    ContextConfig,
    read_context_config,
)
from steprunner.container import (
    ContainerManager,
    cleanup_all,
    managed_session,
)
from steprunner.engine import (
    BINARY_MOUNT_POINT,
    ExecutionEngine,
    ExecutionResult,
    ExecutionTarget,
)
from steprunner.errors import (
    CleanupWarning,
    ConfigurationError,
    SpawnError,
    StepRunnerError,
)
from steprunner.runner import StepRun, run_step
from steprunner.session import ContainerRole, Session


__all__ = [
    # session
    "ContainerRole",
    "Session",
    # config
    "ActionConfig",
    "ContextConfig",
    "read_context_config",
    # containers
    "ContainerManager",
    "cleanup_all",
    "managed_session",
    # engine
    "BINARY_MOUNT_POINT",
    "ExecutionEngine",
    "ExecutionResult",
    "ExecutionTarget",
    # runner
    "StepRun",
    "run_step",
    # errors
    "CleanupWarning",
    "ConfigurationError",
    "SpawnError",
    "StepRunnerError",
]
