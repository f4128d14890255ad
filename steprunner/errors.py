# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exception types shared across steprunner.

Only configuration and spawn failures are raised to callers. A step
that exits nonzero or prints a fatal marker is reported through
``ExecutionResult`` instead, and teardown failures are only logged.
"""


class StepRunnerError(Exception):
    """Base exception for steprunner failures."""


class ConfigurationError(StepRunnerError):
    """Required configuration (binary path, token, config file) is missing.

    Raised before any container is started.
    """


class SpawnError(StepRunnerError):
    """The container runtime or the step binary could not be run."""


class CleanupWarning(UserWarning):
    """Best-effort teardown failed. Logged, never raised."""
