# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""``steprunner`` command-line entry point.

Runs one step of an already acquired step binary, optionally inside a
container, and exits with the step's status. Command-line options
override the YAML file and ``STEPRUNNER_*`` environment variables.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from pathlib import Path

from steprunner.config import ActionConfig
from steprunner.environment import secret_env_vars
from steprunner.errors import StepRunnerError
from steprunner.logging import SecretFilter, configure_logging
from steprunner.runner import run_step


logger = logging.getLogger(__name__)

#: Environment variable holding the pipeline environment to load.
PIPELINE_ENV_INPUT = "STEPRUNNER_PIPELINE_ENV"

#: Tokens never to be echoed in logs, besides the vault credentials.
_TOKEN_ENV_VARS = ("GITHUB_TOKEN",)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="steprunner",
        description="Run a step binary, optionally inside a container.",
    )
    parser.add_argument("--config", type=Path, help="YAML config file")
    parser.add_argument("--step", help="Step to run")
    parser.add_argument("--flags", help="Step flags as one string")
    parser.add_argument("--binary", type=Path, help="Path of the step binary")
    parser.add_argument("--docker-image", help="Main container image")
    parser.add_argument("--docker-options", help="Main container options")
    parser.add_argument("--sidecar-image", help="Sidecar container image")
    parser.add_argument("--sidecar-options", help="Sidecar container options")
    parser.add_argument(
        "--container-command",
        help="Container runtime CLI (default: docker)",
    )
    parser.add_argument(
        "--export-pipeline-env",
        action="store_true",
        help="Print the pipeline environment after the step",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _apply_overrides(
    action: ActionConfig, args: argparse.Namespace
) -> ActionConfig:
    overrides: dict[str, object] = {}
    for field, value in (
        ("step_name", args.step),
        ("flags", args.flags),
        ("binary_path", args.binary),
        ("docker_image", args.docker_image),
        ("docker_options", args.docker_options),
        ("sidecar_image", args.sidecar_image),
        ("sidecar_options", args.sidecar_options),
        ("container_command", args.container_command),
    ):
        if value:
            overrides[field] = value
    if args.export_pipeline_env:
        overrides["export_pipeline_environment"] = True
    return dataclasses.replace(action, **overrides)


def main(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Returns:
        Exit code: 0 on success, the step's exit code when it failed
        (128 + N when killed by signal N, 1 if it only reported a fatal
        condition), 1 on configuration or spawn errors.
    """
    args = _build_parser().parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )
    SecretFilter.register_env_secrets([*secret_env_vars(), *_TOKEN_ENV_VARS])

    try:
        action = _apply_overrides(ActionConfig.load(args.config), args)
        run = run_step(
            action, pipeline_env=os.environ.get(PIPELINE_ENV_INPUT, "")
        )
    except StepRunnerError as e:
        logger.error("%s", e)
        return 1

    if run.pipeline_env is not None:
        print(run.pipeline_env)

    if run.result is not None and run.result.failed:
        exit_code = run.result.exit_code
        if exit_code < 0:
            # Killed by signal N: report 128 + N like a shell
            return 128 - exit_code
        return exit_code or 1
    return 0


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())
