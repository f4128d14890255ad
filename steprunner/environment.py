# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Environment variables propagated into step containers.

Most variables are forwarded by name only (``--env NAME``): the
container runtime copies the value from its own environment, so no
value passes through this module. Proxy settings are the exception and
are forwarded by value, and user-supplied variable maps are rendered as
``--env KEY=value``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping


logger = logging.getLogger(__name__)

#: Variables the step binary uses to detect which orchestrator it runs in.
ORCHESTRATOR_ENV_VARS = (
    "GITHUB_ACTION",
    "GITHUB_ACTIONS",
)

#: Build and commit metadata.
BUILD_ENV_VARS = (
    "GITHUB_JOB",
    "GITHUB_RUN_ID",
    "GITHUB_REF",
    "GITHUB_REF_NAME",
    "GITHUB_SERVER_URL",
    "GITHUB_API_URL",
    "GITHUB_REPOSITORY",
    "GITHUB_SHA",
)

#: Pull request metadata.
PULL_REQUEST_ENV_VARS = (
    "GITHUB_HEAD_REF",
    "GITHUB_BASE_REF",
    "GITHUB_EVENT_PULL_REQUEST_NUMBER",
)

#: Vault app-role credentials read by the step binary.
SECRET_ENV_VARS = (
    "PIPER_vaultAppRoleID",
    "PIPER_vaultAppRoleSecretID",
)

PROXY_ENV_VARS = (
    "http_proxy",
    "https_proxy",
    "no_proxy",
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "NO_PROXY",
)


def orchestrator_env_vars() -> list[str]:
    """Names identifying the orchestrator to the step binary."""
    return list(ORCHESTRATOR_ENV_VARS)


def build_env_vars() -> list[str]:
    """Names carrying build and commit metadata."""
    return list(BUILD_ENV_VARS)


def pull_request_env_vars() -> list[str]:
    """Names carrying pull request metadata."""
    return list(PULL_REQUEST_ENV_VARS)


def secret_env_vars() -> list[str]:
    """Names of secret placeholders (vault role credentials)."""
    return list(SECRET_ENV_VARS)


def env_flags(names: Iterable[str]) -> list[str]:
    """Render ``--env NAME`` pairs for forwarding variables by name."""
    flags: list[str] = []
    for name in names:
        flags.extend(["--env", name])
    return flags


def container_env_flags() -> list[str]:
    """Name-only ``--env`` pairs for every whitelisted variable.

    Order: orchestrator, build, pull request, secrets.
    """
    return env_flags(
        [
            *orchestrator_env_vars(),
            *build_env_vars(),
            *pull_request_env_vars(),
            *secret_env_vars(),
        ]
    )


def proxy_env_flags(environ: Mapping[str, str] | None = None) -> list[str]:
    """Forward proxy settings by value.

    Only variables that are set (and non-empty) are forwarded.

    Args:
        environ: Environment to read from (defaults to ``os.environ``).

    Returns:
        ``--env NAME=value`` pairs.
    """
    env = os.environ if environ is None else environ
    flags: list[str] = []
    for name in PROXY_ENV_VARS:
        value = env.get(name, "")
        if value:
            flags.extend(["--env", f"{name}={value}"])
    return flags


def parse_env_vars(
    explicit: str | Mapping[str, object] | None,
    contextual: str | Mapping[str, object] | None = None,
) -> list[str]:
    """Render a user-supplied variable map as ``--env KEY=value`` pairs.

    The explicit value wins over the contextual one unless it is empty.
    Either may be a mapping or a JSON object string. A string that is
    not a JSON object is ignored with a warning. Non-string values are
    rendered as JSON, so ``true`` stays ``true``.

    Args:
        explicit: Value supplied by the caller.
        contextual: Value supplied by the context configuration.

    Returns:
        ``--env`` flag pairs in mapping order.
    """
    raw = explicit if explicit else contextual
    if not raw:
        return []

    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict):
            logger.warning(
                "Environment variables value %s is not a JSON-formatted "
                "object, therefore ignoring it",
                raw,
            )
            return []
        raw = parsed

    flags: list[str] = []
    for key, value in raw.items():
        if not isinstance(value, str):
            value = json.dumps(value)
        flags.extend(["--env", f"{key}={value}"])
    return flags
