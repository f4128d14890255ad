# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container lifecycle for step execution.

Starts the main container the step runs in, the optional sidecar
container, and the private network they share. Every resource started
here is recorded in the ``Session`` so ``cleanup_all()`` can tear it
down later.

Lifecycle::

    manager = ContainerManager(session)
    manager.run_containers(action, context)  # network, sidecar, main
    ...                                      # engine.execute_operation()
    cleanup_all(session, manager)            # always, in a finally

Creation order: the network before any container that references it,
and the sidecar before the main container.

Main container::

    run --tty --detach --rm --user 1000:1000
        --volume <cwd>:<cwd> --volume <binaryDir>:/steprunner
        --workdir <cwd> [options...] --name <uuid>
        [--network <net> [--network-alias <alias>]]
        [env flags...] <image> cat

The main container idles on ``cat`` (kept alive by ``--tty``) while
operations are run in it through ``exec``.
"""

from __future__ import annotations

import logging
import os
import shlex
import uuid
from collections.abc import Sequence

from steprunner.config import ActionConfig, ContextConfig
from steprunner.container._runtime import run_runtime
from steprunner.engine import BINARY_MOUNT_POINT
from steprunner.environment import (
    container_env_flags,
    parse_env_vars,
    proxy_env_flags,
)
from steprunner.errors import ConfigurationError
from steprunner.session import ContainerRole, Session


logger = logging.getLogger(__name__)

#: Prefix of generated private network names.
NETWORK_PREFIX = "sidecar-"

#: User the main container runs as.
CONTAINER_USER = "1000:1000"

#: Grace period before the runtime force-kills a stopping container.
DEFAULT_STOP_GRACE_SECONDS = 1

_NOOP_COMMAND = "cat"


def split_options(options: str | Sequence[str] | None) -> list[str]:
    """Split runtime options given as a string or a list of strings.

    Each string is split shell-style and list entries are flattened, so
    ``["-u 0", "--privileged"]`` becomes ``["-u", "0", "--privileged"]``.
    """
    if not options:
        return []
    if isinstance(options, str):
        return shlex.split(options)
    args: list[str] = []
    for option in options:
        args.extend(shlex.split(option))
    return args


class ContainerManager:
    """Starts and stops the containers and network of one session.

    Args:
        session: Invocation session that receives the created handles.
        container_command: Container runtime CLI (docker or podman).
    """

    def __init__(
        self,
        session: Session,
        container_command: str = "docker",
    ) -> None:
        self._session = session
        self._cmd = container_command

    @property
    def session(self) -> Session:
        return self._session

    @property
    def container_command(self) -> str:
        return self._cmd

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def run_containers(
        self,
        action: ActionConfig,
        context: ContextConfig | None = None,
    ) -> str | None:
        """Start everything the step asked for, in dependency order.

        With a sidecar image (explicit or from context): network, then
        sidecar. Then the main container, if an image resolves.

        Returns:
            Main container id, or None when no main container runs.

        Raises:
            ConfigurationError: If a main image resolves but the binary
                path does not; raised before any runtime call.
            SpawnError: If a runtime call fails.
        """
        context = context or ContextConfig()
        main_image = action.docker_image or context.docker_image
        if main_image and self._session.binary_path is None:
            raise ConfigurationError(
                "Can't start container: binary path not defined"
            )

        sidecar_image = action.sidecar_image or context.sidecar_image
        if sidecar_image:
            self.create_network()
            self.start_sidecar_container(action, context, sidecar_image)

        return self.start_main_container(
            action.docker_image,
            action.docker_options,
            context,
            env_vars=action.docker_env_vars,
        )

    def start_main_container(
        self,
        image: str = "",
        options: str | Sequence[str] = "",
        context: ContextConfig | None = None,
        *,
        env_vars: str = "",
    ) -> str | None:
        """Start the detached main container the step runs in.

        Image and options resolve explicit argument first, then context
        configuration. An empty image is not an error: nothing is
        started and None is returned.

        Args:
            image: Explicit image.
            options: Explicit extra ``run`` options.
            context: Context configuration supplying defaults.
            env_vars: Explicit JSON object of extra container variables.

        Returns:
            Generated container id, or None if no image resolved.

        Raises:
            ConfigurationError: If the binary path is not resolved.
            SpawnError: If the runtime call fails.
        """
        context = context or ContextConfig()
        image = image or context.docker_image
        if not image:
            return None

        binary_path = self._session.binary_path
        if binary_path is None:
            raise ConfigurationError(
                "Can't start container: binary path not defined"
            )

        container_id = str(uuid.uuid4())
        cwd = os.getcwd()
        self._session.record_container(ContainerRole.MAIN, container_id)
        logger.info("Starting image %s as container %s", image, container_id)

        args = [
            "run",
            "--tty",
            "--detach",
            "--rm",
            "--user",
            CONTAINER_USER,
            "--volume",
            f"{cwd}:{cwd}",
            "--volume",
            f"{binary_path.parent}:{BINARY_MOUNT_POINT}",
            "--workdir",
            cwd,
            *split_options(options or context.docker_options),
            "--name",
            container_id,
        ]
        args.extend(self._network_args(context.docker_name))
        args.extend(parse_env_vars(env_vars, context.docker_env_vars))
        args.extend(proxy_env_flags())
        args.extend(container_env_flags())
        args.extend([image, _NOOP_COMMAND])

        run_runtime(self._cmd, args)
        return container_id

    def start_sidecar_container(
        self,
        action: ActionConfig,
        context: ContextConfig | None,
        sidecar_image: str,
    ) -> str:
        """Start the detached sidecar container.

        The id is recorded in the session before the runtime is called,
        so a partially started sidecar is still cleaned up.

        Args:
            action: Action configuration (explicit options, env vars).
            context: Context configuration supplying defaults.
            sidecar_image: Resolved sidecar image.

        Returns:
            Generated container id.

        Raises:
            SpawnError: If the runtime call fails.
        """
        context = context or ContextConfig()
        container_id = str(uuid.uuid4())
        self._session.record_container(ContainerRole.SIDECAR, container_id)
        logger.info(
            "Starting image %s as sidecar %s", sidecar_image, container_id
        )

        args = [
            "run",
            "--detach",
            "--rm",
            *split_options(action.sidecar_options or context.sidecar_options),
            "--name",
            container_id,
        ]
        args.extend(self._network_args(context.sidecar_name))
        args.extend(
            parse_env_vars(action.sidecar_env_vars, context.sidecar_env_vars)
        )
        args.extend(proxy_env_flags())
        args.extend(container_env_flags())
        args.append(sidecar_image)

        run_runtime(self._cmd, args)
        return container_id

    def create_network(self) -> str | None:
        """Create the private network shared by sidecar and main container.

        The runtime call counts as successful when it prints nothing; only
        then is the network recorded. Any output is treated as an
        already-handled condition and nothing is recorded.

        Returns:
            Network name when recorded, else None.

        Raises:
            SpawnError: If the runtime call fails.
        """
        network_name = f"{NETWORK_PREFIX}{uuid.uuid4()}"
        logger.info("Creating network %s", network_name)

        output = run_runtime(self._cmd, ["network", "create", network_name])
        if output != "":
            # TODO: re-check against the runtime's documented output;
            # docker prints the new network id here.
            logger.debug(
                "Network create for %s returned output, not recording: %s",
                network_name,
                output.strip(),
            )
            return None

        self._session.network_id = network_name
        logger.info("Network created")
        return network_name

    def _network_args(self, alias: str) -> list[str]:
        network_id = self._session.network_id
        if not network_id:
            if alias:
                logger.debug(
                    "No network recorded, ignoring network alias %s", alias
                )
            return []
        args = ["--network", network_id]
        if alias:
            args.extend(["--network-alias", alias])
        return args

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def remove_network(self, network_id: str) -> None:
        """Remove a network. No-op for an empty id.

        Raises:
            SpawnError: If the runtime call fails.
        """
        if not network_id:
            logger.debug("no network to remove")
            return

        run_runtime(self._cmd, ["network", "remove", network_id])
        logger.debug("Removed network: %s", network_id)

    def stop_container(
        self,
        container_id: str,
        grace_seconds: int = DEFAULT_STOP_GRACE_SECONDS,
    ) -> None:
        """Stop a container. No-op for an empty id.

        The containers run with ``--rm``, so stopping also removes them.

        Raises:
            SpawnError: If the runtime call fails.
        """
        if not container_id:
            logger.debug("no container to stop")
            return

        run_runtime(
            self._cmd, ["stop", f"--time={grace_seconds}", container_id]
        )
        logger.debug("Stopped container: %s", container_id)
