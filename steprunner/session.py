# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-invocation session state.

A ``Session`` records the ephemeral resources one invocation created so
that the setup, execution and cleanup phases see the same handles
without threading them through every call. The orchestrator creates one
instance and passes it by reference to the container manager, the
execution engine and the cleanup coordinator.

Only the container manager's start routines write handles, and only
``cleanup_all()`` clears them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ContainerRole(Enum):
    """Role tag of a container handle."""

    MAIN = "main"
    SIDECAR = "sidecar"


@dataclass
class Session:
    """Resources owned by the current invocation.

    Empty strings mean "no resource".

    Attributes:
        binary_path: Resolved path of the step binary, set once the
            acquisition collaborator has produced it.
        main_container_id: Name of the main container.
        sidecar_container_id: Name of the sidecar container.
        network_id: Name of the private network shared with the sidecar.
    """

    binary_path: Path | None = None
    main_container_id: str = ""
    sidecar_container_id: str = ""
    network_id: str = ""

    def container_id(self, role: ContainerRole) -> str:
        """Return the recorded container id for *role* (may be empty)."""
        if role is ContainerRole.MAIN:
            return self.main_container_id
        return self.sidecar_container_id

    def record_container(self, role: ContainerRole, container_id: str) -> None:
        """Record a freshly generated container id for *role*."""
        if role is ContainerRole.MAIN:
            self.main_container_id = container_id
        else:
            self.sidecar_container_id = container_id

    @property
    def is_empty(self) -> bool:
        """True when no container or network handle is recorded."""
        return not (
            self.main_container_id
            or self.sidecar_container_id
            or self.network_id
        )

    def clear(self) -> None:
        """Forget every container and network handle.

        The binary path is kept: it is not an ephemeral resource.
        """
        self.main_container_id = ""
        self.sidecar_container_id = ""
        self.network_id = ""
