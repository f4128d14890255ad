# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container lifecycle: main container, sidecar, private network, cleanup."""

from steprunner.container.cleanup import cleanup_all, managed_session
from steprunner.container.manager import (
    DEFAULT_STOP_GRACE_SECONDS,
    NETWORK_PREFIX,
    ContainerManager,
    split_options,
)


__all__ = [
    "ContainerManager",
    "DEFAULT_STOP_GRACE_SECONDS",
    "NETWORK_PREFIX",
    "cleanup_all",
    "managed_session",
    "split_options",
]
