# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Unconditional teardown of session resources.

``cleanup_all()`` runs once per invocation, from a ``finally`` block,
whatever happened during setup or execution. Each teardown step is
attempted independently and its failure only logged at debug level, so
a failed teardown never masks the step's own result or error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from steprunner.container.manager import ContainerManager
from steprunner.errors import CleanupWarning
from steprunner.session import Session


logger = logging.getLogger(__name__)


def _attempt(description: str, action: Callable[[], None]) -> bool:
    """Run one teardown step, logging instead of raising on failure."""
    try:
        action()
    except Exception as e:
        warning = CleanupWarning(f"Failed to {description}: {e}")
        logger.debug("%s", warning, exc_info=True)
        return False
    return True


def cleanup_all(session: Session, manager: ContainerManager) -> bool:
    """Tear down every resource recorded in *session*, then clear it.

    Stops the main container, stops the sidecar, and removes the
    network, in that order. Network removal is always attempted (the
    manager no-ops when no network is recorded).

    Args:
        session: Session whose handles are torn down.
        manager: Container manager issuing the runtime calls.

    Returns:
        True if every attempted step succeeded.
    """
    main_id = session.main_container_id
    sidecar_id = session.sidecar_container_id
    network_id = session.network_id

    ok = True
    try:
        if main_id:
            ok &= _attempt(
                f"stop container {main_id}",
                lambda: manager.stop_container(main_id),
            )
        if sidecar_id:
            ok &= _attempt(
                f"stop sidecar {sidecar_id}",
                lambda: manager.stop_container(sidecar_id),
            )
        ok &= _attempt(
            f"remove network {network_id}",
            lambda: manager.remove_network(network_id),
        )
    finally:
        session.clear()

    if not ok:
        logger.debug("Cleanup finished with failures")
    return ok


@contextmanager
def managed_session(manager: ContainerManager) -> Iterator[Session]:
    """Yield the manager's session and always clean it up on exit.

    Example::

        with managed_session(manager) as session:
            manager.run_containers(action, context)
            engine.execute_operation(step, flags)
    """
    try:
        yield manager.session
    finally:
        cleanup_all(manager.session, manager)
