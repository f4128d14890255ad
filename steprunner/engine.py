# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Execution engine for the step binary.

Runs one named operation of the step binary, either directly on the
host or inside the session's running main container through the
runtime's ``exec``. Both output streams are read concurrently and
classified line by line (see ``steprunner._output``).

A nonzero exit code or a fatal-marked line is reported in the returned
``ExecutionResult``. Only a failure to spawn or wait on the process is
raised, as ``SpawnError``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from steprunner._output import FATAL_MARKER, FatalLog, OutputClassifier
from steprunner.errors import ConfigurationError, SpawnError
from steprunner.session import Session


logger = logging.getLogger(__name__)

#: Where the binary's directory is mounted inside the main container.
BINARY_MOUNT_POINT = "/steprunner"

_READ_SIZE = 4096


def mounted_binary_path(binary_path: Path) -> str:
    """Path of the step binary as seen inside the main container."""
    return f"{BINARY_MOUNT_POINT}/{binary_path.name}"


def _spawn_error(cause: BaseException, fatal_log: FatalLog) -> SpawnError:
    message = f"Execution error: {cause}"
    if fatal_log:
        message += f": {fatal_log.text}"
    return SpawnError(message)


@dataclass(frozen=True)
class ExecutionTarget:
    """Where an operation runs: the host, or a running container.

    Attributes:
        container_id: Container to ``exec`` into; empty for the host.
    """

    container_id: str = ""

    @classmethod
    def local(cls) -> ExecutionTarget:
        return cls()

    @classmethod
    def container(cls, container_id: str) -> ExecutionTarget:
        return cls(container_id=container_id)

    @property
    def is_local(self) -> bool:
        return not self.container_id


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one operation.

    Attributes:
        output: Captured stdout, fatal lines rewritten.
        error: Captured stderr, fatal lines rewritten.
        exit_code: The child's own exit code.
        fatal_text: Fatal-marked lines from either stream, verbatim.
    """

    output: str
    error: str
    exit_code: int
    fatal_text: str = ""

    @property
    def fatal_detected(self) -> bool:
        return bool(self.fatal_text)

    @property
    def failed(self) -> bool:
        """Nonzero exit or a fatal marker in the output."""
        return self.exit_code != 0 or self.fatal_detected


class ExecutionEngine:
    """Invokes the step binary for named operations.

    Args:
        session: Invocation session (binary path, main container).
        container_command: Container runtime CLI used for ``exec``.
        stage_name: When set, ``--stageName <stage>`` is appended to
            every operation's flags.
        default_flags: Flags appended to every operation unless the
            call passes ``ignore_defaults=True``.
        fatal_marker: Substring that marks a fatal output line.
    """

    def __init__(
        self,
        session: Session,
        container_command: str = "docker",
        *,
        stage_name: str = "",
        default_flags: Iterable[str] = (),
        fatal_marker: str = FATAL_MARKER,
    ) -> None:
        self._session = session
        self._cmd = container_command
        self._stage_name = stage_name
        self._default_flags = list(default_flags)
        self._fatal_marker = fatal_marker

    @property
    def session(self) -> Session:
        return self._session

    def default_target(self) -> ExecutionTarget:
        """The main container if one is running, else the host."""
        return ExecutionTarget(container_id=self._session.main_container_id)

    def build_command(
        self,
        operation: str,
        flags: Iterable[str] = (),
        target: ExecutionTarget | None = None,
        *,
        ignore_defaults: bool = False,
    ) -> list[str]:
        """Build the full command line for an operation.

        Raises:
            ConfigurationError: If the binary path is not resolved yet.
        """
        binary_path = self._session.binary_path
        if binary_path is None:
            raise ConfigurationError(
                f"Can't execute {operation}: binary path not defined"
            )
        if target is None:
            target = self.default_target()

        args = [operation, *flags]
        if self._stage_name:
            args.extend(["--stageName", self._stage_name])
        if not ignore_defaults:
            args.extend(self._default_flags)

        if target.is_local:
            return [str(binary_path), *args]
        return [
            self._cmd,
            "exec",
            target.container_id,
            mounted_binary_path(binary_path),
            *args,
        ]

    def execute_operation(
        self,
        operation: str,
        flags: Iterable[str] | None = None,
        target: ExecutionTarget | None = None,
        *,
        env: Mapping[str, str] | None = None,
        ignore_defaults: bool = False,
    ) -> ExecutionResult:
        """Run one operation and classify its output.

        Args:
            operation: Operation (step) name passed to the binary.
            flags: Operation flags; the caller's list is not modified.
            target: Host or container. Defaults to the session's main
                container when one is running, else the host.
            env: Extra variables for the child process environment.
            ignore_defaults: Skip the engine's default flags.

        Returns:
            ExecutionResult with the child's exit code.

        Raises:
            ConfigurationError: If the binary path is not resolved yet.
            SpawnError: If the process cannot be started or waited on.
        """
        cmd = self.build_command(
            operation,
            flags or (),
            target,
            ignore_defaults=ignore_defaults,
        )
        child_env = {**os.environ, **env} if env else None

        logger.info("Running %s", operation)
        logger.debug("Full command: %s", " ".join(cmd))

        fatal_log = FatalLog()
        stdout_classifier = OutputClassifier(
            fatal_log, marker=self._fatal_marker
        )
        stderr_classifier = OutputClassifier(
            fatal_log, marker=self._fatal_marker
        )
        start_time = time.time()

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=child_env,
            )
        except OSError as e:
            raise _spawn_error(e, fatal_log) from e

        reader_errors: list[BaseException] = []
        stderr_reader = threading.Thread(
            target=self._pump,
            args=(process.stderr, stderr_classifier, reader_errors),
            name=f"stderr-{operation}",
            daemon=True,
        )
        stderr_reader.start()

        try:
            self._pump(process.stdout, stdout_classifier, reader_errors)
            stderr_reader.join()
            if reader_errors:
                raise reader_errors[0]
            exit_code = process.wait()
        except Exception as e:
            process.kill()
            process.wait()
            stderr_reader.join()
            logger.error("Failed while running %s: %s", operation, e)
            raise _spawn_error(e, fatal_log) from e

        elapsed = time.time() - start_time
        logger.info(
            "%s completed in %.2fs (exit_code=%d)",
            operation,
            elapsed,
            exit_code,
        )
        if fatal_log:
            logger.warning("%s reported a fatal condition", operation)

        return ExecutionResult(
            output=stdout_classifier.text,
            error=stderr_classifier.text,
            exit_code=exit_code,
            fatal_text=fatal_log.text,
        )

    @staticmethod
    def _pump(
        stream: IO[bytes] | None,
        classifier: OutputClassifier,
        errors: list[BaseException],
    ) -> None:
        """Feed a stream into its classifier until EOF."""
        if stream is None:
            return
        try:
            for chunk in iter(lambda: stream.read1(_READ_SIZE), b""):
                classifier.feed(chunk)
            classifier.flush()
        except Exception as e:
            errors.append(e)
        finally:
            stream.close()
