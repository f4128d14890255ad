# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Line classification for live step output.

The step binary can report an unrecoverable condition while still
exiting with status 0. Every complete output line is therefore checked
for a fatal marker as it arrives. Marked lines are re-emitted with an
error prefix and collected so a later spawn failure can quote them.
Classification never touches the exit code.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable


#: Substring marking an unrecoverable condition in step output.
FATAL_MARKER = "fatal"

#: Prefix given to fatal lines in the emitted log stream.
ERROR_PREFIX = "::error::"

#: Logger carrying the step's own output.
output_logger = logging.getLogger("steprunner.output")


def _log_line(level: int, line: str) -> None:
    output_logger.log(level, "%s", line.rstrip("\r\n"))


class FatalLog:
    """Fatal-marked lines collected from both output streams.

    Thread Safety:
        ``append`` may be called from the stdout and stderr readers
        concurrently.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    @property
    def text(self) -> str:
        """All collected lines, verbatim and in arrival order."""
        with self._lock:
            return "".join(self._lines)

    def __bool__(self) -> bool:
        with self._lock:
            return bool(self._lines)


class OutputClassifier:
    """Buffering transform from raw bytes to classified lines.

    Bytes are accumulated until a newline completes a line; the trailing
    partial line is classified by ``flush()`` at end of stream. One
    classifier serves one stream.
    """

    def __init__(
        self,
        fatal_log: FatalLog,
        *,
        marker: str = FATAL_MARKER,
        prefix: str = ERROR_PREFIX,
        emit: Callable[[int, str], None] = _log_line,
    ) -> None:
        self._fatal_log = fatal_log
        self._marker = marker
        self._prefix = prefix
        self._emit = emit
        self._buffer = bytearray()
        self._captured: list[str] = []

    def feed(self, data: bytes) -> list[str]:
        """Consume a chunk and classify every line it completes.

        Returns:
            The (possibly rewritten) lines completed by this chunk.
        """
        self._buffer.extend(data)
        lines: list[str] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buffer[: idx + 1])
            del self._buffer[: idx + 1]
            lines.append(self._classify(raw))
        return lines

    def flush(self) -> list[str]:
        """Classify whatever partial line is left at end of stream."""
        if not self._buffer:
            return []
        raw = bytes(self._buffer)
        self._buffer.clear()
        return [self._classify(raw)]

    @property
    def text(self) -> str:
        """Everything classified so far, with fatal lines rewritten."""
        return "".join(self._captured)

    def _classify(self, raw: bytes) -> str:
        line = raw.decode("utf-8", errors="replace")
        if self._marker in line:
            self._fatal_log.append(line)
            line = self._prefix + line
            self._emit(logging.ERROR, line)
        else:
            self._emit(logging.INFO, line)
        self._captured.append(line)
        return line
