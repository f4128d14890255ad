# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for steprunner/_output.py -- live output line classification."""

import logging
import threading

import pytest

from steprunner._output import (
    ERROR_PREFIX,
    FATAL_MARKER,
    FatalLog,
    OutputClassifier,
)


def _recording_classifier(
    fatal_log: FatalLog | None = None,
) -> tuple[OutputClassifier, list[tuple[int, str]]]:
    emitted: list[tuple[int, str]] = []
    classifier = OutputClassifier(
        fatal_log if fatal_log is not None else FatalLog(),
        emit=lambda level, line: emitted.append((level, line)),
    )
    return classifier, emitted


class TestFatalLog:
    """Tests for FatalLog."""

    def test_empty_is_falsy(self) -> None:
        """No lines collected: falsy with empty text."""
        log = FatalLog()
        assert not log
        assert log.text == ""

    def test_collects_in_order(self) -> None:
        """Lines are joined verbatim in arrival order."""
        log = FatalLog()
        log.append("fatal one\n")
        log.append("fatal two\n")
        assert log
        assert log.text == "fatal one\nfatal two\n"

    def test_concurrent_appends(self) -> None:
        """Appends from several threads are all kept."""
        log = FatalLog()

        def worker() -> None:
            for _ in range(100):
                log.append("x")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(log.text) == 400


class TestOutputClassifier:
    """Tests for OutputClassifier."""

    def test_plain_line_passes_through(self) -> None:
        """A line without the marker is emitted unchanged at INFO."""
        classifier, emitted = _recording_classifier()
        assert classifier.feed(b"building module\n") == ["building module\n"]
        assert emitted == [(logging.INFO, "building module\n")]

    def test_fatal_line_rewritten(self) -> None:
        """A marked line gets the error prefix and lands in the fatal log."""
        fatal_log = FatalLog()
        classifier, emitted = _recording_classifier(fatal_log)

        lines = classifier.feed(b"level=fatal msg=boom\n")

        assert lines == [ERROR_PREFIX + "level=fatal msg=boom\n"]
        assert emitted == [(logging.ERROR, "::error::level=fatal msg=boom\n")]
        assert fatal_log.text == "level=fatal msg=boom\n"

    def test_marker_constants(self) -> None:
        """Default marker and prefix values."""
        assert FATAL_MARKER == "fatal"
        assert ERROR_PREFIX == "::error::"

    def test_line_split_across_chunks(self) -> None:
        """Classification waits for the newline completing a line."""
        fatal_log = FatalLog()
        classifier, emitted = _recording_classifier(fatal_log)

        assert classifier.feed(b"level=fa") == []
        assert emitted == []
        assert classifier.feed(b"tal\nnext") == [
            "::error::level=fatal\n"
        ]
        assert fatal_log.text == "level=fatal\n"

    def test_several_lines_in_one_chunk(self) -> None:
        """Every complete line in a chunk is classified separately."""
        fatal_log = FatalLog()
        classifier, _ = _recording_classifier(fatal_log)

        lines = classifier.feed(b"ok\nfatal error\nok again\n")

        assert lines == ["ok\n", "::error::fatal error\n", "ok again\n"]
        assert fatal_log.text == "fatal error\n"

    def test_flush_classifies_partial_line(self) -> None:
        """A trailing line without newline is classified at flush."""
        fatal_log = FatalLog()
        classifier, _ = _recording_classifier(fatal_log)

        classifier.feed(b"done\nfatal: no newline")
        assert classifier.flush() == ["::error::fatal: no newline"]
        assert fatal_log.text == "fatal: no newline"
        assert classifier.flush() == []

    def test_text_accumulates_rewritten_output(self) -> None:
        """text holds all classified lines with fatal lines rewritten."""
        classifier, _ = _recording_classifier()
        classifier.feed(b"a\nfatal b\n")
        classifier.feed(b"c")
        classifier.flush()
        assert classifier.text == "a\n::error::fatal b\nc"

    def test_invalid_utf8_replaced(self) -> None:
        """Undecodable bytes do not break classification."""
        classifier, _ = _recording_classifier()
        lines = classifier.feed(b"bad \xff byte\n")
        assert lines == ["bad � byte\n"]

    def test_custom_marker(self) -> None:
        """The marker is configurable."""
        fatal_log = FatalLog()
        classifier = OutputClassifier(
            fatal_log, marker="PANIC", emit=lambda level, line: None
        )
        classifier.feed(b"fatal but not marked\nPANIC now\n")
        assert fatal_log.text == "PANIC now\n"

    def test_default_emit_logs_lines(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Default emitter logs through steprunner.output, newline stripped."""
        classifier = OutputClassifier(FatalLog())
        with caplog.at_level(logging.INFO, logger="steprunner.output"):
            classifier.feed(b"hello\nfatal x\n")

        records = [
            (r.levelno, r.getMessage())
            for r in caplog.records
            if r.name == "steprunner.output"
        ]
        assert records == [
            (logging.INFO, "hello"),
            (logging.ERROR, "::error::fatal x"),
        ]
