# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for steprunner/engine.py -- step binary execution."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from steprunner.engine import (
    BINARY_MOUNT_POINT,
    ExecutionEngine,
    ExecutionResult,
    ExecutionTarget,
    mounted_binary_path,
)
from steprunner.errors import ConfigurationError, SpawnError
from steprunner.session import Session
from tests.conftest import create_mock_popen


class TestExecutionTarget:
    """Tests for ExecutionTarget."""

    def test_local(self) -> None:
        """local() targets the host."""
        assert ExecutionTarget.local().is_local

    def test_container(self) -> None:
        """container() targets the given container."""
        target = ExecutionTarget.container("abc")
        assert not target.is_local
        assert target.container_id == "abc"


class TestExecutionResult:
    """Tests for ExecutionResult."""

    def test_success(self) -> None:
        """Exit 0 without fatal text is not a failure."""
        result = ExecutionResult(output="", error="", exit_code=0)
        assert not result.failed
        assert not result.fatal_detected

    def test_nonzero_exit_fails(self) -> None:
        """A nonzero exit code is a failure."""
        assert ExecutionResult("", "", exit_code=2).failed

    def test_fatal_text_fails(self) -> None:
        """Fatal text with exit 0 still counts as failure."""
        result = ExecutionResult("", "", exit_code=0, fatal_text="fatal\n")
        assert result.fatal_detected
        assert result.failed


class TestBuildCommand:
    """Tests for ExecutionEngine.build_command()."""

    def test_local(self, session: Session, binary_path: Path) -> None:
        """Host invocation runs the binary directly."""
        engine = ExecutionEngine(session)
        assert engine.build_command("version", [], ExecutionTarget.local()) == [
            str(binary_path),
            "version",
        ]

    def test_container_exec(self, session: Session) -> None:
        """Container invocation goes through the runtime's exec."""
        engine = ExecutionEngine(session)
        cmd = engine.build_command(
            "mavenBuild", ["--flag1"], ExecutionTarget.container("cid-1")
        )
        assert cmd == [
            "docker",
            "exec",
            "cid-1",
            f"{BINARY_MOUNT_POINT}/step",
            "mavenBuild",
            "--flag1",
        ]

    def test_default_target_is_main_container(self, session: Session) -> None:
        """Without explicit target the running main container is used."""
        session.main_container_id = "main-1"
        engine = ExecutionEngine(session, "podman")
        cmd = engine.build_command("step")
        assert cmd[:3] == ["podman", "exec", "main-1"]

    def test_default_target_host_without_container(
        self, session: Session, binary_path: Path
    ) -> None:
        """Without a main container the default target is the host."""
        engine = ExecutionEngine(session)
        assert engine.default_target().is_local
        assert engine.build_command("step")[0] == str(binary_path)

    def test_stage_name_appended(self, session: Session) -> None:
        """A configured stage name is passed as --stageName."""
        engine = ExecutionEngine(session, stage_name="build")
        cmd = engine.build_command("step", ["--x"], ExecutionTarget.local())
        assert cmd[1:] == ["step", "--x", "--stageName", "build"]

    def test_default_flags(self, session: Session) -> None:
        """Default flags are appended unless ignored."""
        engine = ExecutionEngine(session, default_flags=["--verbose"])
        local = ExecutionTarget.local()
        assert engine.build_command("s", [], local)[-1] == "--verbose"
        assert "--verbose" not in engine.build_command(
            "s", [], local, ignore_defaults=True
        )

    def test_missing_binary(self) -> None:
        """An unresolved binary path is a configuration error."""
        engine = ExecutionEngine(Session())
        with pytest.raises(ConfigurationError, match="binary path"):
            engine.build_command("version")

    def test_mounted_binary_path(self) -> None:
        """Only the file name survives the mount."""
        assert mounted_binary_path(Path("/a/b/piper")) == "/steprunner/piper"


class TestExecuteOperation:
    """Tests for ExecutionEngine.execute_operation()."""

    @patch("steprunner.engine.subprocess.Popen")
    def test_success(
        self, mock_popen: MagicMock, session: Session, binary_path: Path
    ) -> None:
        """Captured output and the exit code are returned."""
        mock_popen.return_value = create_mock_popen(
            returncode=0, stdout=b"v1.2.3\n", stderr=b"info: ok\n"
        )
        engine = ExecutionEngine(session)

        result = engine.execute_operation("version", [])

        assert result.output == "v1.2.3\n"
        assert result.error == "info: ok\n"
        assert result.exit_code == 0
        assert not result.failed
        assert mock_popen.call_args[0][0] == [str(binary_path), "version"]

    @patch("steprunner.engine.subprocess.Popen")
    def test_exec_in_container(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """A container target runs through ``<cmd> exec``."""
        mock_popen.return_value = create_mock_popen()
        engine = ExecutionEngine(session)

        engine.execute_operation(
            "step", ["--flag1"], ExecutionTarget.container("abc")
        )

        assert mock_popen.call_args[0][0] == [
            "docker",
            "exec",
            "abc",
            "/steprunner/step",
            "step",
            "--flag1",
        ]

    @patch("steprunner.engine.subprocess.Popen")
    def test_fatal_line_keeps_exit_code(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """A fatal line is rewritten but the exit code is untouched."""
        mock_popen.return_value = create_mock_popen(
            returncode=0,
            stdout=b"starting\nlevel=fatal msg=broken\n",
        )
        engine = ExecutionEngine(session)

        result = engine.execute_operation("step", [])

        assert result.exit_code == 0
        assert result.fatal_detected
        assert result.failed
        assert result.output == "starting\n::error::level=fatal msg=broken\n"
        assert result.fatal_text == "level=fatal msg=broken\n"

    @patch("steprunner.engine.subprocess.Popen")
    def test_fatal_on_stderr(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """Both streams are classified."""
        mock_popen.return_value = create_mock_popen(
            returncode=3, stderr=b"fatal: bad flag"
        )
        engine = ExecutionEngine(session)

        result = engine.execute_operation("step", [])

        assert result.exit_code == 3
        assert result.error == "::error::fatal: bad flag"
        assert result.fatal_text == "fatal: bad flag"

    @patch("steprunner.engine.subprocess.Popen")
    def test_flags_not_modified(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """The caller's flag list is left as it was."""
        mock_popen.return_value = create_mock_popen()
        engine = ExecutionEngine(session, stage_name="stage")
        flags = ["--a"]

        engine.execute_operation("step", flags, ExecutionTarget.local())

        assert flags == ["--a"]

    @patch("steprunner.engine.subprocess.Popen")
    def test_extra_env_merged(
        self,
        mock_popen: MagicMock,
        session: Session,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Extra env is layered over the process environment."""
        monkeypatch.setenv("KEEP_ME", "1")
        mock_popen.return_value = create_mock_popen()
        engine = ExecutionEngine(session)

        engine.execute_operation("step", env={"EXTRA": "x"})

        env = mock_popen.call_args.kwargs["env"]
        assert env["EXTRA"] == "x"
        assert env["KEEP_ME"] == "1"

    @patch("steprunner.engine.subprocess.Popen")
    def test_no_env_inherits(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """Without extra env the child inherits the environment as is."""
        mock_popen.return_value = create_mock_popen()
        ExecutionEngine(session).execute_operation("step")
        assert mock_popen.call_args.kwargs["env"] is None

    @patch("steprunner.engine.subprocess.Popen")
    def test_spawn_failure(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """A process that cannot start raises SpawnError."""
        mock_popen.side_effect = FileNotFoundError("no such file")
        engine = ExecutionEngine(session)

        with pytest.raises(SpawnError) as exc_info:
            engine.execute_operation("step")
        assert str(exc_info.value) == "Execution error: no such file"

    @patch("steprunner.engine.subprocess.Popen")
    def test_read_failure_kills_process(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """A failing stream read kills the child and raises SpawnError."""
        process = create_mock_popen()
        process.stdout = MagicMock()
        process.stdout.read1.side_effect = OSError("broken pipe")
        mock_popen.return_value = process
        engine = ExecutionEngine(session)

        with pytest.raises(SpawnError, match="broken pipe"):
            engine.execute_operation("step")
        process.kill.assert_called_once()

    @patch("steprunner.engine.subprocess.Popen")
    def test_read_failure_quotes_fatal_text(
        self, mock_popen: MagicMock, session: Session
    ) -> None:
        """Fatal lines seen before the failure are quoted in the error."""
        process = create_mock_popen()
        process.stdout = MagicMock()
        process.stdout.read1.side_effect = [
            b"fatal: disk full\n",
            OSError("broken pipe"),
        ]
        mock_popen.return_value = process
        engine = ExecutionEngine(session)

        with pytest.raises(SpawnError) as exc_info:
            engine.execute_operation("step")
        assert str(exc_info.value) == (
            "Execution error: broken pipe: fatal: disk full\n"
        )

    def test_missing_binary_raises_before_spawn(self) -> None:
        """No process is started without a binary path."""
        engine = ExecutionEngine(Session())
        with (
            patch("steprunner.engine.subprocess.Popen") as mock_popen,
            pytest.raises(ConfigurationError),
        ):
            engine.execute_operation("version")
        mock_popen.assert_not_called()
