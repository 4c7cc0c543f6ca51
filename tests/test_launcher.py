"""Tests for the launcher entry points (spawn, run, capture, succeeds, run_tool)."""

from __future__ import annotations

import os
import signal
import sys
import time
from pathlib import Path

import pytest

# Make sure src is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dx_exec.config import reload_config
from dx_exec.context import ExecContext
from dx_exec.runtime import (
    COMMAND_NOT_INVOKED,
    StreamMode,
    UsageError,
    capture,
    run,
    run_tool,
    spawn,
    succeeds,
)
from dx_exec.runtime.types import IS_WINDOWS

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")


def python_cmd(code: str) -> list[str]:
    return [sys.executable, "-c", code]


# =============================================================================
# run / capture / succeeds
# =============================================================================


class TestRun:
    """Tests for run()."""

    @pytest.mark.timeout(10)
    def test_exit_codes(self):
        assert run(python_cmd("pass")).exit_code == 0
        assert run(python_cmd("import sys; sys.exit(7)")).exit_code == 7

    @pytest.mark.timeout(10)
    def test_inherit_does_not_capture(self):
        result = run(python_cmd("pass"))
        assert result.stdout is None
        assert result.stderr is None

    def test_missing_executable(self):
        result = run(["dx-exec-definitely-not-installed-xyz"])

        assert result.exit_code == COMMAND_NOT_INVOKED
        assert isinstance(result.start_error, FileNotFoundError)
        assert result.pid is None
        assert result.success is False

    def test_missing_cwd(self, tmp_path):
        result = run(python_cmd("pass"), cwd=tmp_path / "missing")

        assert result.exit_code == COMMAND_NOT_INVOKED
        assert isinstance(result.start_error, OSError)

    def test_empty_command(self):
        with pytest.raises(UsageError):
            run([])

    def test_pipe_mode_rejected(self):
        with pytest.raises(UsageError):
            run(python_cmd("pass"), stdout="pipe")

    def test_capture_stdin_rejected(self):
        with pytest.raises(UsageError):
            run(python_cmd("pass"), stdin=StreamMode.CAPTURE)

    @pytest.mark.timeout(10)
    def test_cwd(self, temp_workspace):
        result = capture(python_cmd("import os; print(os.getcwd())"), cwd=temp_workspace)

        assert Path(result.stdout.strip()).resolve() == temp_workspace.resolve()
        assert result.options["cwd"] == str(temp_workspace)

    @pytest.mark.timeout(10)
    def test_env_is_merged(self, monkeypatch):
        monkeypatch.setenv("DX_TEST_INHERITED", "parent")

        result = capture(
            python_cmd("import os; print(os.environ['DX_TEST_INHERITED'], os.environ['DX_TEST_EXTRA'])"),
            env={"DX_TEST_EXTRA": "child"},
        )

        assert result.stdout.strip() == "parent child"

    @pytest.mark.timeout(10)
    def test_options_recorded(self):
        result = run(python_cmd("pass"), stdout="discard", stderr="null", timeout=5)

        assert result.options["stdout"] == "discard"
        assert result.options["stderr"] == "discard"
        assert result.options["timeout"] == 5
        assert result.timed_out is False


class TestRunTimeout:
    """Timeout handling in run()."""

    @pytest.mark.timeout(10)
    def test_timeout_kills_stubborn_process(self, stubborn_cli):
        started = time.monotonic()
        result = capture([*stubborn_cli, "--duration", "30", "--ignore-term"], timeout=0.5)
        elapsed = time.monotonic() - started

        assert result.timed_out is True
        assert result.signal_number == signal.SIGKILL
        assert result.success is False
        assert result.stdout.startswith("ready")
        assert elapsed < 5.0

    @pytest.mark.timeout(10)
    def test_timeout_on_cooperative_process(self, stubborn_cli):
        result = capture([*stubborn_cli, "--duration", "30"], timeout=0.5)

        assert result.timed_out is True
        assert result.success is False

    @pytest.mark.timeout(10)
    def test_finishes_within_timeout(self):
        result = capture(python_cmd("print('done')"), timeout=5)

        assert result.success
        assert result.timed_out is False
        assert result.stdout == "done\n"


class TestCapture:
    """Tests for capture() and succeeds()."""

    @pytest.mark.timeout(10)
    def test_text_capture(self):
        result = capture(python_cmd("import sys; print('out'); print('err', file=sys.stderr)"))

        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert result.output == "out\nerr\n"
        assert result.stdout_lines == ["out"]

    @pytest.mark.timeout(10)
    def test_binary_capture(self):
        result = capture(python_cmd("import sys; sys.stdout.buffer.write(b'\\x00\\xff')"), text=False)

        assert result.stdout == b"\x00\xff"
        assert result.stderr == b""

    @pytest.mark.timeout(10)
    def test_capture_large_output(self):
        result = capture(python_cmd("import sys; sys.stdout.write('x' * 500000)"))

        assert len(result.stdout) == 500000

    @pytest.mark.timeout(10)
    def test_capture_failure_keeps_output(self):
        result = capture(python_cmd("import sys; print('partial'); sys.exit(2)"))

        assert result.exit_code == 2
        assert result.stdout == "partial\n"

    @pytest.mark.timeout(10)
    def test_stdout_only(self):
        result = capture(python_cmd("print('x')"), stderr="discard")

        assert result.stdout == "x\n"
        assert result.stderr is None

    @pytest.mark.timeout(10)
    def test_succeeds(self):
        assert succeeds(python_cmd("print('quiet')")) is True
        assert succeeds(python_cmd("import sys; sys.exit(1)")) is False
        assert succeeds(["dx-exec-definitely-not-installed-xyz"]) is False


# =============================================================================
# spawn
# =============================================================================


class TestSpawn:
    """Tests for spawn()."""

    def test_capture_rejected(self):
        with pytest.raises(UsageError):
            spawn(python_cmd("pass"), stdout="capture")

    def test_unknown_mode_rejected(self):
        with pytest.raises(UsageError):
            spawn(python_cmd("pass"), stdout="sideways")

    def test_missing_executable_raises(self):
        with pytest.raises(FileNotFoundError):
            spawn(["dx-exec-definitely-not-installed-xyz"])

    @pytest.mark.timeout(10)
    def test_new_session(self):
        ctrl = spawn(python_cmd("import os; print(os.getsid(0))"), stdout="pipe", text=True)

        sid = int(ctrl.read_stdout().strip())
        ctrl.result()

        assert sid == ctrl.pid
        assert sid != os.getsid(0)

    @pytest.mark.timeout(10)
    def test_string_command(self):
        ctrl = spawn("true")
        assert ctrl.command == ("true",)
        assert ctrl.result().success


# =============================================================================
# run_tool
# =============================================================================


class TestRunTool:
    """Tests for run_tool()."""

    @pytest.fixture
    def python_as_tool(self, monkeypatch):
        # run_tool builds [executable, tool_name, *args]; "-c" as the tool
        # name lets the interpreter stand in for a dx binary.
        monkeypatch.setenv("DX_TOOL_EXECUTABLE", sys.executable)
        reload_config()

    @pytest.mark.timeout(10)
    def test_call_tree_propagated(self, python_as_tool):
        ctx = ExecContext(call_tree=("ci",), current_tool="pre-commit")
        script = (
            "import os; "
            "print(os.environ['DX_CALL_TREE']); "
            "print(os.environ['DX_INVOKED_FROM_TOOL'])"
        )

        result = run_tool("-c", script, context=ctx, capture_output=True)

        assert result.success
        assert result.stdout_lines == ["ci:pre-commit", "1"]

    @pytest.mark.timeout(10)
    def test_context_flags_and_extra_env(self, python_as_tool):
        ctx = ExecContext(agent_mode=True, interactive=False, ci=True)
        script = (
            "import os; "
            "print(os.environ['DX_AGENT_MODE'], os.environ['DX_INTERACTIVE'], "
            "os.environ['DX_CI'], os.environ['EXTRA'])"
        )

        result = run_tool("-c", script, context=ctx, capture_output=True, env={"EXTRA": "yes"})

        assert result.stdout.strip() == "1 0 1 yes"

    @pytest.mark.timeout(10)
    def test_exit_code_passthrough(self, python_as_tool):
        result = run_tool("-c", "import sys; sys.exit(9)", context=ExecContext(), stdout="discard")
        assert result.exit_code == 9

    def test_missing_tool_executable(self, monkeypatch):
        monkeypatch.setenv("DX_TOOL_EXECUTABLE", "dx-exec-definitely-not-installed-xyz")
        reload_config()

        result = run_tool("lint", context=ExecContext())

        assert result.exit_code == COMMAND_NOT_INVOKED
        assert result.command == ("dx-exec-definitely-not-installed-xyz", "lint")
