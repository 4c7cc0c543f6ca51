"""Process creation: the "run command, get a handle" entry points.

dx-exec runtime module v0.1.0

This module provides:
- ``spawn``: start a background process and return its Controller
- ``run``: start, wait, and return a Result (optionally with a timeout)
- ``capture`` / ``succeeds``: ``run`` with captured / discarded output
- ``run_tool``: invoke another dx tool with the call tree propagated

Commands are always argument lists; nothing goes through a shell.
On POSIX every child starts in its own session (start_new_session=True)
so Ctrl+C in the parent's terminal is not delivered to it directly.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import IO, Any

from ..config import get_config
from ..context import ExecContext, detect_context
from .controller import Controller
from .errors import UsageError, WaitTimeout
from .result import Result
from .types import IS_WINDOWS, LaunchOptions, StreamMode

__all__ = [
    "spawn",
    "run",
    "capture",
    "succeeds",
    "run_tool",
]

logger = logging.getLogger(__name__)

_POPEN_STREAM: dict[StreamMode, int | None] = {
    StreamMode.INHERIT: None,
    StreamMode.DISCARD: subprocess.DEVNULL,
    StreamMode.PIPE: subprocess.PIPE,
    StreamMode.CAPTURE: subprocess.PIPE,
}

ModeLike = StreamMode | str
CommandLike = Sequence[str | os.PathLike] | str


def _normalize_command(command: CommandLike) -> list[str]:
    if isinstance(command, (str, os.PathLike)):
        command = [command]
    argv = [os.fspath(part) if isinstance(part, os.PathLike) else str(part) for part in command]
    if not argv:
        raise UsageError("command must not be empty")
    return argv


def _build_env(overrides: Mapping[str, str] | None) -> dict[str, str] | None:
    """Merge overrides onto the current environment (None = inherit as-is)."""
    if overrides is None:
        return None
    env = dict(os.environ)
    env.update({str(key): str(value) for key, value in overrides.items()})
    return env


def _start(argv: list[str], opts: LaunchOptions) -> subprocess.Popen:
    """Create the OS process. Raises OSError if it cannot be started."""
    kwargs: dict[str, Any] = {}
    if opts.text:
        kwargs.update(text=True, encoding="utf-8", errors="replace")
    if not IS_WINDOWS:
        kwargs["start_new_session"] = True

    process = subprocess.Popen(
        argv,
        stdin=_POPEN_STREAM[opts.stdin],
        stdout=_POPEN_STREAM[opts.stdout],
        stderr=_POPEN_STREAM[opts.stderr],
        cwd=opts.cwd,
        env=_build_env(opts.env),
        **kwargs,
    )
    logger.debug(f"Started subprocess pid={process.pid} argv={argv[0]} cwd={opts.cwd}")
    return process


def spawn(
    command: CommandLike,
    *,
    name: str | None = None,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    stdin: ModeLike = StreamMode.DISCARD,
    stdout: ModeLike = StreamMode.DISCARD,
    stderr: ModeLike = StreamMode.DISCARD,
    text: bool = False,
) -> Controller:
    """Start a command in the background.

    Args:
        command: Command and arguments
        name: Optional label for diagnostics
        cwd: Working directory
        env: Environment overrides (merged onto the current environment)
        stdin: inherit / discard / pipe
        stdout: inherit / discard / pipe
        stderr: inherit / discard / pipe
        text: Open pipes in text mode (utf-8)

    Returns:
        Controller for the new process

    Raises:
        OSError: If the process could not be created
        UsageError: For an empty command or an unsupported stream mode
    """
    argv = _normalize_command(command)
    opts = LaunchOptions(
        cwd=Path(cwd) if cwd is not None else None,
        env=env,
        stdin=StreamMode.from_string(stdin),
        stdout=StreamMode.from_string(stdout),
        stderr=StreamMode.from_string(stderr),
        text=text,
        name=name,
    )
    for mode in (opts.stdin, opts.stdout, opts.stderr):
        if mode is StreamMode.CAPTURE:
            raise UsageError("spawn() cannot capture; use 'pipe' and read from the Controller")

    process = _start(argv, opts)
    return Controller(
        process.pid,
        argv,
        name=name,
        stdin=process.stdin,
        stdout=process.stdout,
        stderr=process.stderr,
        options=opts.as_dict(),
        process=process,
    )


class _Drain:
    """Reads a pipe to EOF in a daemon thread so the child never blocks on it."""

    def __init__(self, stream: IO[Any], label: str, text: bool) -> None:
        self._stream = stream
        self._empty: Any = "" if text else b""
        self._chunks: list[Any] = []
        self._thread = threading.Thread(
            target=self._run, name=f"dx-exec-drain-{label}", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        try:
            while True:
                chunk = self._stream.read(65536)
                if not chunk:
                    break
                self._chunks.append(chunk)
        except (OSError, ValueError) as e:
            logger.debug(f"Drain stopped early: {e}")
        finally:
            self._stream.close()

    def join(self, timeout: float | None = None) -> Any:
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(f"{self._thread.name} still open; a descendant may hold the pipe")
        return self._empty.join(self._chunks)


def run(
    command: CommandLike,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    stdin: ModeLike = StreamMode.INHERIT,
    stdout: ModeLike = StreamMode.INHERIT,
    stderr: ModeLike = StreamMode.INHERIT,
    text: bool = True,
) -> Result:
    """Run a command to completion.

    Never raises for a non-zero exit or a launch failure; both come back
    as a Result (a launch failure has exit code 127).

    Args:
        command: Command and arguments
        cwd: Working directory
        env: Environment overrides
        timeout: Seconds before the command is terminated (SIGTERM, then
            SIGKILL after the run kill grace); the Result is marked timed out
        stdin: inherit / discard
        stdout: inherit / discard / capture
        stderr: inherit / discard / capture
        text: Decode captured output as utf-8

    Returns:
        Result of the command
    """
    argv = _normalize_command(command)
    opts = LaunchOptions(
        cwd=Path(cwd) if cwd is not None else None,
        env=env,
        stdin=StreamMode.from_string(stdin),
        stdout=StreamMode.from_string(stdout),
        stderr=StreamMode.from_string(stderr),
        timeout=timeout,
        text=text,
    )
    if StreamMode.PIPE in (opts.stdin, opts.stdout, opts.stderr) or opts.stdin is StreamMode.CAPTURE:
        raise UsageError("run() has no Controller to hand pipes to; use spawn() or 'capture'")

    config = get_config()
    started = time.monotonic()
    try:
        process = _start(argv, opts)
    except OSError as e:
        logger.debug(f"Failed to start {argv[0]}: {e}")
        return Result.from_exception(
            e,
            command=argv,
            duration=time.monotonic() - started,
            options=opts.as_dict(),
        )

    ctrl = Controller(process.pid, argv, options=opts.as_dict(), process=process)
    drains = {
        label: _Drain(stream, label, opts.text)
        for label, stream in (("stdout", process.stdout), ("stderr", process.stderr))
        if stream is not None
    }

    timed_out = False
    try:
        result = ctrl.result(timeout=timeout)
    except WaitTimeout:
        logger.info(f"Command timed out after {timeout}s: {argv[0]} pid={ctrl.pid}")
        timed_out = True
        result = ctrl.terminate(timeout=config.run_kill_grace)

    join_timeout = config.kill_grace if timed_out else None
    captured = {label: drain.join(join_timeout) for label, drain in drains.items()}
    if captured:
        result = result.with_capture(captured.get("stdout"), captured.get("stderr"))
    if timed_out and not result.timed_out:
        result = result.with_options(timed_out=True)
    return result


def capture(command: CommandLike, **kwargs: Any) -> Result:
    """Run a command and collect stdout/stderr into the Result."""
    kwargs.setdefault("stdout", StreamMode.CAPTURE)
    kwargs.setdefault("stderr", StreamMode.CAPTURE)
    return run(command, **kwargs)


def succeeds(command: CommandLike, **kwargs: Any) -> bool:
    """Run a command with output discarded; True if it exited 0."""
    kwargs.setdefault("stdout", StreamMode.DISCARD)
    kwargs.setdefault("stderr", StreamMode.DISCARD)
    return run(command, **kwargs).success


def run_tool(
    tool_name: str,
    *args: str,
    context: ExecContext | None = None,
    capture_output: bool = False,
    **kwargs: Any,
) -> Result:
    """Run another dx tool, telling it who invoked it.

    Args:
        tool_name: Tool to run (``dx <tool_name> ...``)
        *args: Arguments for the tool
        context: Caller's context (detected if omitted)
        capture_output: Capture instead of streaming
        **kwargs: Passed through to ``run``

    Returns:
        Result of the tool invocation
    """
    ctx = context if context is not None else detect_context()
    env = dict(kwargs.pop("env", None) or {})
    env.update(ctx.child_env())

    argv = [get_config().tool_executable, tool_name, *args]
    logger.debug(f"run_tool: {tool_name} call_tree={env['DX_CALL_TREE']!r}")
    if capture_output:
        return capture(argv, env=env, **kwargs)
    return run(argv, env=env, **kwargs)
