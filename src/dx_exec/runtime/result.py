"""Immutable outcome of a command execution.

dx-exec runtime module v0.1.0

A Result is produced exactly once per process, at the moment its fate is
known: the OS failed to create it, or a wait returned a terminal status.
Non-zero exits are reported here as data, never raised.

Example:
    result = capture(["git", "rev-parse", "HEAD"])
    if result.success:
        commit = result.stdout.strip()

    run(["lint"]).and_then(lambda: run(["test"])).exit_on_failure()
"""

from __future__ import annotations

import dataclasses
import logging
import os
import signal
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

__all__ = [
    "COMMAND_NOT_INVOKED",
    "Result",
    "ResultRecord",
]

logger = logging.getLogger(__name__)

# Shell convention for "command could not be invoked"
COMMAND_NOT_INVOKED = 127

Output = str | bytes

T = TypeVar("T")


class ResultRecord(BaseModel):
    """Machine-serializable form of a Result.

    Absent fields are dropped on dump (``exclude_none=True``) so JSON/YAML
    renderers produce compact output.
    """

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        # Binary captures need not be valid UTF-8
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    command: list[str]
    pid: int | None = None
    exit_code: int | None = None
    signal_number: int | None = None
    duration: float | None = None
    success: bool = False
    stdout: str | bytes | None = None
    stderr: str | bytes | None = None
    start_error: str | None = None


def _split_lines(data: Output | None) -> list[Any]:
    """Split on newlines only; a bare \\r (progress output) stays in the record."""
    if not data:
        return []
    newline, carriage = ("\n", "\r") if isinstance(data, str) else (b"\n", b"\r")
    lines = data.split(newline)
    if not lines[-1]:
        lines.pop()
    return [line[:-1] if line.endswith(carriage) else line for line in lines]


@dataclass(frozen=True, eq=False)
class Result:
    """Outcome of running a command.

    At most one cause of termination is set: ``exit_code`` (normal exit),
    ``signal_number`` (killed by a signal) or ``start_error`` (the process
    never started; ``exit_code`` is then conventionally 127).

    Attributes:
        command: The command that was launched (never empty)
        pid: Process ID, absent when the process never started
        duration: Wall-clock seconds from launch to completion
        exit_code: Exit code 0-255, only for a normal exit
        signal_number: Terminating signal, only when killed by a signal
        stdout: Captured stdout (only when the stream was captured)
        stderr: Captured stderr (only when the stream was captured)
        start_error: OS error raised while creating the process
        options: Launch configuration (read-only mapping)
    """

    command: tuple[str, ...]
    pid: int | None = None
    duration: float | None = None
    exit_code: int | None = None
    signal_number: int | None = None
    stdout: Output | None = None
    stderr: Output | None = None
    start_error: BaseException | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        command = self.command
        if isinstance(command, (str, bytes, os.PathLike)):
            command = (command,)
        command = tuple(os.fsdecode(part) if isinstance(part, (bytes, os.PathLike)) else str(part)
                        for part in command)
        if not command:
            raise ValueError("Result.command must not be empty")
        object.__setattr__(self, "command", command)
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

        if self.exit_code is not None and not 0 <= self.exit_code <= 255:
            raise ValueError(f"exit_code out of range: {self.exit_code}")
        if self.signal_number is not None and self.exit_code is not None:
            raise ValueError("exit_code and signal_number are mutually exclusive")
        if self.start_error is not None:
            if self.signal_number is not None:
                raise ValueError("start_error and signal_number are mutually exclusive")
            if self.pid is not None:
                raise ValueError("a Result with start_error cannot carry a pid")

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def from_status(
        cls,
        status: int,
        *,
        command: Sequence[str],
        pid: int,
        duration: float | None = None,
        options: Mapping[str, Any] | None = None,
        stdout: Output | None = None,
        stderr: Output | None = None,
    ) -> "Result":
        """Build a Result from a raw ``os.waitpid`` status.

        Args:
            status: Encoded wait status
            command: The launched command
            pid: Process ID that was reaped
            duration: Seconds from launch to completion
            options: Launch configuration
            stdout: Captured stdout, if any
            stderr: Captured stderr, if any

        Returns:
            Result with exactly one of exit_code / signal_number set

        Raises:
            ValueError: If the status is neither an exit nor a signal death
        """
        exit_code: int | None = None
        signal_number: int | None = None

        if os.WIFEXITED(status):
            exit_code = os.WEXITSTATUS(status)
        elif os.WIFSIGNALED(status):
            signal_number = os.WTERMSIG(status)
        else:
            raise ValueError(f"Wait status {status} is not terminal")

        return cls(
            command=tuple(command),
            pid=pid,
            duration=duration,
            exit_code=exit_code,
            signal_number=signal_number,
            stdout=stdout,
            stderr=stderr,
            options=options or {},
        )

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        *,
        command: Sequence[str],
        duration: float | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> "Result":
        """Build a Result for a command the OS could not start."""
        return cls(
            command=tuple(command),
            duration=duration,
            exit_code=COMMAND_NOT_INVOKED,
            start_error=error,
            options=options or {},
        )

    @classmethod
    def from_structured(cls, data: Mapping[str, Any]) -> "Result":
        """Rebuild a Result from ``to_structured()`` output.

        The ``success`` flag is derived, so it is ignored on input. A start
        error comes back as a plain ``OSError`` carrying the original message.
        """
        record = ResultRecord.model_validate(data)
        start_error = OSError(record.start_error) if record.start_error is not None else None
        return cls(
            command=tuple(record.command),
            pid=record.pid,
            duration=record.duration,
            exit_code=record.exit_code,
            signal_number=record.signal_number,
            stdout=record.stdout,
            stderr=record.stderr,
            start_error=start_error,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def success(self) -> bool:
        """True if the process exited with code 0 and did start."""
        return self.exit_code == 0 and self.start_error is None

    @property
    def failed(self) -> bool:
        return not self.success

    @property
    def signaled(self) -> bool:
        return self.signal_number is not None

    @property
    def timed_out(self) -> bool:
        """True if a wait deadline fired and the process had to be killed."""
        return self.options.get("timed_out") is True

    @property
    def running(self) -> bool:
        """True for a mid-flight snapshot (pid known, no terminal field yet)."""
        return (
            self.pid is not None
            and self.exit_code is None
            and self.signal_number is None
            and self.start_error is None
        )

    @property
    def signal_name(self) -> str | None:
        if self.signal_number is None:
            return None
        try:
            return signal.Signals(self.signal_number).name
        except ValueError:
            return str(self.signal_number)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @property
    def output(self) -> Output | None:
        """stdout followed by stderr, or None when neither was captured."""
        if self.stdout is None and self.stderr is None:
            return None
        parts = [part for part in (self.stdout, self.stderr) if part is not None]
        return parts[0][:0].join(parts)

    @property
    def stdout_lines(self) -> list[Any]:
        return _split_lines(self.stdout)

    @property
    def stderr_lines(self) -> list[Any]:
        return _split_lines(self.stderr)

    # ------------------------------------------------------------------
    # Chaining
    # ------------------------------------------------------------------

    def exit_on_failure(self, message: str | None = None) -> "Result":
        """Exit the current process if this Result is a failure.

        A diagnostic is always written to stderr first. The exit status is
        the command's exit code, or 1 when there is none (signal death).

        Args:
            message: Diagnostic to print instead of the derived one

        Returns:
            self, when successful

        Raises:
            SystemExit: When the Result is a failure
        """
        if self.success:
            return self

        if message is None:
            message = self.describe_failure()
        print(message, file=sys.stderr)
        code = self.exit_code if self.exit_code is not None else 1
        logger.debug(f"exit_on_failure: {self} -> exit {code}")
        sys.exit(code)

    def and_then(self, fn: Callable[[], T]) -> "T | Result":
        """Call ``fn`` only if this Result succeeded; otherwise return self."""
        if self.failed:
            return self
        return fn()

    def map_output(self, fn: Callable[[Output | None], T]) -> T | None:
        """Return ``fn(stdout)`` if successful, else None."""
        if self.failed:
            return None
        return fn(self.stdout)

    # ------------------------------------------------------------------
    # Derived copies
    # ------------------------------------------------------------------

    def with_capture(self, stdout: Output | None, stderr: Output | None) -> "Result":
        return dataclasses.replace(self, stdout=stdout, stderr=stderr)

    def with_options(self, **extra: Any) -> "Result":
        return dataclasses.replace(self, options={**self.options, **extra})

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def describe_failure(self) -> str:
        if self.start_error is not None:
            return f"Command failed to start: {self.start_error}"
        if self.signal_number is not None:
            return f"Command terminated by signal {self.signal_name}"
        return f"Command failed with exit code {self.exit_code}"

    def to_record(self) -> ResultRecord:
        return ResultRecord(
            command=list(self.command),
            pid=self.pid,
            exit_code=self.exit_code,
            signal_number=self.signal_number,
            duration=self.duration,
            success=self.success,
            stdout=self.stdout,
            stderr=self.stderr,
            start_error=str(self.start_error) if self.start_error is not None else None,
        )

    def to_structured(self) -> dict[str, Any]:
        """Structured form; absent fields are omitted rather than null."""
        return self.to_record().model_dump(exclude_none=True)

    def to_json(self, indent: int | None = None) -> str:
        return self.to_record().model_dump_json(exclude_none=True, indent=indent)

    def __str__(self) -> str:
        if self.success:
            status = "success"
        elif self.signaled:
            status = f"signal {self.signal_number}"
        elif self.start_error is not None:
            status = f"exception: {type(self.start_error).__name__}"
        else:
            status = f"exit {self.exit_code}"
        return f"<Result {self.command[0]} {status}>"

    def __repr__(self) -> str:
        parts = ["<Result", f"command={list(self.command)!r}"]
        if self.pid is not None:
            parts.append(f"pid={self.pid}")
        if self.exit_code is not None:
            parts.append(f"exit_code={self.exit_code}")
        if self.signal_number is not None:
            parts.append(f"signal_number={self.signal_number}")
        if self.duration is not None:
            parts.append(f"duration={self.duration:.3f}s")
        if self.stdout is not None:
            parts.append(f"stdout={len(_as_bytes(self.stdout))}b")
        if self.stderr is not None:
            parts.append(f"stderr={len(_as_bytes(self.stderr))}b")
        if self.start_error is not None:
            parts.append(f"start_error={type(self.start_error).__name__}")
        if self.timed_out:
            parts.append("timed_out=True")
        return " ".join(parts) + ">"


def _as_bytes(data: Output) -> bytes:
    return data if isinstance(data, bytes) else data.encode("utf-8", errors="replace")
