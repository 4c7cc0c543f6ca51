"""Exceptions raised by the runtime module.

dx-exec runtime module v0.1.0

Process outcomes (non-zero exit, death by signal, launch failure) are
reported as data on ``Result``. Only the conditions below are raised.
"""

from __future__ import annotations

__all__ = [
    "ExecError",
    "WaitTimeout",
    "UsageError",
    "ProcessLostError",
]


class ExecError(Exception):
    """Base exception for dx_exec."""
    pass


class WaitTimeout(ExecError, TimeoutError):
    """A bounded wait elapsed before the process exited.

    The process is left running; killing it is the caller's decision.

    Attributes:
        pid: Process ID that was being waited on
        timeout: The wait budget in seconds
    """

    def __init__(self, pid: int, timeout: float) -> None:
        self.pid = pid
        self.timeout = timeout
        super().__init__(f"Process {pid} did not exit within {timeout}s")


class UsageError(ExecError, RuntimeError):
    """Caller contract violation (e.g. writing without a stdin pipe)."""
    pass


class ProcessLostError(ExecError):
    """The exit status of a child was collected outside its Controller.

    Attributes:
        pid: Process ID whose status is no longer available
    """

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"Process {pid} was reaped elsewhere; exit status unavailable")
