"""Runtime module for process execution and result tracking.

This module launches external commands, tracks their lifecycle, and
reports every outcome as an immutable Result.
"""

from __future__ import annotations

from .controller import Controller
from .errors import ExecError, ProcessLostError, UsageError, WaitTimeout
from .launcher import capture, run, run_tool, spawn, succeeds
from .result import COMMAND_NOT_INVOKED, Result, ResultRecord
from .types import IS_WINDOWS, LaunchOptions, Signal, StreamMode, resolve_signal

__all__ = [
    "COMMAND_NOT_INVOKED",
    "Controller",
    "ExecError",
    "IS_WINDOWS",
    "LaunchOptions",
    "ProcessLostError",
    "Result",
    "ResultRecord",
    "Signal",
    "StreamMode",
    "UsageError",
    "WaitTimeout",
    "capture",
    "resolve_signal",
    "run",
    "run_tool",
    "spawn",
    "succeeds",
]
