"""dx-exec - external command execution with a single, deterministic Result.

Environment variables:
    DX_TERM_TIMEOUT: default terminate() wait after SIGTERM (default 5.0)
    DX_KILL_GRACE: wait after SIGKILL (default 1.0)
    DX_LOG_DEBUG: debug logging to a temp file (default false)

Usage:
    from dx_exec import run, spawn

    run(["make", "test"]).exit_on_failure()
"""

__version__ = "0.1.0"

from .context import ExecContext, detect_context
from .runtime import (
    Controller,
    ExecError,
    ProcessLostError,
    Result,
    StreamMode,
    UsageError,
    WaitTimeout,
    capture,
    run,
    run_tool,
    spawn,
    succeeds,
)

__all__ = [
    "__version__",
    "Controller",
    "ExecContext",
    "ExecError",
    "ProcessLostError",
    "Result",
    "StreamMode",
    "UsageError",
    "WaitTimeout",
    "capture",
    "detect_context",
    "run",
    "run_tool",
    "spawn",
    "succeeds",
]
