"""dx-exec environment variable configuration.

Environment variables:
    DX_TERM_TIMEOUT: Seconds ``terminate`` waits after SIGTERM before SIGKILL
        - default 5.0, clamped to 0.1-600

    DX_KILL_GRACE: Seconds to wait for the OS to reap a process after SIGKILL
        - default 1.0, clamped to 0.1-30

    DX_POLL_INTERVAL: Poll granularity of bounded waits (seconds)
        - default 0.1, clamped to 0.01-1.0

    DX_RUN_KILL_GRACE: Delay between SIGTERM and SIGKILL when a blocking
        ``run`` call hits its timeout
        - default 0.1, clamped to 0.0-30

    DX_TOOL_EXECUTABLE: Executable used by ``run_tool``
        - default "dx"

    DX_LOG_DEBUG: Debug logging
        - true/1/yes = on (log to a temp file at DEBUG level)
        - false/0/no = off (default, log to stderr at INFO level)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_TERM_TIMEOUT = 5.0
DEFAULT_KILL_GRACE = 1.0
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_RUN_KILL_GRACE = 0.1
DEFAULT_TOOL_EXECUTABLE = "dx"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(
    value: str | None,
    default: float,
    lower: float,
    upper: float,
) -> float:
    """Parse a duration in seconds, clamped to [lower, upper].

    Invalid or empty values fall back to ``default``.
    """
    if not value or not value.strip():
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    if seconds != seconds:  # NaN
        return default
    return max(lower, min(seconds, upper))


@dataclass
class Config:
    """dx-exec configuration.

    Attributes:
        term_timeout: Default wait after SIGTERM in ``terminate``
        kill_grace: Wait after SIGKILL for the process to be reaped
        poll_interval: Sleep between polls in bounded waits
        run_kill_grace: TERM -> KILL delay for timed-out ``run`` calls
        tool_executable: Executable invoked by ``run_tool``
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug=True)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_grace: float = DEFAULT_KILL_GRACE
    poll_interval: float = DEFAULT_POLL_INTERVAL
    run_kill_grace: float = DEFAULT_RUN_KILL_GRACE
    tool_executable: str = DEFAULT_TOOL_EXECUTABLE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(term_timeout={self.term_timeout}, "
            f"kill_grace={self.kill_grace}, "
            f"poll_interval={self.poll_interval}, "
            f"run_kill_grace={self.run_kill_grace}, "
            f"tool_executable={self.tool_executable}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Return a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "dx-exec"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"dx_exec_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("DX_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    tool_executable = (os.environ.get("DX_TOOL_EXECUTABLE") or "").strip()

    return Config(
        term_timeout=_parse_seconds(
            os.environ.get("DX_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.1, 600.0
        ),
        kill_grace=_parse_seconds(
            os.environ.get("DX_KILL_GRACE"), DEFAULT_KILL_GRACE, 0.1, 30.0
        ),
        poll_interval=_parse_seconds(
            os.environ.get("DX_POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, 0.01, 1.0
        ),
        run_kill_grace=_parse_seconds(
            os.environ.get("DX_RUN_KILL_GRACE"), DEFAULT_RUN_KILL_GRACE, 0.0, 30.0
        ),
        tool_executable=tool_executable or DEFAULT_TOOL_EXECUTABLE,
        log_debug=log_debug,
        log_file=log_file,
    )


# Global instance (lazily loaded)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
