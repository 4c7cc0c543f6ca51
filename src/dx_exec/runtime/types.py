"""Closed enumerations and launch configuration for the runtime module.

dx-exec runtime module v0.1.0

Stream modes and signals are resolved from loose user input (strings,
ints) into enum members here, so the rest of the runtime only deals with
``StreamMode`` and ``signal.Signals``.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Union

from .errors import UsageError

__all__ = [
    "IS_WINDOWS",
    "Signal",
    "SignalLike",
    "StreamMode",
    "LaunchOptions",
    "resolve_signal",
]

# Platform detection
IS_WINDOWS = sys.platform == "win32"

Signal = signal.Signals
SignalLike = Union[signal.Signals, int, str]


class StreamMode(Enum):
    """How a child's standard stream is wired.

    - INHERIT: share the parent's stream
    - DISCARD: connect to the null device
    - PIPE: hand an open pipe to the caller via the Controller
    - CAPTURE: collect into Result.stdout/stderr (blocking launcher calls only)
    """

    INHERIT = "inherit"
    DISCARD = "discard"
    PIPE = "pipe"
    CAPTURE = "capture"

    @classmethod
    def from_string(cls, value: "str | StreamMode") -> "StreamMode":
        """Parse a stream mode.

        Args:
            value: Mode name (inherit/discard/null/pipe/capture) or a member

        Returns:
            The matching StreamMode

        Raises:
            UsageError: If the name is unknown
        """
        if isinstance(value, cls):
            return value
        name = str(value).lower().strip()
        if name == "null":
            return cls.DISCARD
        for mode in cls:
            if mode.value == name:
                return mode
        raise UsageError(f"Unknown stream mode: {value!r}")


def resolve_signal(value: SignalLike) -> signal.Signals:
    """Resolve a signal given as a member, number or name.

    Accepts ``signal.SIGTERM``, ``15``, ``"TERM"``, ``"SIGTERM"`` or ``"term"``.

    Raises:
        UsageError: If the value does not name a signal on this platform
    """
    if isinstance(value, signal.Signals):
        return value
    if isinstance(value, bool):
        raise UsageError(f"Unknown signal: {value!r}")
    if isinstance(value, int):
        try:
            return signal.Signals(value)
        except ValueError:
            raise UsageError(f"Unknown signal number: {value}") from None

    name = str(value).upper().strip()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError:
        raise UsageError(f"Unknown signal name: {value!r}") from None


@dataclass(frozen=True)
class LaunchOptions:
    """Launch configuration, echoed into every Result as ``options``.

    Attributes:
        cwd: Working directory (None = inherit)
        env: Environment overrides merged onto the parent environment
        stdin: Mode for the child's stdin
        stdout: Mode for the child's stdout
        stderr: Mode for the child's stderr
        timeout: Wait budget for blocking launcher calls
        text: Whether pipes and captures carry str instead of bytes
        name: Optional human label
    """

    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin: StreamMode = StreamMode.DISCARD
    stdout: StreamMode = StreamMode.DISCARD
    stderr: StreamMode = StreamMode.DISCARD
    timeout: float | None = None
    text: bool = False
    name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return the options as a plain mapping, omitting unset values."""
        data: dict[str, Any] = {
            "stdin": self.stdin.value,
            "stdout": self.stdout.value,
            "stderr": self.stderr.value,
            "text": self.text,
        }
        if self.cwd is not None:
            data["cwd"] = str(self.cwd)
        if self.env is not None:
            data["env"] = dict(self.env)
        if self.timeout is not None:
            data["timeout"] = self.timeout
        if self.name is not None:
            data["name"] = self.name
        return data
