"""Execution context detection.

Answers "who is invoking us?" once per process: an interactive terminal,
CI, or an agent/script driving the CLI. The result is an immutable
``ExecContext`` that callers pass down explicitly; nothing here keeps
global mutable state.

Detection order (highest priority first):
1. Explicit environment variables (DX_AGENT_MODE, DX_INTERACTIVE, DX_BATCH)
2. CI environment variables
3. Terminal detection on stdin/stdout/stderr

The tool call tree travels between processes in DX_CALL_TREE
("pre-commit:test"), with the running tool in DX_CURRENT_TOOL.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import IO, Any

__all__ = [
    "ENV_CALL_TREE",
    "ENV_CURRENT_TOOL",
    "ExecContext",
    "detect_context",
]

ENV_AGENT_MODE = ("DX_AGENT_MODE", "DEVEX_AGENT_MODE")
ENV_BATCH = ("DX_BATCH", "DEVEX_BATCH")
ENV_INTERACTIVE = ("DX_INTERACTIVE", "DEVEX_INTERACTIVE")
ENV_CALL_TREE = "DX_CALL_TREE"
ENV_CURRENT_TOOL = "DX_CURRENT_TOOL"
ENV_INVOKED_FROM_TOOL = "DX_INVOKED_FROM_TOOL"

CI_ENV_VARS = (
    "CI",
    "CONTINUOUS_INTEGRATION",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "CIRCLECI",
    "TRAVIS",
    "JENKINS_URL",
    "BUILDKITE",
    "DRONE",
    "TEAMCITY_VERSION",
)


@dataclass(frozen=True)
class ExecContext:
    """Read-only view of how this process was invoked.

    Attributes:
        agent_mode: Likely driven by an agent or script rather than a human
        interactive: Prompts and rich output are allowed
        ci: Running under a CI system
        call_tree: Tools that invoked this one, outermost first
        current_tool: Tool currently running in this process
    """

    agent_mode: bool = False
    interactive: bool = False
    ci: bool = False
    call_tree: tuple[str, ...] = ()
    current_tool: str | None = None

    @property
    def invoked_from_tool(self) -> bool:
        return bool(self.call_tree)

    @property
    def invoking_tool(self) -> str | None:
        return self.call_tree[-1] if self.call_tree else None

    @property
    def root_tool(self) -> str | None:
        return self.call_tree[0] if self.call_tree else None

    def with_tool(self, name: str) -> "ExecContext":
        """Return a context for running ``name`` beneath the current tool."""
        tree = self.call_tree
        if self.current_tool:
            tree = tree + (self.current_tool,)
        return replace(self, call_tree=tree, current_tool=name)

    def child_env(self) -> dict[str, str]:
        """Environment overrides that hand this context to a child tool.

        The current tool is appended to the call tree so the child knows
        who invoked it.
        """
        tree = self.call_tree
        if self.current_tool:
            tree = tree + (self.current_tool,)
        return {
            "DX_AGENT_MODE": "1" if self.agent_mode else "0",
            "DX_INTERACTIVE": "1" if self.interactive else "0",
            "DX_CI": "1" if self.ci else "0",
            ENV_CALL_TREE: ":".join(tree),
            ENV_INVOKED_FROM_TOOL: "1",
        }

    def summary(self) -> dict[str, Any]:
        return {
            "agent_mode": self.agent_mode,
            "interactive": self.interactive,
            "ci": self.ci,
            "call_tree": list(self.call_tree),
            "current_tool": self.current_tool,
            "invoked_from_tool": self.invoked_from_tool,
        }


def _truthy(environ: Mapping[str, str], name: str) -> bool:
    value = environ.get(name)
    return bool(value) and value != "0" and value.lower() != "false"


def _is_tty(stream: IO[Any] | None) -> bool:
    if stream is None:
        return False
    try:
        return stream.isatty()
    except (AttributeError, ValueError, OSError):
        return False


def _streams_merged(stdout: IO[Any] | None, stderr: IO[Any] | None) -> bool:
    """True when stdout and stderr are redirected to the same file (2>&1).

    Two TTYs on the same terminal are normal, not merged.
    """
    if _is_tty(stdout) or _is_tty(stderr):
        return False
    try:
        out_stat = os.fstat(stdout.fileno())  # type: ignore[union-attr]
        err_stat = os.fstat(stderr.fileno())  # type: ignore[union-attr]
    except (AttributeError, ValueError, OSError):
        return False
    return (out_stat.st_dev, out_stat.st_ino) == (err_stat.st_dev, err_stat.st_ino)


def _parse_call_tree(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part for part in value.split(":") if part)


def detect_context(
    environ: Mapping[str, str] | None = None,
    streams: tuple[IO[Any] | None, IO[Any] | None, IO[Any] | None] | None = None,
) -> ExecContext:
    """Detect the execution context.

    Args:
        environ: Environment to inspect (default: os.environ)
        streams: (stdin, stdout, stderr) to inspect (default: sys streams)

    Returns:
        A frozen ExecContext
    """
    if environ is None:
        environ = os.environ
    stdin, stdout, stderr = streams if streams is not None else (sys.stdin, sys.stdout, sys.stderr)

    agent_env = any(_truthy(environ, name) for name in ENV_AGENT_MODE)
    batch_env = any(_truthy(environ, name) for name in ENV_BATCH)
    interactive_forced = any(_truthy(environ, name) for name in ENV_INTERACTIVE)
    ci = any(environ.get(name) not in (None, "", "false") for name in CI_ENV_VARS)
    terminal = _is_tty(stdin) and _is_tty(stdout) and _is_tty(stderr)

    if agent_env:
        agent_mode = True
    elif interactive_forced:
        agent_mode = False
    else:
        # Non-tty, non-CI most likely means an agent
        agent_mode = _streams_merged(stdout, stderr) or (not terminal and not ci)

    if interactive_forced:
        interactive = True
    elif agent_env or batch_env or ci:
        interactive = False
    else:
        interactive = terminal

    return ExecContext(
        agent_mode=agent_mode,
        interactive=interactive,
        ci=ci,
        call_tree=_parse_call_tree(environ.get(ENV_CALL_TREE)),
        current_tool=environ.get(ENV_CURRENT_TOOL) or None,
    )
