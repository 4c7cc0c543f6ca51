"""dx-exec command-line entry point.

Runs a single command through the launcher and reports its Result:

    dx-exec --timeout 30 --capture --json -- git status --short

The exit status mirrors the command's (1 for signal deaths, 127 when the
command could not be started).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from . import __version__
from .config import Config, get_config
from .context import detect_context
from .runtime import StreamMode, capture, run

__all__ = ["configure_logging", "build_parser", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config) -> None:
    """Configure log output.

    DX_LOG_DEBUG sends DEBUG records to a temp file; otherwise INFO goes to
    stderr. Third-party loggers stay at WARNING.
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("dx_exec").setLevel(log_level)


def _parse_env(pairs: Sequence[str], parser: argparse.ArgumentParser) -> dict[str, str] | None:
    if not pairs:
        return None
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            parser.error(f"--env expects KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dx-exec",
        description="Run a command and report its outcome.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds before the command is terminated")
    parser.add_argument("--capture", action="store_true", help="Capture stdout/stderr instead of streaming")
    parser.add_argument("--json", action="store_true", help="Print the structured result as JSON")
    parser.add_argument("--cwd", default=None, help="Working directory")
    parser.add_argument("--env", action="append", default=[], metavar="KEY=VALUE", help="Environment override")
    parser.add_argument("--context", action="store_true", help="Print the detected execution context and exit")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    config = get_config()
    configure_logging(config)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.context:
        print(json.dumps(detect_context().summary(), indent=2))
        return

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command is required")

    env = _parse_env(args.env, parser)
    logger.debug(f"dx-exec: {command} timeout={args.timeout} config={config}")

    if args.capture:
        result = capture(command, cwd=args.cwd, env=env, timeout=args.timeout)
    else:
        streams = StreamMode.DISCARD if args.json else StreamMode.INHERIT
        result = run(command, cwd=args.cwd, env=env, timeout=args.timeout, stdout=streams, stderr=streams)

    if args.json:
        print(result.to_json(indent=2))
    elif args.capture:
        sys.stdout.write(result.stdout or "")
        sys.stderr.write(result.stderr or "")

    if result.timed_out:
        logger.warning(f"{command[0]} timed out after {args.timeout}s")
    result.exit_on_failure()


if __name__ == "__main__":
    main()
