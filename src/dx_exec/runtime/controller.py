"""Live handle to a spawned process.

dx-exec runtime module v0.1.0

A Controller owns one OS process id and the parent ends of any pipes
that were requested at launch. It produces exactly one Result for that
process, no matter how many threads ask for it.

Key design points:
- Every ``os.waitpid`` on the pid runs under one wait lock, so the status
  is collected once and "no such child" races between our own callers
  cannot happen
- Bounded waits poll with WNOHANG, sleeping min(poll_interval, remaining)
- ``terminate`` escalates SIGTERM -> timeout -> SIGKILL -> kill grace
- Pipes are closed on the path that produces the Result, and on the
  timeout path of a bounded wait

Example:
    ctrl = spawn(["my-server", "--port", "8080"], stdout="pipe")
    ...
    if ctrl.is_running():
        result = ctrl.terminate(timeout=5)
"""

from __future__ import annotations

import functools
import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from typing import IO, Any

import anyio

from ..config import get_config
from .errors import ProcessLostError, UsageError, WaitTimeout
from .result import Result
from .types import SignalLike, resolve_signal

__all__ = ["Controller"]

logger = logging.getLogger(__name__)


class Controller:
    """Handle for a background process.

    Safe to share between threads: ``result``, ``kill``, ``terminate`` and
    ``is_running`` may be called concurrently. Once the Result is cached it
    never changes, and no further signals are sent to the pid (the OS may
    already have recycled it).

    Attributes:
        pid: Process ID
        command: The launched command
        name: Optional human label
        started_at: Epoch seconds at construction (display only)
        stdin: Writable pipe to the child's stdin, if requested
        stdout: Readable pipe from the child's stdout, if requested
        stderr: Readable pipe from the child's stderr, if requested
        options: Launch configuration echoed into the Result
    """

    def __init__(
        self,
        pid: int,
        command: Sequence[str] | str,
        *,
        name: str | None = None,
        stdin: IO[Any] | None = None,
        stdout: IO[Any] | None = None,
        stderr: IO[Any] | None = None,
        options: Mapping[str, Any] | None = None,
        process: subprocess.Popen | None = None,
        poll_interval: float | None = None,
    ) -> None:
        """Create a Controller for an already spawned process.

        Args:
            pid: Real OS process id
            command: The launched command
            name: Optional label for diagnostics
            stdin: Parent end of the stdin pipe
            stdout: Parent end of the stdout pipe
            stderr: Parent end of the stderr pipe
            options: Launch configuration
            process: Popen object that created ``pid``; its return code is
                filled in after reaping so subprocess never waits on the pid
            poll_interval: Poll granularity for bounded waits (default from config)
        """
        if isinstance(command, str):
            command = [command]
        if not command:
            raise UsageError("command must not be empty")

        self.pid = pid
        self.command: tuple[str, ...] = tuple(str(part) for part in command)
        self.name = name
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self.options: dict[str, Any] = dict(options or {})
        self.started_at = time.time()

        config = get_config()
        self._started = time.monotonic()
        self._poll_interval = poll_interval if poll_interval is not None else config.poll_interval
        self._process = process
        self._result: Result | None = None
        self._timed_out = False
        # Guards _result
        self._state_lock = threading.Lock()
        # Serializes every waitpid() on self.pid
        self._wait_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def cached_result(self) -> Result | None:
        with self._state_lock:
            return self._result

    def is_running(self) -> bool:
        """Non-blocking check whether the process is still running.

        Reaps the process if it has exited, caching its Result. Returns
        False if the OS reports no such child.
        """
        if self.cached_result is not None:
            return False

        if not self._wait_lock.acquire(blocking=False):
            # Another thread is inside waitpid; it caches the Result once reaped
            return self.cached_result is None

        try:
            if self._result is not None:
                return False
            try:
                reaped, status = os.waitpid(self.pid, os.WNOHANG)
            except ChildProcessError:
                logger.debug(f"is_running: no such child pid={self.pid}")
                return False
            if reaped == 0:
                return True
            self._finish(status)
            return False
        finally:
            self._wait_lock.release()

    executing = is_running

    def is_finished(self) -> bool:
        return not self.is_running()

    @property
    def elapsed(self) -> float:
        """Seconds since the Controller was created."""
        return time.monotonic() - self._started

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def kill(self, sig: SignalLike = signal.SIGTERM) -> bool:
        """Send a signal to the process.

        Args:
            sig: Signal member, number or name ("TERM", "SIGKILL", 9, ...)

        Returns:
            True if delivered; False if the process is gone, already
            reaped, or we lack permission

        Raises:
            UsageError: If ``sig`` does not name a signal
        """
        signum = resolve_signal(sig)

        if self.cached_result is not None:
            logger.debug(f"Not signalling reaped process pid={self.pid} signal={signum.name}")
            return False

        try:
            os.kill(self.pid, signum)
        except (ProcessLookupError, PermissionError) as e:
            logger.debug(f"Signal {signum.name} not delivered to pid={self.pid}: {e}")
            return False

        logger.debug(f"Sent {signum.name} to pid={self.pid}")
        return True

    send_signal = kill

    def terminate(self, timeout: float | None = None) -> Result:
        """Stop the process gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM
        2. Wait up to ``timeout`` for the process to exit
        3. If still running, send SIGKILL
        4. Wait up to the kill grace (1s by default) for the OS to reap it

        Args:
            timeout: Seconds to wait after SIGTERM (default from config)

        Returns:
            The final Result; ``timed_out`` is set if SIGKILL was needed

        Raises:
            WaitTimeout: If the process survives even the kill grace
        """
        config = get_config()
        if timeout is None:
            timeout = config.term_timeout

        self.kill(signal.SIGTERM)
        try:
            return self.result(timeout=timeout)
        except WaitTimeout:
            pass

        logger.debug(f"Force killing pid={self.pid} after {timeout}s")
        self._timed_out = True
        self.kill(signal.SIGKILL)
        try:
            return self.result(timeout=config.kill_grace)
        except WaitTimeout:
            logger.warning(f"Process did not exit after SIGKILL pid={self.pid}")
            raise

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def result(self, timeout: float | None = None) -> Result:
        """Wait for the process to finish and return its Result.

        Idempotent: once cached, the same Result instance is returned
        without touching the OS.

        Args:
            timeout: Max seconds to wait (None = block until exit)

        Returns:
            The cached Result

        Raises:
            WaitTimeout: If the deadline passes; the process keeps running
            ProcessLostError: If the status was collected by someone else
        """
        cached = self.cached_result
        if cached is not None:
            return cached

        if timeout is None:
            with self._wait_lock:
                if self._result is not None:
                    return self._result
                return self._finish(self._waitpid(0)[1])

        deadline = time.monotonic() + timeout
        if not self._wait_lock.acquire(timeout=max(timeout, 0.0)):
            cached = self.cached_result
            if cached is not None:
                return cached
            self._close_pipes()
            raise WaitTimeout(self.pid, timeout)

        try:
            if self._result is not None:
                return self._result
            status = self._poll_until(deadline, timeout)
            return self._finish(status)
        finally:
            self._wait_lock.release()

    wait = result

    async def aresult(self, timeout: float | None = None) -> Result:
        """Async ``result``, run in a worker thread.

        Cancelling the awaiting task abandons the wait; the process keeps
        running.
        """
        return await anyio.to_thread.run_sync(
            functools.partial(self.result, timeout=timeout),
            abandon_on_cancel=True,
        )

    async def aterminate(self, timeout: float | None = None) -> Result:
        """Async ``terminate``, run in a worker thread."""
        return await anyio.to_thread.run_sync(
            functools.partial(self.terminate, timeout=timeout),
        )

    def _waitpid(self, options: int) -> tuple[int, int]:
        try:
            return os.waitpid(self.pid, options)
        except ChildProcessError:
            self._close_pipes()
            raise ProcessLostError(self.pid) from None

    def _poll_until(self, deadline: float, timeout: float) -> int:
        """Poll with WNOHANG until the process exits or the deadline passes."""
        while True:
            reaped, status = self._waitpid(os.WNOHANG)
            if reaped != 0:
                return status

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._close_pipes()
                raise WaitTimeout(self.pid, timeout)

            time.sleep(min(self._poll_interval, remaining))

    def _finish(self, status: int) -> Result:
        """Build and cache the Result. Caller holds the wait lock."""
        duration = time.monotonic() - self._started
        self._close_pipes()

        options = dict(self.options)
        if self._timed_out:
            options["timed_out"] = True

        result = Result.from_status(
            status,
            command=self.command,
            pid=self.pid,
            duration=duration,
            options=options,
        )

        with self._state_lock:
            if self._result is None:
                self._result = result
            result = self._result

        if self._process is not None and self._process.returncode is None:
            # Popen convention: negative signal number for signal deaths
            if result.signal_number is not None:
                self._process.returncode = -result.signal_number
            else:
                self._process.returncode = result.exit_code

        logger.debug(
            f"Process finished pid={self.pid} "
            f"exit_code={result.exit_code} signal={result.signal_number} "
            f"duration={duration:.3f}s"
        )
        return result

    # ------------------------------------------------------------------
    # IO
    # ------------------------------------------------------------------

    def write(self, data: str | bytes, close_after: bool = False) -> int:
        """Write to the child's stdin.

        Args:
            data: Data to write (str for text pipes, bytes otherwise)
            close_after: Close stdin afterwards so the child sees EOF

        Returns:
            Number of characters/bytes written

        Raises:
            UsageError: If no stdin pipe was configured
        """
        if self.stdin is None:
            raise UsageError("No stdin pipe available")

        written = self.stdin.write(data)
        self.stdin.flush()
        if close_after:
            self.stdin.close()
        return written

    def close_stdin(self) -> None:
        if self.stdin is not None and not self.stdin.closed:
            self.stdin.close()

    def read_stdout(self) -> str | bytes | None:
        """Read stdout to EOF, or None if there is no open pipe."""
        return _read_all(self.stdout)

    def read_stderr(self) -> str | bytes | None:
        """Read stderr to EOF, or None if there is no open pipe."""
        return _read_all(self.stderr)

    def _close_pipes(self) -> None:
        for stream in (self.stdin, self.stdout, self.stderr):
            if stream is None or stream.closed:
                continue
            try:
                stream.close()
            except BrokenPipeError:
                # stdin flush on close when the child is already gone
                pass

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        result = self.cached_result
        if result is None:
            status = "running"
        else:
            status = "exited" if result.success else "failed"
        return f"<Controller {self.command[0]} pid={self.pid} {status}>"

    def __repr__(self) -> str:
        parts = ["<Controller"]
        if self.name:
            parts.append(f"name={self.name!r}")
        parts.append(f"command={list(self.command)!r}")
        parts.append(f"pid={self.pid}")
        parts.append(f"elapsed={self.elapsed:.2f}s")
        parts.append(f"status={'finished' if self.cached_result else 'running'}")
        return " ".join(parts) + ">"


def _read_all(stream: IO[Any] | None) -> str | bytes | None:
    if stream is None or stream.closed:
        return None
    return stream.read()
