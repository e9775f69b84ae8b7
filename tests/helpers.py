"""Scripted stand-ins for engine processes."""

from __future__ import annotations

import queue
import subprocess
import threading
import time
import typing as t

import pytest

if t.TYPE_CHECKING:
    from collections.abc import Callable


class ScriptedStdin:
    """Fake stdin recording writes, optionally raising BrokenPipeError.

    A stalled stdin blocks every write, like a full pipe nobody reads, until
    :meth:`release` is called; the blocked write then fails with a broken pipe.
    """

    def __init__(self, broken: bool = False, stalled: bool = False) -> None:
        self._broken = broken
        self._stalled = stalled
        self._released = threading.Event()
        self.blocked = threading.Event()
        self.lines: list[str] = []
        self.closed = False

    def release(self) -> None:
        """Unblock stalled writes, as the reader end going away would."""
        self._released.set()

    def write(self, data: str) -> int:
        """Record data or raise BrokenPipeError if broken."""
        if self._stalled:
            self.blocked.set()
            self._released.wait()
            raise BrokenPipeError
        if self._broken:
            raise BrokenPipeError
        if self.closed:
            msg = "I/O operation on closed file."
            raise ValueError(msg)
        self.lines.append(data)
        return len(data)

    def flush(self) -> None:
        """Flush or raise BrokenPipeError if broken."""
        if self._broken:
            raise BrokenPipeError

    def close(self) -> None:
        """Mark closed."""
        self.closed = True


class ScriptedStdout:
    """Queue-backed stdout that blocks like a real pipe until fed or closed."""

    def __init__(self) -> None:
        self._queue: queue.Queue[str | None] = queue.Queue()

    def feed(self, line: str) -> None:
        """Make ``line`` readable."""
        self._queue.put(line + "\n")

    def close(self) -> None:
        """Signal EOF."""
        self._queue.put(None)

    def __iter__(self) -> ScriptedStdout:
        """Return iterator (self)."""
        return self

    def __next__(self) -> str:
        """Block until next line or raise StopIteration at EOF."""
        item = self._queue.get()
        if item is None:
            raise StopIteration
        return item


class ScriptedProcess:
    """Fake engine process driven by the test."""

    def __init__(
        self,
        *,
        pid: int = 4242,
        broken_on_write: bool = False,
        stalled_stdin: bool = False,
        exits_on_stdin_close: bool = True,
        stderr_lines: tuple[str, ...] = (),
    ) -> None:
        self.pid = pid
        self._stdin_impl = ScriptedStdin(
            broken=broken_on_write,
            stalled=stalled_stdin,
        )
        self.stdin = t.cast(t.IO[str], self._stdin_impl)
        self._stdout_impl = ScriptedStdout()
        self.stdout = self._stdout_impl
        self.stderr = iter([f"{line}\n" for line in stderr_lines])
        self.returncode: int | None = None
        self._exited = threading.Event()
        self._exits_on_stdin_close = exits_on_stdin_close
        self.killed = False

    @property
    def written(self) -> list[str]:
        """Lines written to stdin, without newlines."""
        return [line.rstrip("\n") for line in self._stdin_impl.lines]

    def exit(self, returncode: int) -> None:
        """Simulate the process exiting on its own."""
        self.returncode = returncode
        self._exited.set()
        self._stdin_impl.release()
        self._stdout_impl.close()

    def poll(self) -> int | None:
        """Return returncode if exited."""
        if self._stdin_impl.closed and self._exits_on_stdin_close:
            self.exit(0)
        return self.returncode

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit, raising TimeoutExpired like Popen."""
        if self._stdin_impl.closed and self._exits_on_stdin_close:
            self.exit(0)
        if not self._exited.wait(timeout=timeout):
            raise subprocess.TimeoutExpired(["fake-engine"], timeout or 0)
        return self.returncode

    def terminate(self) -> None:
        """Simulate SIGTERM."""
        self.exit(-15)

    def kill(self) -> None:
        """Simulate SIGKILL."""
        self.killed = True
        if not self._exited.is_set():
            self.exit(-9)


class ProcessFactory:
    """Return scripted processes in order, recording spawn calls."""

    def __init__(self, *procs: ScriptedProcess | BaseException) -> None:
        self.procs = list(procs)
        self.calls: list[list[str]] = []

    def __call__(self, cmd: list[str], **kwargs: t.Any) -> ScriptedProcess:
        """Return the next scripted process or raise the next exception."""
        self.calls.append(cmd)
        item = self.procs.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def drain(inbox: queue.Queue[t.Any], until: Callable[[t.Any], bool]) -> list[t.Any]:
    """Collect inbox messages up to and including the first matching one."""
    seen = []
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        message = inbox.get(timeout=5)
        seen.append(message)
        if until(message):
            return seen
    pytest.fail(f"Message not seen, got {seen!r}")


