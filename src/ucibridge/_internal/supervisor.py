"""Engine child process supervision.

The supervisor owns the engine process and its pipes. It is driven by a
single owner thread (normally the dispatcher of :class:`ucibridge.CommandChannel`).
Reader threads never touch its state: every stdout line, stderr line and the
end of the process are posted as messages onto
:attr:`EngineProcessSupervisor.inbox`, and the owner hands each
:class:`ProcessEnded` back to :meth:`EngineProcessSupervisor.reap` to apply the
exit.
"""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import queue
import subprocess
import threading
import time
import typing as t

from ucibridge import constants, exc
from ucibridge._internal.locator import BinaryLocator

if t.TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


class LifecycleState(enum.Enum):
    """States of the supervised engine process."""

    NOT_STARTED = enum.auto()
    STARTING = enum.auto()
    RUNNING = enum.auto()
    READINESS_UNCONFIRMED = enum.auto()
    READY = enum.auto()
    CRASHED = enum.auto()
    SHUTTING_DOWN = enum.auto()
    STOPPED = enum.auto()


#: States in which a process handle is held.
LIVE_STATES = frozenset(
    {
        LifecycleState.STARTING,
        LifecycleState.RUNNING,
        LifecycleState.READINESS_UNCONFIRMED,
        LifecycleState.READY,
        LifecycleState.SHUTTING_DOWN,
    },
)

#: States in which an exit nobody asked for counts as a crash.
_CRASHABLE_STATES = frozenset(
    {
        LifecycleState.RUNNING,
        LifecycleState.READINESS_UNCONFIRMED,
        LifecycleState.READY,
    },
)


class _EngineHandle(t.Protocol):
    """Subset of :class:`subprocess.Popen` the supervisor relies on."""

    stdin: t.IO[str] | None
    stdout: Iterable[str] | None
    stderr: Iterable[str] | None
    pid: int | None

    def poll(self) -> int | None: ...

    def wait(self, timeout: float | None = None) -> int | None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


@dataclasses.dataclass
class EngineProcess:
    """A spawned engine and the generation it was spawned in."""

    executable_path: str
    handle: _EngineHandle
    generation: int

    @property
    def pid(self) -> int | None:
        return self.handle.pid


# Inbox messages -------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class StdoutLine:
    """A line the engine wrote to stdout, without its line terminator."""

    generation: int
    text: str


@dataclasses.dataclass(frozen=True)
class StderrLine:
    """A diagnostic line the engine wrote to stderr."""

    generation: int
    text: str


@dataclasses.dataclass(frozen=True)
class ReaderFailure:
    """A reader thread died on something other than end of stream."""

    generation: int
    error: str


@dataclasses.dataclass(frozen=True)
class ProcessEnded:
    """The engine closed stdout and was waited for; not yet applied."""

    generation: int
    returncode: int | None


@dataclasses.dataclass(frozen=True)
class ProcessExit:
    """The engine process has exited and its handle has been released.

    Returned by :meth:`EngineProcessSupervisor.reap` and
    :meth:`EngineProcessSupervisor.stop`, once per process.

    >>> ProcessExit(generation=1, returncode=-9, crashed=False).signal
    9
    """

    generation: int
    returncode: int | None
    crashed: bool

    @property
    def signal(self) -> int | None:
        """Signal number that terminated the process, on POSIX."""
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None


SupervisorMessage = t.Union[StdoutLine, StderrLine, ReaderFailure, ProcessEnded]


class EngineProcessSupervisor:
    """Spawn, feed and reap a single engine process.

    Parameters
    ----------
    locator : BinaryLocator, optional
        Resolves the executable on every :meth:`start`.
    inbox : queue.Queue, optional
        Where reader threads post :data:`SupervisorMessage` objects.
    handshake : str, optional
        Written right after spawn. ``None`` leaves the process in
        :attr:`LifecycleState.RUNNING` for the owner to drive.
    process_factory : callable, optional
        Replacement for :class:`subprocess.Popen`, for tests.
    cwd : str or pathlib.Path, optional
        Working directory of the engine.

    Examples
    --------
    >>> supervisor = EngineProcessSupervisor(BinaryLocator(["stockfish"]))
    >>> supervisor.state
    <LifecycleState.NOT_STARTED: 1>
    >>> supervisor.is_live
    False
    """

    def __init__(
        self,
        locator: BinaryLocator | None = None,
        inbox: queue.Queue[SupervisorMessage] | None = None,
        *,
        handshake: str | None = constants.HANDSHAKE_COMMAND,
        process_factory: Callable[..., _EngineHandle] | None = None,
        cwd: str | pathlib.Path | None = None,
    ) -> None:
        self.locator = locator or BinaryLocator()
        self.inbox: queue.Queue[SupervisorMessage] = (
            inbox if inbox is not None else queue.Queue()
        )
        self.handshake = handshake
        self.cwd = cwd
        self._process_factory: Callable[..., _EngineHandle] = (
            process_factory or subprocess.Popen
        )
        # Serializes whole lines on stdin; lifecycle state is not guarded.
        self._write_lock = threading.Lock()
        self.state = LifecycleState.NOT_STARTED
        self.process: EngineProcess | None = None
        self.generation = 0
        self.spawns = 0
        self.last_error: str | None = None
        self._stop_requested = False
        self._reader_thread: threading.Thread | None = None
        self._stderr_thread: threading.Thread | None = None

    # Status -------------------------------------------------------------
    @property
    def is_live(self) -> bool:
        """True while a process handle is held."""
        return self.process is not None

    @property
    def pid(self) -> int | None:
        """PID of the live process, if any."""
        proc = self.process
        return proc.pid if proc is not None else None

    # Lifecycle ----------------------------------------------------------
    def start(self) -> None:
        """Spawn the engine unless one is already live.

        Raises
        ------
        :exc:`exc.BinaryNotFound`
            No candidate resolved; the state is left as it was.
        :exc:`exc.SpawnError`
            The OS refused to create the process; the state is left as it was.
        """
        if self.process is not None:
            logger.debug("Engine already live (pid=%s)", self.process.pid)
            return

        try:
            path = self.locator.resolve()
        except exc.BinaryNotFound as e:
            self.last_error = str(e)
            raise

        previous = self.state
        self.state = LifecycleState.STARTING
        self._stop_requested = False
        generation = self.generation + 1

        logger.debug("Starting engine process: %s", path)
        try:
            handle = self._process_factory(
                [path],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                errors="backslashreplace",
                cwd=self.cwd,
            )
        except OSError as e:
            self.state = previous
            self.last_error = f"{path}: {e}"
            raise exc.SpawnError(path, e.strerror or str(e)) from e

        proc = EngineProcess(
            executable_path=path,
            handle=handle,
            generation=generation,
        )
        self.generation = generation
        self.process = proc
        self.spawns += 1
        self.state = LifecycleState.RUNNING
        logger.info("Engine started: %s (pid=%s)", path, proc.pid)

        self._reader_thread = threading.Thread(
            target=self._reader,
            args=(proc,),
            name=f"ucibridge-stdout-{generation}",
            daemon=True,
        )
        self._reader_thread.start()
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(proc,),
            name=f"ucibridge-stderr-{generation}",
            daemon=True,
        )
        self._stderr_thread.start()

        if self.handshake:
            try:
                self._write(proc, self.handshake)
            except exc.ProcessUnavailable:
                # The exit will be reported by the reader.
                logger.warning("Engine closed stdin before the handshake")
            else:
                self.state = LifecycleState.READINESS_UNCONFIRMED

    def mark_ready(self) -> None:
        """Record that the engine acknowledged readiness."""
        if self.process is not None and self.state in _CRASHABLE_STATES:
            self.state = LifecycleState.READY

    def mark_unconfirmed(self) -> None:
        """Record that readiness has been asked for and not yet confirmed."""
        if self.process is not None and self.state in _CRASHABLE_STATES:
            self.state = LifecycleState.READINESS_UNCONFIRMED

    def stop(self, grace_millis: int | None = None) -> ProcessExit | None:
        """Ask the engine to quit, killing it after ``grace_millis``.

        The ``quit`` line is written from a helper thread, so an engine that
        stopped reading its stdin cannot hold this call past the grace period.
        Safe to call multiple times. Whether the engine exits on its own, is
        killed, or the wait is interrupted, the handle is released before this
        returns or raises.

        Returns
        -------
        ProcessExit or None
            The exit of the process released by this call; ``None`` if there
            was no live process.
        """
        if grace_millis is None:
            grace_millis = constants.STOP_GRACE_MILLIS

        proc = self.process
        if proc is None:
            return None
        self._stop_requested = True
        self.state = LifecycleState.SHUTTING_DOWN

        handle = proc.handle
        deadline = time.monotonic() + max(grace_millis, 0) / 1000
        returncode: int | None = None
        try:
            quitter = threading.Thread(
                target=self._send_quit,
                args=(proc,),
                name=f"ucibridge-quit-{proc.generation}",
                daemon=True,
            )
            quitter.start()
            quitter.join(timeout=max(deadline - time.monotonic(), 0))
            if quitter.is_alive():
                logger.warning(
                    "Engine (pid=%s) is not reading stdin, quit not delivered",
                    proc.pid,
                )
            try:
                returncode = handle.wait(timeout=max(deadline - time.monotonic(), 0))
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Engine (pid=%s) still running after %dms, killing",
                    proc.pid,
                    grace_millis,
                )
        finally:
            if returncode is None:
                handle.kill()
                returncode = handle.wait()
            report = self._finalize(proc, returncode)

        current = threading.current_thread()
        for thread in (self._reader_thread, self._stderr_thread):
            if thread is not None and thread is not current:
                thread.join(timeout=constants.READER_JOIN_SECONDS)
        return report

    def kill(self) -> None:
        """Kill the live process at once, from any thread.

        The exit still has to be applied by the owner, through :meth:`reap` or
        :meth:`stop`; it is reported as requested, not as a crash. Writes
        blocked on the engine's stdin fail once the process is gone.
        """
        proc = self.process
        if proc is None:
            return
        self._stop_requested = True
        logger.warning("Killing engine (pid=%s)", proc.pid)
        with contextlib.suppress(OSError):
            proc.handle.kill()

    def reap(self, message: ProcessEnded) -> ProcessExit | None:
        """Apply the end of a process reported by its reader thread.

        Returns ``None`` for a process that was already released, e.g. by
        :meth:`stop`.
        """
        proc = self.process
        if proc is None or proc.generation != message.generation:
            return None
        return self._finalize(proc, message.returncode)

    # IO -----------------------------------------------------------------
    def write_line(self, text: str) -> None:
        """Write ``text`` plus a newline to the engine's stdin.

        Raises
        ------
        :exc:`exc.ProcessUnavailable`
            No live process, a shutdown is in progress, or the pipe is closed.
        """
        proc = self.process
        if proc is None or self.state is LifecycleState.SHUTTING_DOWN:
            msg = "no live engine process"
            raise exc.ProcessUnavailable(msg)
        self._write(proc, text)

    def _write(self, proc: EngineProcess, text: str) -> None:
        stdin = proc.handle.stdin
        if stdin is None:
            msg = "engine stdin not captured"
            raise exc.ProcessUnavailable(msg)
        with self._write_lock:
            try:
                stdin.write(text + "\n")
                stdin.flush()
            except (OSError, ValueError) as e:
                # BrokenPipeError, or ValueError on a closed file
                msg = f"engine stdin closed: {e}"
                raise exc.ProcessUnavailable(msg) from e
        logger.debug("engine < %s", text)

    def _send_quit(self, proc: EngineProcess) -> None:
        try:
            self._write(proc, constants.TERMINATION_COMMAND)
        except exc.ProcessUnavailable:
            logger.debug("Engine stdin already closed, skipping quit")
        if proc.handle.stdin is not None:
            with contextlib.suppress(OSError, ValueError):
                proc.handle.stdin.close()

    def _reader(self, proc: EngineProcess) -> None:
        stdout = proc.handle.stdout
        try:
            if stdout is not None:
                for raw in stdout:
                    self.inbox.put(StdoutLine(proc.generation, raw.rstrip("\r\n")))
        except Exception as e:
            logger.exception("Engine stdout reader crashed")
            self.inbox.put(ReaderFailure(proc.generation, repr(e)))
        finally:
            self.inbox.put(ProcessEnded(proc.generation, proc.handle.wait()))

    def _drain_stderr(self, proc: EngineProcess) -> None:
        stderr = proc.handle.stderr
        if stderr is None:
            return
        try:
            for raw in stderr:
                line = raw.rstrip("\r\n")
                logger.debug("engine stderr: %s", line)
                self.inbox.put(StderrLine(proc.generation, line))
        except Exception as e:
            logger.exception("Engine stderr reader crashed")
            self.inbox.put(ReaderFailure(proc.generation, repr(e)))

    def _finalize(self, proc: EngineProcess, returncode: int | None) -> ProcessExit:
        """Release ``proc`` and classify its exit."""
        crashed = not self._stop_requested and self.state in _CRASHABLE_STATES
        self.state = LifecycleState.CRASHED if crashed else LifecycleState.STOPPED
        self.process = None
        if crashed:
            self.last_error = f"engine exited unexpectedly ({returncode})"

        if proc.handle.stdin is not None:
            with contextlib.suppress(OSError, ValueError):
                proc.handle.stdin.close()

        if crashed:
            logger.warning(
                "Engine crashed (pid=%s, returncode=%s)", proc.pid, returncode
            )
        else:
            logger.info("Engine stopped (pid=%s, returncode=%s)", proc.pid, returncode)

        return ProcessExit(proc.generation, returncode, crashed)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(state={self.state.name}, pid={self.pid})"
        )
