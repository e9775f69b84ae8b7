"""Command delivery to a supervised engine.

:class:`CommandChannel` is what the application talks to. Commands go in
through :meth:`CommandChannel.submit`; everything that comes back, engine
output and lifecycle alike, is delivered to subscribers as
:class:`~ucibridge.ProtocolEvent` objects.

All channel state (the pending queue, the ready flag, restart bookkeeping) and
the supervisor's lifecycle are owned by one dispatcher thread. Callers and
reader threads only post messages to it. The one exception is
:meth:`CommandChannel.stop`, which kills the engine from the calling thread
when the dispatcher is stuck writing to an engine that stopped reading.
"""

from __future__ import annotations

import collections
import dataclasses
import logging
import queue
import threading
import time
import typing as t

from ucibridge import constants, exc
from ucibridge._internal.protocol import EventKind, ProtocolEvent, classify
from ucibridge._internal.supervisor import (
    EngineProcessSupervisor,
    ProcessEnded,
    ProcessExit,
    ReaderFailure,
    StderrLine,
    StdoutLine,
)
from ucibridge.broadcaster import EventBroadcaster

if t.TYPE_CHECKING:
    import sys
    import types
    from collections.abc import Callable

    if sys.version_info >= (3, 11):
        from typing import Self
    else:
        from typing_extensions import Self

    from ucibridge._internal.locator import BinaryLocator

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class PendingCommand:
    """A command waiting for the engine to become ready."""

    text: str
    submitted_at: float = dataclasses.field(default_factory=time.time)
    retry_count: int = 0


@dataclasses.dataclass(frozen=True)
class EngineStatus:
    """Point-in-time health snapshot.

    >>> EngineStatus(process_live=False, ready=False, pid=None)
    EngineStatus(process_live=False, ready=False, pid=None)
    """

    process_live: bool
    ready: bool
    pid: int | None


@dataclasses.dataclass(frozen=True)
class EngineStats:
    """Diagnostic counters for the channel and its engine."""

    pending: int
    spawns: int
    restarts: int
    last_error: str | None
    last_activity: float | None


@dataclasses.dataclass(frozen=True)
class _Submit:
    command: PendingCommand


@dataclasses.dataclass(frozen=True)
class _Call:
    func: Callable[[], t.Any]
    reply: queue.Queue[tuple[t.Any, Exception | None]]


@dataclasses.dataclass(frozen=True)
class _Shutdown:
    pass


class CommandChannel:
    """Deliver commands to the engine in order, across restarts.

    While the engine is not ready, commands are queued and the engine is
    started if needed. When ``readyok`` is seen the queue is written out in
    submission order. If the engine crashes with commands queued, one restart
    is attempted; if that fails the queued commands are dropped and reported
    in a :attr:`EventKind.DELIVERY_ABANDONED` event.

    Parameters
    ----------
    supervisor : EngineProcessSupervisor, optional
        Built from ``locator``, ``handshake`` and ``process_factory`` if omitted.
    broadcaster : EventBroadcaster, optional
        Shared broadcaster; a private one is created if omitted.

    Examples
    --------
    >>> from ucibridge._internal.locator import BinaryLocator
    >>> channel = CommandChannel(locator=BinaryLocator(["/nonexistent/engine"]))
    >>> channel.status()
    EngineStatus(process_live=False, ready=False, pid=None)
    >>> channel.start()
    Traceback (most recent call last):
    ...
    ucibridge.exc.BinaryNotFound: Engine executable not found, tried: /nonexistent/engine
    >>> channel.close()
    """

    def __init__(
        self,
        supervisor: EngineProcessSupervisor | None = None,
        broadcaster: EventBroadcaster | None = None,
        *,
        locator: BinaryLocator | None = None,
        handshake: str | None = constants.HANDSHAKE_COMMAND,
        process_factory: Callable[..., t.Any] | None = None,
    ) -> None:
        if supervisor is None:
            supervisor = EngineProcessSupervisor(
                locator,
                handshake=handshake,
                process_factory=process_factory,
            )
        self.supervisor = supervisor
        self.broadcaster = broadcaster or EventBroadcaster()
        self._inbox = t.cast("queue.Queue[t.Any]", supervisor.inbox)
        self._ready = False
        self._ready_event = threading.Event()
        self._pending: collections.deque[PendingCommand] = collections.deque()
        self._restart_attempted = False
        self._restarts = 0
        self._last_activity: float | None = None
        self._exited_generation = 0
        self._dispatcher: threading.Thread | None = None
        self._dispatcher_lock = threading.Lock()

    # Upward API ---------------------------------------------------------
    def start(self) -> None:
        """Start the engine if it is not running.

        Raises
        ------
        :exc:`exc.BinaryNotFound`, :exc:`exc.SpawnError`
        """
        self._ensure_dispatcher()
        if self.supervisor.is_live:
            return
        self._call(self._spawn)

    def stop(self, grace_millis: int | None = None) -> None:
        """Ask the engine to quit, killing it after ``grace_millis``.

        Returns once the exit has been published, or, if the dispatcher stays
        busy past the grace period, once the engine has been killed and the
        dispatcher had a bounded chance to catch up.
        """
        millis = constants.STOP_GRACE_MILLIS if grace_millis is None else grace_millis
        if threading.current_thread() is self._dispatcher:
            self._stop(millis)
            return
        if not self.supervisor.is_live:
            return

        grace = max(millis, 0) / 1000
        reply = self._post(lambda: self._stop(millis))
        try:
            self._result(reply, timeout=grace)
            return
        except queue.Empty:
            self.supervisor.kill()
        try:
            self._result(reply, timeout=grace + 2 * constants.READER_JOIN_SECONDS)
        except queue.Empty:
            logger.warning("Engine killed, dispatcher has not applied the exit yet")

    def submit(self, text: str) -> None:
        """Queue ``text`` for delivery; returns immediately.

        Raises
        ------
        ValueError
            If ``text`` spans more than one line.
        """
        text = text.rstrip("\r\n")
        if "\n" in text or "\r" in text:
            msg = f"Command must be a single line: {text!r}"
            raise ValueError(msg)
        self._ensure_dispatcher()
        self._inbox.put(_Submit(PendingCommand(text)))

    def subscribe(
        self,
        handler: Callable[[ProtocolEvent], object],
    ) -> Callable[[], None]:
        """Register ``handler`` for all events; returns an unsubscribe callable."""
        return self.broadcaster.subscribe(handler)

    def status(self) -> EngineStatus:
        """Return a snapshot of process and readiness state."""
        live = self.supervisor.is_live
        return EngineStatus(
            process_live=live,
            ready=self._ready and live,
            pid=self.supervisor.pid,
        )

    def stats(self) -> EngineStats:
        """Return diagnostic counters."""
        return EngineStats(
            pending=len(self._pending),
            spawns=self.supervisor.spawns,
            restarts=self._restarts,
            last_error=self.supervisor.last_error,
            last_activity=self._last_activity,
        )

    @property
    def ready(self) -> bool:
        """True between a ``readyok`` and the next process exit."""
        return self._ready

    def wait_ready(self, timeout: float | None = None) -> None:
        """Block until the engine is ready.

        Raises
        ------
        :exc:`exc.WaitTimeout`
        """
        if not self._ready_event.wait(timeout=timeout):
            msg = f"Engine not ready after {timeout}s"
            raise exc.WaitTimeout(msg)

    def cancel_pending(self, timeout: float | None = 5.0) -> list[str]:
        """Drop every queued command and return their texts, oldest first."""
        try:
            return t.cast("list[str]", self._call(self._take_pending, timeout))
        except queue.Empty:
            msg = "Timed out cancelling pending commands"
            raise exc.WaitTimeout(msg) from None

    def close(self, grace_millis: int | None = None) -> None:
        """Stop the engine and the dispatcher thread.

        Safe to call multiple times.
        """
        self.stop(grace_millis)
        with self._dispatcher_lock:
            thread = self._dispatcher
            self._dispatcher = None
        if thread is None:
            return
        self._inbox.put(_Shutdown())
        if thread is not threading.current_thread():
            thread.join(timeout=constants.READER_JOIN_SECONDS)

    def __enter__(self) -> Self:
        """Start the engine."""
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Stop the engine and the dispatcher."""
        self.close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(ready={self._ready}, "
            f"pending={len(self._pending)}, supervisor={self.supervisor!r})"
        )

    # Dispatcher ---------------------------------------------------------
    def _ensure_dispatcher(self) -> None:
        with self._dispatcher_lock:
            if self._dispatcher is not None:
                return
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name="ucibridge-dispatcher",
                daemon=True,
            )
            self._dispatcher.start()

    def _post(self, func: Callable[[], t.Any]) -> queue.Queue[t.Any]:
        """Run ``func`` on the dispatcher; its outcome lands in the returned queue."""
        self._ensure_dispatcher()
        reply: queue.Queue[tuple[t.Any, Exception | None]] = queue.Queue(maxsize=1)
        self._inbox.put(_Call(func, reply))
        return reply

    @staticmethod
    def _result(reply: queue.Queue[t.Any], timeout: float | None = None) -> t.Any:
        result, error = reply.get(timeout=timeout)
        if error is not None:
            raise error
        return result

    def _call(self, func: Callable[[], t.Any], timeout: float | None = None) -> t.Any:
        if threading.current_thread() is self._dispatcher:
            return func()
        return self._result(self._post(func), timeout)

    def _dispatch_loop(self) -> None:
        while True:
            message = self._inbox.get()
            if isinstance(message, _Shutdown):
                return
            try:
                self._handle(message)
            except Exception as e:
                logger.exception("Dispatcher failed handling %r", message)
                self._publish(EventKind.PROCESS_ERROR, f"internal error: {e!r}")

    def _handle(self, message: object) -> None:
        if isinstance(message, StdoutLine):
            self._on_stdout(message)
        elif isinstance(message, StderrLine):
            self._publish(EventKind.STDERR, message.text)
        elif isinstance(message, ProcessEnded):
            report = self.supervisor.reap(message)
            if report is not None:
                self._on_exit(report)
        elif isinstance(message, ReaderFailure):
            self._publish(EventKind.PROCESS_ERROR, f"reader failed: {message.error}")
        elif isinstance(message, _Submit):
            self._on_submit(message.command)
        elif isinstance(message, _Call):
            try:
                result = message.func()
            except Exception as e:
                message.reply.put((None, e))
            else:
                message.reply.put((result, None))
        else:
            logger.warning("Unknown dispatcher message: %r", message)

    def _on_stdout(self, message: StdoutLine) -> None:
        if (
            message.generation != self.supervisor.generation
            or message.generation <= self._exited_generation
        ):
            logger.debug("Dropping line from exited engine: %s", message.text)
            return
        self._last_activity = time.monotonic()
        event = classify(message.text)

        if event.kind is EventKind.HANDSHAKE_ACK:
            self.broadcaster.publish(event)
            if not self._ready:
                self._request_readiness()
        elif event.kind is EventKind.READY_ACK:
            self._ready = True
            self._restart_attempted = False
            self.supervisor.mark_ready()
            self._ready_event.set()
            self.broadcaster.publish(event)
            self._drain()
        else:
            self.broadcaster.publish(event)

    def _on_submit(self, command: PendingCommand) -> None:
        if self._ready and not self._pending:
            try:
                self.supervisor.write_line(command.text)
            except exc.ProcessUnavailable as e:
                logger.info("Write failed, queueing %r: %s", command.text, e)
                command.retry_count += 1
                self._set_unready()
            else:
                return

        self._pending.append(command)
        logger.debug("Queued %r (%d pending)", command.text, len(self._pending))
        if not self.supervisor.is_live:
            self._recover("start")

    def _on_exit(self, message: ProcessExit) -> None:
        self._exited_generation = max(self._exited_generation, message.generation)
        self._set_unready()
        self._publish(
            EventKind.PROCESS_EXITED,
            f"engine exited with {message.returncode}",
            returncode=message.returncode,
            signal=message.signal,
            crashed=message.crashed,
        )

        if not message.crashed or not self._pending:
            return
        if self._restart_attempted:
            self._abandon("engine crashed again before becoming ready")
            return

        self._restart_attempted = True
        logger.warning(
            "Engine crashed with %d pending command(s), restarting",
            len(self._pending),
        )
        if self._recover("restart"):
            self._restarts += 1

    # Helpers ------------------------------------------------------------
    def _spawn(self) -> bool:
        """Start the engine; True if a new process was spawned."""
        generation = self.supervisor.generation
        self.supervisor.start()
        if self.supervisor.generation == generation:
            return False
        if self.supervisor.handshake is None:
            self._request_readiness()
        return True

    def _stop(self, grace_millis: int) -> None:
        report = self.supervisor.stop(grace_millis)
        if report is not None:
            self._on_exit(report)

    def _recover(self, action: str) -> bool:
        try:
            return self._spawn()
        except (exc.BinaryNotFound, exc.SpawnError) as e:
            self._publish(EventKind.PROCESS_ERROR, f"{action} failed: {e}")
            self._abandon(str(e))
            return False

    def _request_readiness(self) -> None:
        try:
            self.supervisor.write_line(constants.READINESS_COMMAND)
        except exc.ProcessUnavailable as e:
            logger.debug("Readiness check not sent: %s", e)
        else:
            self.supervisor.mark_unconfirmed()

    def _drain(self) -> None:
        while self._pending and self._ready:
            command = self._pending[0]
            try:
                self.supervisor.write_line(command.text)
            except exc.ProcessUnavailable as e:
                command.retry_count += 1
                logger.info("Drain interrupted at %r: %s", command.text, e)
                self._set_unready()
                return
            self._pending.popleft()

    def _set_unready(self) -> None:
        self._ready = False
        self._ready_event.clear()

    def _take_pending(self) -> list[str]:
        texts = [command.text for command in self._pending]
        self._pending.clear()
        return texts

    def _abandon(self, reason: str) -> None:
        self._restart_attempted = False
        commands = self._take_pending()
        if not commands:
            return
        logger.warning("Dropping %d pending command(s): %s", len(commands), reason)
        self._publish(
            EventKind.DELIVERY_ABANDONED,
            f"{reason}; dropped: " + ", ".join(commands),
            commands=commands,
            reason=reason,
        )

    def _publish(self, kind: EventKind, payload: str, **data: t.Any) -> None:
        self.broadcaster.publish(ProtocolEvent(kind, payload, data))
