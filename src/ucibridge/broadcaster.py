"""Synchronous fan-out of engine events to subscribers."""

from __future__ import annotations

import logging
import threading
import typing as t

if t.TYPE_CHECKING:
    from collections.abc import Callable

    from ucibridge._internal.protocol import ProtocolEvent

    EventHandler = Callable[[ProtocolEvent], object]

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Deliver each published event to every subscriber, in subscription order.

    A handler that raises is logged and skipped; later handlers still run.
    Subscribing from inside a handler is safe, the new handler receives the
    next event.

    Examples
    --------
    >>> from ucibridge._internal.protocol import classify
    >>> seen = []
    >>> broadcaster = EventBroadcaster()
    >>> unsubscribe = broadcaster.subscribe(seen.append)
    >>> broadcaster.publish(classify("readyok"))
    >>> [event.kind.name for event in seen]
    ['READY_ACK']
    >>> unsubscribe()
    >>> broadcaster.publish(classify("readyok"))
    >>> len(seen)
    1
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: tuple[EventHandler, ...] = ()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that removes it."""
        with self._lock:
            self._handlers = (*self._handlers, handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove the first registration of ``handler``, if any."""
        with self._lock:
            handlers = list(self._handlers)
            if handler in handlers:
                handlers.remove(handler)
                self._handlers = tuple(handlers)

    def publish(self, event: ProtocolEvent) -> None:
        """Invoke every handler with ``event`` on the calling thread."""
        with self._lock:
            handlers = self._handlers
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed on %s", handler, event.kind.name
                )

    def __len__(self) -> int:
        return len(self._handlers)
