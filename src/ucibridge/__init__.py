"""ucibridge, a supervisor and command bridge for line-protocol chess engines."""

from __future__ import annotations

from .__about__ import (
    __author__,
    __copyright__,
    __description__,
    __email__,
    __license__,
    __package_name__,
    __title__,
    __version__,
)
from ._internal.locator import BinaryLocator
from ._internal.protocol import EventKind, ProtocolEvent, classify
from ._internal.supervisor import EngineProcessSupervisor, LifecycleState
from .broadcaster import EventBroadcaster
from .channel import CommandChannel, EngineStats, EngineStatus, PendingCommand

__all__ = (
    "BinaryLocator",
    "CommandChannel",
    "EngineProcessSupervisor",
    "EngineStats",
    "EngineStatus",
    "EventBroadcaster",
    "EventKind",
    "LifecycleState",
    "PendingCommand",
    "ProtocolEvent",
    "__author__",
    "__copyright__",
    "__description__",
    "__email__",
    "__license__",
    "__package_name__",
    "__title__",
    "__version__",
    "classify",
)
