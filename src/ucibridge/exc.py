"""Provide exceptions used by ucibridge.

ucibridge.exc
~~~~~~~~~~~~~

Spawn-time failures are raised to the caller of ``start()``. Failures that
happen while the engine runs are reported as events instead, see
:class:`ucibridge.EventKind`.
"""

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from collections.abc import Sequence


class UCIBridgeException(Exception):
    """Base exception for all ucibridge errors."""


class BinaryNotFound(UCIBridgeException):
    """Raised when no engine executable candidate resolves."""

    def __init__(self, candidates: Sequence[str] | None = None, *args: object) -> None:
        self.candidates = list(candidates or [])
        if self.candidates:
            super().__init__(
                "Engine executable not found, tried: " + ", ".join(self.candidates),
            )
        else:
            super().__init__("Engine executable not found")


class SpawnError(UCIBridgeException):
    """Raised when the OS refuses to create the engine process."""

    def __init__(self, path: str, reason: str | None = None, *args: object) -> None:
        self.path = path
        msg = f"Failed to spawn engine: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ProcessUnavailable(UCIBridgeException):
    """Raised if a write is attempted with no live, writable engine process."""

    def __init__(self, reason: str | None = None, *args: object) -> None:
        super().__init__(reason or "Engine process unavailable")


class WaitTimeout(UCIBridgeException):
    """Raised when a function times out waiting for a condition."""
