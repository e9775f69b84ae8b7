"""Engine protocol line classification.

Every line the engine writes to stdout becomes exactly one
:class:`ProtocolEvent`. Lines that match nothing known are kept as
:attr:`EventKind.UNRECOGNIZED` with their text intact.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import typing as t

from ucibridge import constants

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    """Kinds of events delivered to subscribers."""

    HANDSHAKE_ACK = enum.auto()
    READY_ACK = enum.auto()
    INFO_LINE = enum.auto()
    BEST_MOVE = enum.auto()
    UNRECOGNIZED = enum.auto()
    STDERR = enum.auto()
    PROCESS_ERROR = enum.auto()
    PROCESS_EXITED = enum.auto()
    DELIVERY_ABANDONED = enum.auto()


@dataclasses.dataclass(frozen=True)
class ProtocolEvent:
    """A classified engine line or lifecycle event.

    ``payload`` is the raw line for protocol events and a human readable
    message for lifecycle events. ``data`` holds decoded fields, if any.
    """

    kind: EventKind
    payload: str
    data: dict[str, t.Any] = dataclasses.field(default_factory=dict)


_INT_FIELDS = {
    "depth",
    "seldepth",
    "multipv",
    "nodes",
    "nps",
    "time",
    "hashfull",
    "tbhits",
    "currmovenumber",
}


def _to_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def parse_info(line: str) -> dict[str, t.Any]:
    """Decode the fields of an ``info`` line.

    Unknown keywords are skipped, malformed numbers are dropped.

    >>> parse_info("info depth 12 score cp 34 nodes 1000 pv e2e4 e7e5")
    {'depth': 12, 'score': {'cp': 34}, 'nodes': 1000, 'pv': ['e2e4', 'e7e5']}

    >>> parse_info("info depth x score mate -3")
    {'score': {'mate': -3}}
    """
    parts = line.split()
    data: dict[str, t.Any] = {}
    i = 1
    while i < len(parts):
        key = parts[i]
        if key in _INT_FIELDS and i + 1 < len(parts):
            value = _to_int(parts[i + 1])
            if value is not None:
                data[key] = value
            i += 2
        elif key == "score" and i + 2 < len(parts):
            unit = parts[i + 1]
            value = _to_int(parts[i + 2])
            if unit in ("cp", "mate") and value is not None:
                data["score"] = {unit: value}
            i += 3
        elif key == "pv":
            data["pv"] = parts[i + 1:]
            break
        elif key == "string":
            data["string"] = " ".join(parts[i + 1:])
            break
        else:
            i += 1
    return data


def parse_best_move(line: str) -> dict[str, t.Any]:
    """Decode a ``bestmove`` line.

    >>> parse_best_move("bestmove e2e4 ponder e7e5")
    {'move': 'e2e4', 'ponder': 'e7e5'}

    >>> parse_best_move("bestmove (none)")
    {'move': None, 'ponder': None}
    """
    parts = line.split()
    move = parts[1] if len(parts) > 1 else None
    ponder = None
    if len(parts) > 3 and parts[2] == "ponder":
        ponder = parts[3]
    if move == "(none)":
        move = None
    return {"move": move, "ponder": ponder}


def classify(line: str) -> ProtocolEvent:
    """Map one engine output line onto a :class:`ProtocolEvent`.

    Total over all input: anything not recognized is returned as
    :attr:`EventKind.UNRECOGNIZED` with the original text as payload.

    Examples
    --------
    >>> classify("uciok").kind
    <EventKind.HANDSHAKE_ACK: 1>

    >>> classify("  readyok\\n").kind
    <EventKind.READY_ACK: 2>

    >>> event = classify("Stockfish 16 by the Stockfish developers")
    >>> event.kind.name, event.payload
    ('UNRECOGNIZED', 'Stockfish 16 by the Stockfish developers')
    """
    text = line.strip()

    if text == constants.HANDSHAKE_ACK:
        return ProtocolEvent(EventKind.HANDSHAKE_ACK, text)
    if text == constants.READY_ACK:
        return ProtocolEvent(EventKind.READY_ACK, text)

    head = text.split(" ", 1)[0]
    if head == constants.INFO_PREFIX:
        return ProtocolEvent(EventKind.INFO_LINE, text, parse_info(text))
    if head == constants.BEST_MOVE_PREFIX:
        return ProtocolEvent(EventKind.BEST_MOVE, text, parse_best_move(text))

    return ProtocolEvent(EventKind.UNRECOGNIZED, line)
