"""Constants for ucibridge.

Defaults marked as configurable are read from the environment once, at import
time.
"""

from __future__ import annotations

import os

#: Written by the supervisor right after spawn to select the protocol.
#: Can be configured via :envvar:`UCIBRIDGE_HANDSHAKE`, an empty value disables it.
HANDSHAKE_COMMAND: str | None = os.getenv("UCIBRIDGE_HANDSHAKE", "uci") or None

#: Written by the channel once the handshake has been acknowledged.
READINESS_COMMAND = "isready"

#: Written by ``stop()`` before waiting for a voluntary exit.
TERMINATION_COMMAND = "quit"

#: Engine reply to :data:`HANDSHAKE_COMMAND`.
HANDSHAKE_ACK = "uciok"

#: Engine reply to :data:`READINESS_COMMAND`.
READY_ACK = "readyok"

#: Prefix of analysis progress lines.
INFO_PREFIX = "info"

#: Prefix of the final search result line.
BEST_MOVE_PREFIX = "bestmove"

#: Grace period for ``stop()`` in milliseconds.
#: Can be configured via :envvar:`UCIBRIDGE_STOP_GRACE_MS`, defaults to 2000.
STOP_GRACE_MILLIS = int(os.getenv("UCIBRIDGE_STOP_GRACE_MS", 2000))

#: Seconds ``stop()`` waits for a reader thread to finish after the process exited.
READER_JOIN_SECONDS = 1.0

#: Bare command name resolved through :envvar:`PATH` at spawn time.
ENGINE_COMMAND_NAME = "stockfish"

#: Engine path bundled next to the application, resolved against the base directory.
PROJECT_ENGINE_PATH = os.path.join("stockfish", "stockfish")

#: Candidate engine locations, in priority order.
DEFAULT_CANDIDATES: tuple[str, ...] = (
    "/usr/local/bin/stockfish",
    "/opt/homebrew/bin/stockfish",
    "/usr/games/stockfish",
    "/usr/bin/stockfish",
    PROJECT_ENGINE_PATH,
    ENGINE_COMMAND_NAME,
)

#: Explicit engine location tried before :data:`DEFAULT_CANDIDATES`.
#: Can be configured via :envvar:`UCIBRIDGE_ENGINE_PATH`.
ENGINE_PATH_OVERRIDE: str | None = os.getenv("UCIBRIDGE_ENGINE_PATH") or None
