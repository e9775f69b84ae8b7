"""Resolve the engine executable from prioritized candidate locations."""

from __future__ import annotations

import logging
import os
import pathlib
import typing as t

from ucibridge import constants, exc

if t.TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def _is_path_like(candidate: str) -> bool:
    """Return True if *candidate* names a location rather than a bare command.

    >>> _is_path_like("stockfish")
    False
    >>> _is_path_like("stockfish/stockfish")
    True
    >>> _is_path_like("/usr/bin/stockfish")
    True
    """
    seps = {os.sep, "/"}
    if os.altsep:
        seps.add(os.altsep)
    return any(sep in candidate for sep in seps)


def default_candidates() -> list[str]:
    """Return built-in candidates, led by :envvar:`UCIBRIDGE_ENGINE_PATH` if set."""
    candidates = list(constants.DEFAULT_CANDIDATES)
    if constants.ENGINE_PATH_OVERRIDE:
        candidates.insert(0, constants.ENGINE_PATH_OVERRIDE)
    return candidates


class BinaryLocator:
    """Walk an ordered candidate list and return the first usable executable.

    Path-like candidates must exist on disk, relative ones are resolved
    against ``base_dir``. A bare command name is accepted as is; whether it is
    on :envvar:`PATH` is only found out when spawning.

    Parameters
    ----------
    candidates : Sequence[str], optional
        Locations to try in order. Defaults to :func:`default_candidates`.
    base_dir : str or pathlib.Path, optional
        Directory relative candidates are resolved against. Defaults to the
        current working directory at resolve time.

    Examples
    --------
    >>> locator = BinaryLocator(["/nonexistent/engine", "stockfish"])
    >>> locator.resolve()
    'stockfish'

    >>> BinaryLocator(["/nonexistent/engine"]).resolve()
    Traceback (most recent call last):
    ...
    ucibridge.exc.BinaryNotFound: Engine executable not found, tried: /nonexistent/engine
    """

    def __init__(
        self,
        candidates: Sequence[str] | None = None,
        base_dir: str | pathlib.Path | None = None,
    ) -> None:
        self.candidates: list[str] = (
            list(candidates) if candidates is not None else default_candidates()
        )
        self.base_dir = pathlib.Path(base_dir) if base_dir is not None else None

    def resolve(self) -> str:
        """Return the first acceptable candidate.

        Raises
        ------
        :exc:`exc.BinaryNotFound`
            If no candidate qualifies.
        """
        for candidate in self.candidates:
            if not candidate:
                continue
            if not _is_path_like(candidate):
                logger.debug("Accepting bare engine command: %s", candidate)
                return candidate

            path = pathlib.Path(candidate).expanduser()
            if not path.is_absolute():
                path = (self.base_dir or pathlib.Path.cwd()) / path
            if path.is_file():
                logger.debug("Resolved engine executable: %s", path)
                return str(path)
            logger.debug("Engine candidate missing: %s", path)

        raise exc.BinaryNotFound(self.candidates)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(candidates={self.candidates!r})"
