"""Retry helpers for ucibridge tests.

Engine output arrives on background threads, so tests poll for the state they
expect instead of sleeping a fixed amount.
"""

from __future__ import annotations

import logging
import time
import typing as t

from ucibridge.exc import WaitTimeout
from ucibridge.test.constants import (
    RETRY_INTERVAL_SECONDS,
    RETRY_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

if t.TYPE_CHECKING:
    from collections.abc import Callable


def retry_until(
    fun: Callable[[], bool],
    seconds: float = RETRY_TIMEOUT_SECONDS,
    *,
    interval: float = RETRY_INTERVAL_SECONDS,
    raises: bool | None = True,
) -> bool:
    """
    Retry a function until a condition meets or the specified time passes.

    Parameters
    ----------
    fun : callable
        A function that will be called repeatedly until it returns ``True``  or
        the specified time passes.
    seconds : float
        Seconds to retry. Defaults to ``8``, which is configurable via
        ``RETRY_TIMEOUT_SECONDS`` environment variables.
    interval : float
        Time in seconds to wait between calls. Defaults to ``0.05`` and is
        configurable via ``RETRY_INTERVAL_SECONDS`` environment variable.
    raises : bool
        Whether or not to raise an exception on timeout. Defaults to ``True``.

    Examples
    --------
    >>> seen = []
    >>> retry_until(lambda: seen.append(1) or len(seen) >= 3, interval=0)
    True

    >>> retry_until(lambda: False, 0.01, raises=False)
    False
    """
    ini = time.monotonic()

    while not fun():
        end = time.monotonic()
        if end - ini >= seconds:
            if raises:
                msg = f"Condition not met after {seconds}s"
                raise WaitTimeout(msg)
            return False
        time.sleep(interval)
    return True
