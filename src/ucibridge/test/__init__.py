"""Helper methods for ucibridge and downstream ucibridge libraries."""

from __future__ import annotations

from .constants import RETRY_INTERVAL_SECONDS, RETRY_TIMEOUT_SECONDS
from .retry import retry_until

__all__ = (
    "RETRY_INTERVAL_SECONDS",
    "RETRY_TIMEOUT_SECONDS",
    "retry_until",
)
