"""Conftest.py (root-level).

We keep this in root pytest fixtures in pytest's doctest plugin to be available, as well
as avoiding conftest.py from being included in the wheel.
"""

from __future__ import annotations

import logging
import typing as t

import pytest
from _pytest.doctest import DoctestItem

from ucibridge import CommandChannel, EventKind, classify
from ucibridge._internal.locator import BinaryLocator

pytest_plugins = ["ucibridge.pytest_plugin"]


@pytest.fixture(autouse=True)
def add_doctest_fixtures(
    request: pytest.FixtureRequest,
    doctest_namespace: dict[str, t.Any],
) -> None:
    """Configure doctest fixtures for pytest-doctest."""
    if isinstance(request._pyfuncitem, DoctestItem):
        doctest_namespace["BinaryLocator"] = BinaryLocator
        doctest_namespace["CommandChannel"] = CommandChannel
        doctest_namespace["EventKind"] = EventKind
        doctest_namespace["classify"] = classify


@pytest.fixture(autouse=True)
def ucibridge_debug_logging(caplog: pytest.LogCaptureFixture) -> None:
    """Capture ucibridge debug logs so failing tests show engine traffic."""
    caplog.set_level(logging.DEBUG, logger="ucibridge")
