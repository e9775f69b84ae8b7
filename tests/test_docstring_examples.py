"""Run the examples embedded in ucibridge docstrings."""

from __future__ import annotations

import doctest
import importlib

import pytest

DOCTEST_MODULES = [
    "ucibridge._internal.locator",
    "ucibridge._internal.protocol",
    "ucibridge._internal.supervisor",
    "ucibridge.broadcaster",
    "ucibridge.channel",
    "ucibridge.test.retry",
]


@pytest.mark.parametrize("module_name", DOCTEST_MODULES)
def test_docstring_examples(module_name: str) -> None:
    """Every docstring example in ``module_name`` passes."""
    module = importlib.import_module(module_name)
    result = doctest.testmod(module, optionflags=doctest.ELLIPSIS)
    assert result.attempted > 0
    assert result.failed == 0
