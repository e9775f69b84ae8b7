"""Metadata package for ucibridge."""

from __future__ import annotations

__title__ = "ucibridge"
__package_name__ = "ucibridge"
__version__ = "0.1.0"
__description__ = "Supervise a chess engine process and bridge its line protocol"
__email__ = "maintainers@ucibridge.dev"
__author__ = "ucibridge contributors"
__github__ = "https://github.com/ucibridge/ucibridge"
__docs__ = "https://github.com/ucibridge/ucibridge#readme"
__tracker__ = "https://github.com/ucibridge/ucibridge/issues"
__pypi__ = "https://pypi.org/project/ucibridge/"
__license__ = "MIT"
__copyright__ = "Copyright 2026- ucibridge contributors"
