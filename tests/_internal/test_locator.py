"""Tests for engine executable resolution."""

from __future__ import annotations

import pathlib
import typing as t

import pytest

from ucibridge import constants, exc
from ucibridge._internal.locator import BinaryLocator, default_candidates


class LocatorFixture(t.NamedTuple):
    """Test fixture for BinaryLocator.resolve()."""

    test_id: str
    candidates: list[str]
    existing: list[str]
    expected: str | None


LOCATOR_FIXTURES: list[LocatorFixture] = [
    LocatorFixture(
        test_id="first_existing_absolute_wins",
        candidates=["{tmp}/a/engine", "{tmp}/b/engine", "stockfish"],
        existing=["a/engine", "b/engine"],
        expected="{tmp}/a/engine",
    ),
    LocatorFixture(
        test_id="missing_absolute_skipped",
        candidates=["{tmp}/a/engine", "{tmp}/b/engine"],
        existing=["b/engine"],
        expected="{tmp}/b/engine",
    ),
    LocatorFixture(
        test_id="bare_command_accepted_unchecked",
        candidates=["{tmp}/a/engine", "no-such-engine-binary"],
        existing=[],
        expected="no-such-engine-binary",
    ),
    LocatorFixture(
        test_id="relative_resolved_against_base_dir",
        candidates=["stockfish/stockfish", "stockfish"],
        existing=["stockfish/stockfish"],
        expected="{tmp}/stockfish/stockfish",
    ),
    LocatorFixture(
        test_id="directory_is_not_an_executable",
        candidates=["{tmp}/a"],
        existing=["a/engine"],
        expected=None,
    ),
    LocatorFixture(
        test_id="nothing_qualifies",
        candidates=["{tmp}/a/engine", ""],
        existing=[],
        expected=None,
    ),
]


@pytest.mark.parametrize(
    list(LocatorFixture._fields),
    LOCATOR_FIXTURES,
    ids=[test.test_id for test in LOCATOR_FIXTURES],
)
def test_resolve(
    tmp_path: pathlib.Path,
    test_id: str,
    candidates: list[str],
    existing: list[str],
    expected: str | None,
) -> None:
    """BinaryLocator returns the first acceptable candidate."""
    for rel in existing:
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    locator = BinaryLocator(
        [c.format(tmp=tmp_path) for c in candidates],
        base_dir=tmp_path,
    )

    if expected is None:
        with pytest.raises(exc.BinaryNotFound) as excinfo:
            locator.resolve()
        assert excinfo.value.candidates == locator.candidates
    else:
        assert locator.resolve() == expected.format(tmp=tmp_path)


def test_resolve_relative_uses_cwd_without_base_dir(
    tmp_path: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Relative candidates fall back to the current working directory."""
    engine = tmp_path / "bin" / "engine"
    engine.parent.mkdir()
    engine.touch()
    monkeypatch.chdir(tmp_path)

    assert BinaryLocator(["bin/engine"]).resolve() == str(engine)


def test_default_candidates_order() -> None:
    """Built-in candidates end with the bundled path then the bare command."""
    candidates = default_candidates()
    assert candidates[-2:] == [
        constants.PROJECT_ENGINE_PATH,
        constants.ENGINE_COMMAND_NAME,
    ]


def test_default_candidates_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """UCIBRIDGE_ENGINE_PATH is tried before every built-in candidate."""
    monkeypatch.setattr(constants, "ENGINE_PATH_OVERRIDE", "/opt/engines/custom")

    candidates = default_candidates()
    assert candidates[0] == "/opt/engines/custom"
    assert BinaryLocator().candidates == candidates
