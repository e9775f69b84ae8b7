"""ucibridge pytest plugin.

Provides executables that behave like a small line-protocol chess engine, so
the bridge can be exercised against real child processes.
"""

from __future__ import annotations

import itertools
import json
import logging
import pathlib
import stat
import sys
import typing as t

import pytest

from ucibridge._internal.locator import BinaryLocator
from ucibridge.channel import CommandChannel

if t.TYPE_CHECKING:
    from collections.abc import Callable

    from ucibridge._internal.protocol import ProtocolEvent

logger = logging.getLogger(__name__)

FAKE_ENGINE_SOURCE = '''\
#!{python}
import json
import os
import sys
import time

CONFIG = json.loads({config!r})


def emit(text):
    sys.stdout.write(text + "\\n")
    sys.stdout.flush()


def crash():
    if CONFIG["delete_self_on_crash"]:
        os.unlink(__file__)
    os._exit(3)


def main():
    if CONFIG["spawn_log"]:
        with open(CONFIG["spawn_log"], "a") as fh:
            fh.write("%d\\n" % os.getpid())
    if CONFIG["stderr_banner"]:
        sys.stderr.write(CONFIG["stderr_banner"] + "\\n")
        sys.stderr.flush()
    if CONFIG["banner"]:
        emit(CONFIG["banner"])

    for raw in sys.stdin:
        line = raw.strip()
        if CONFIG["command_log"]:
            with open(CONFIG["command_log"], "a") as fh:
                fh.write(line + "\\n")

        if CONFIG["crash_on"] is not None and line == CONFIG["crash_on"]:
            crash()
        if CONFIG["stall_on"] is not None and line == CONFIG["stall_on"]:
            time.sleep(60)
            return

        if line == "uci":
            emit("id name FakeEngine")
            emit("uciok")
        elif line == "isready":
            marker = __file__ + ".crashed"
            if CONFIG["crash_on_first_isready"] and not os.path.exists(marker):
                open(marker, "w").close()
                crash()
            emit("readyok")
        elif line == "quit":
            if not CONFIG["ignore_quit"]:
                return
        elif line.startswith("go"):
            emit("info depth 1 seldepth 1 score cp 20 nodes 20 time 1 pv e2e4")
            emit("bestmove e2e4 ponder e7e5")
        else:
            emit("echo " + line)

    if CONFIG["ignore_quit"]:
        time.sleep(60)


main()
'''

_engine_counter = itertools.count()


def write_fake_engine(
    directory: pathlib.Path,
    *,
    name: str | None = None,
    banner: str | None = "FakeEngine 1.0 by ucibridge",
    stderr_banner: str | None = None,
    crash_on: str | None = None,
    stall_on: str | None = None,
    crash_on_first_isready: bool = False,
    delete_self_on_crash: bool = False,
    ignore_quit: bool = False,
    command_log: pathlib.Path | None = None,
    spawn_log: pathlib.Path | None = None,
) -> pathlib.Path:
    """Write an executable fake engine script into ``directory``.

    The script answers ``uci`` with ``uciok``, ``isready`` with ``readyok``,
    ``go ...`` with one ``info`` and one ``bestmove`` line, exits on ``quit``
    and echoes anything else back as ``echo <command>``.

    Parameters
    ----------
    crash_on : str, optional
        Exit with status 3 on receiving this exact command.
    stall_on : str, optional
        Stop reading stdin on receiving this exact command, as a hung engine
        would; writes to it block once the pipe is full.
    crash_on_first_isready : bool
        Exit with status 3 on the first ``isready`` across all runs of this
        script; later runs answer normally.
    delete_self_on_crash : bool
        Remove the script file before crashing, so it cannot be started again.
    ignore_quit : bool
        Keep running after ``quit`` and after stdin is closed.
    command_log : pathlib.Path, optional
        Append every received command to this file.
    spawn_log : pathlib.Path, optional
        Append the PID of every run to this file.
    """
    config = {
        "banner": banner,
        "stderr_banner": stderr_banner,
        "crash_on": crash_on,
        "stall_on": stall_on,
        "crash_on_first_isready": crash_on_first_isready,
        "delete_self_on_crash": delete_self_on_crash,
        "ignore_quit": ignore_quit,
        "command_log": str(command_log) if command_log else None,
        "spawn_log": str(spawn_log) if spawn_log else None,
    }
    path = directory / (name or f"fake-engine-{next(_engine_counter)}")
    path.write_text(
        FAKE_ENGINE_SOURCE.format(python=sys.executable, config=json.dumps(config)),
        encoding="utf-8",
    )
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_engine(tmp_path: pathlib.Path) -> Callable[..., pathlib.Path]:
    """Return a factory writing fake engine executables under ``tmp_path``.

    Keyword arguments are passed to :func:`write_fake_engine`.
    """

    def factory(**kwargs: t.Any) -> pathlib.Path:
        return write_fake_engine(tmp_path, **kwargs)

    return factory


class ChannelFactory(t.Protocol):
    """Callable returned by the :func:`engine_channel` fixture."""

    def __call__(
        self,
        engine: pathlib.Path | str,
        **kwargs: t.Any,
    ) -> tuple[CommandChannel, list[ProtocolEvent]]: ...


@pytest.fixture
def engine_channel(
    request: pytest.FixtureRequest,
) -> ChannelFactory:
    """Return a factory for :class:`CommandChannel` objects bound to one engine.

    Each channel records every event it publishes into the returned list and
    is closed when the test finishes.
    """
    channels: list[CommandChannel] = []

    def factory(
        engine: pathlib.Path | str,
        **kwargs: t.Any,
    ) -> tuple[CommandChannel, list[ProtocolEvent]]:
        channel = CommandChannel(locator=BinaryLocator([str(engine)]), **kwargs)
        events: list[ProtocolEvent] = []
        channel.subscribe(events.append)
        channels.append(channel)
        return channel, events

    def fin() -> None:
        for channel in channels:
            channel.close(grace_millis=200)

    request.addfinalizer(fin)

    return factory
