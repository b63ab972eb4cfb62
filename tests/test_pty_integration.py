"""End-to-end tests: real shells in real pseudo-terminals (POSIX only)."""

from __future__ import annotations

import asyncio
import os
import re
import time

import pytest

from termstream.config import PTYConfig
from termstream.pty.errors import SessionNotFoundError, SpawnError
from termstream.pty.events import ExitEvent, InitEvent, StdoutEvent
from termstream.pty.manager import PTYManager
from termstream.session.wire import Wire, WireEvent

pytestmark = pytest.mark.skipif(os.name == "nt", reason="POSIX pty backend")

SHELL = "/bin/sh"


def _manager() -> tuple[PTYManager, Wire]:
    wire = Wire()
    return PTYManager(wire, PTYConfig(drain_timeout=2.0)), wire


async def _until_exit(q: asyncio.Queue, timeout: float = 10.0) -> list[WireEvent]:
    events: list[WireEvent] = []
    while True:
        item = await asyncio.wait_for(q.get(), timeout=timeout)
        events.append(item)
        if isinstance(item.event, ExitEvent):
            return events


def _output(events: list[WireEvent]) -> str:
    return "".join(e.event.chunk for e in events if isinstance(e.event, StdoutEvent))


async def _read_until(
    q: asyncio.Queue, seen: list[str], pattern: str, timeout: float = 10.0
) -> str:
    """Collect stdout into ``seen`` until the joined text matches ``pattern``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        text = "".join(seen)
        if re.search(pattern, text):
            return text
        item = await asyncio.wait_for(q.get(), timeout=max(deadline - loop.time(), 0.01))
        assert not isinstance(item.event, ExitEvent), text
        if isinstance(item.event, StdoutEvent):
            seen.append(item.event.chunk)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class TestRealPty:
    def test_output_and_exit_code(self) -> None:
        async def scenario() -> list[WireEvent]:
            manager, wire = _manager()
            q = wire.subscribe(manager.channel_for("e1"))
            await manager.start("s", "e1", "echo one; echo two; exit 7", shell=SHELL)
            return await _until_exit(q)

        events = asyncio.run(scenario())
        assert isinstance(events[0].event, InitEvent)
        output = _output(events)
        assert output.index("one") < output.index("two")
        exit_event = events[-1].event
        assert exit_event.exit_code == 7
        assert exit_event.stopped is False
        assert exit_event.duration_ms >= 0
        assert sum(isinstance(e.event, ExitEvent) for e in events) == 1

    def test_runs_in_a_terminal(self) -> None:
        async def scenario() -> str:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start(
                "s", "e", "test -t 1 && echo tty-yes; echo $TERM", shell=SHELL
            )
            return _output(await _until_exit(q))

        output = asyncio.run(scenario())
        assert "tty-yes" in output
        assert "xterm-256color" in output

    def test_cwd_and_env(self, tmp_path) -> None:
        async def scenario() -> str:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start(
                "s", "e", "pwd; echo $MARKER", cwd=str(tmp_path), shell=SHELL,
                env={"MARKER": "from-env"},
            )
            return _output(await _until_exit(q))

        output = asyncio.run(scenario())
        assert os.path.realpath(tmp_path) in output or str(tmp_path) in output
        assert "from-env" in output

    def test_input_is_written_verbatim(self) -> None:
        async def scenario() -> str:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start("s", "e", "read line; echo got:$line", shell=SHELL)
            manager.write_input("e", "ping\n")
            return _output(await _until_exit(q))

        assert "got:ping" in asyncio.run(scenario())

    def test_large_output_arrives_in_order(self) -> None:
        async def scenario() -> str:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start(
                "s", "e", "i=1; while [ $i -le 2000 ]; do echo line$i; i=$((i+1)); done",
                shell=SHELL,
            )
            return _output(await _until_exit(q))

        lines = [l for l in asyncio.run(scenario()).splitlines() if l.startswith("line")]
        assert lines == [f"line{i}" for i in range(1, 2001)]

    def test_stop_reports_stopped(self) -> None:
        async def scenario() -> tuple[ExitEvent, int]:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start("s", "e", "sleep 60", shell=SHELL)
            pid = manager.registry.get("e").pid
            manager.stop("e")
            events = await _until_exit(q)
            with pytest.raises(SessionNotFoundError):
                manager.write_input("e", "x")
            with pytest.raises(SessionNotFoundError):
                manager.stop("e")
            return events[-1].event, pid

        exit_event, pid = asyncio.run(scenario())
        assert exit_event.stopped is True
        assert exit_event.exit_code != 0
        assert not _pid_alive(pid)

    def test_stop_all_leaves_no_children(self) -> None:
        async def scenario() -> tuple[list[int], list[ExitEvent], bool]:
            manager, wire = _manager()
            q = wire.subscribe()
            for i in range(4):
                await manager.start("s", f"e{i}", "sleep 60", shell=SHELL)
            pids = [c.pid for c in manager.registry.snapshot()]
            manager.stop_all()
            exits: list[ExitEvent] = []
            while len(exits) < 4:
                item = await asyncio.wait_for(q.get(), timeout=10)
                if isinstance(item.event, ExitEvent):
                    exits.append(item.event)
            closed = await manager.wait_closed(timeout=5)
            return pids, exits, closed

        pids, exits, closed = asyncio.run(scenario())
        assert closed is True
        assert all(e.stopped for e in exits)
        deadline = time.monotonic() + 2
        while any(_pid_alive(p) for p in pids) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not any(_pid_alive(p) for p in pids)

    def test_missing_shell_is_a_spawn_error(self) -> None:
        async def scenario() -> None:
            manager, _ = _manager()
            await manager.start("s", "e", "true", shell="/nonexistent/shell")

        with pytest.raises(SpawnError):
            asyncio.run(scenario())

    def test_ctrl_c_interrupts_foreground_job(self) -> None:
        async def scenario() -> tuple[list[WireEvent], float]:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start("s", "e", "sleep 8; echo natural", shell=SHELL)
            await asyncio.sleep(0.5)
            started = time.monotonic()
            manager.write_input("e", "\x03")
            events = await _until_exit(q)
            return events, time.monotonic() - started

        events, elapsed = asyncio.run(scenario())
        exit_event = events[-1].event
        assert elapsed < 3
        assert "natural" not in _output(events)
        assert exit_event.exit_code != 0
        assert exit_event.stopped is False

    def test_interactive_shell_echoes_command_output(self) -> None:
        async def scenario() -> tuple[str, ExitEvent]:
            manager, wire = _manager()
            q = wire.subscribe()
            await manager.start("s", "e", "exec /bin/sh -i", shell=SHELL)
            seen: list[str] = []
            # First prompt.
            await _read_until(q, seen, r"\S")
            manager.write_input("e", "echo hi\n")
            # The output line, then the next prompt.
            text = await _read_until(q, seen, r"[\r\n]hi\r?\n[^\r\n]")
            manager.stop("e")
            events = await _until_exit(q)
            return text, events[-1].event

        text, exit_event = asyncio.run(scenario())
        assert "echo hi" in text
        assert exit_event.stopped is True
