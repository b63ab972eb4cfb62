"""Shared fixtures: a scriptable in-memory PTY backend."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field

import pytest


class FakeReader:
    def __init__(self) -> None:
        self._chunks: queue.Queue[bytes] = queue.Queue()
        self.closed = False

    def feed(self, data: bytes) -> None:
        self._chunks.put(data)

    def eof(self) -> None:
        self._chunks.put(b"")

    def read(self, size: int) -> bytes:
        data = self._chunks.get(timeout=5)
        return data[:size]

    def interrupt(self) -> None:
        self.eof()

    def close(self) -> None:
        self.closed = True


class FakeWriter:
    def __init__(self) -> None:
        self.data = bytearray()
        self.fail: OSError | None = None
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.fail is not None:
            raise self.fail
        self.data.extend(data)

    def flush(self) -> None:
        if self.fail is not None:
            raise self.fail

    def close(self) -> None:
        self.closed = True


class FakeKiller:
    def __init__(self, child: FakeChild) -> None:
        self._child = child

    def kill(self) -> None:
        if self._child.kill_error is not None:
            raise self._child.kill_error
        self._child.kill_count += 1
        self._child.exit(1)


class FakeChild:
    def __init__(self, pid: int, reader: FakeReader) -> None:
        self.pid = pid
        self.reader = reader
        self.code: int | None = None
        self.kill_count = 0
        self.kill_error: OSError | None = None
        self.wait_error: Exception | None = None
        self._exited = threading.Event()

    def exit(self, code: int, *, close_output: bool = True) -> None:
        if self._exited.is_set():
            return
        self.code = code
        if close_output:
            self.reader.eof()
        self._exited.set()

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def wait(self) -> int:
        self._exited.wait(timeout=5)
        if self.wait_error is not None:
            raise self.wait_error
        return self.code if self.code is not None else 1

    def clone_killer(self) -> FakeKiller:
        return FakeKiller(self)


@dataclass
class FakePair:
    rows: int
    cols: int
    spawn_error: Exception | None = None
    reader_error: Exception | None = None
    writer_error: Exception | None = None
    argv: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    reader: FakeReader = field(default_factory=FakeReader)
    writer: FakeWriter = field(default_factory=FakeWriter)
    child: FakeChild | None = None
    closed: bool = False

    def spawn(self, argv: list[str], cwd: str | None, env: dict[str, str]) -> FakeChild:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.argv, self.cwd, self.env = argv, cwd, env
        self.child = FakeChild(pid=4242, reader=self.reader)
        return self.child

    def clone_reader(self) -> FakeReader:
        if self.reader_error is not None:
            raise self.reader_error
        return self.reader

    def take_writer(self) -> FakeWriter:
        if self.writer_error is not None:
            raise self.writer_error
        return self.writer

    def close(self) -> None:
        self.closed = True


class FakePtySystem:
    """Hands out ``FakePair``s; set the ``*_error`` attributes to inject faults."""

    def __init__(self) -> None:
        self.pairs: list[FakePair] = []
        self.open_error: Exception | None = None
        self.spawn_error: Exception | None = None
        self.reader_error: Exception | None = None
        self.writer_error: Exception | None = None

    def openpty(self, rows: int, cols: int) -> FakePair:
        if self.open_error is not None:
            raise self.open_error
        pair = FakePair(
            rows=rows,
            cols=cols,
            spawn_error=self.spawn_error,
            reader_error=self.reader_error,
            writer_error=self.writer_error,
        )
        self.pairs.append(pair)
        return pair

    @property
    def last(self) -> FakePair:
        return self.pairs[-1]


@pytest.fixture
def fake_pty() -> FakePtySystem:
    return FakePtySystem()
