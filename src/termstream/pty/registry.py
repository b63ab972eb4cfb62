"""Session registry — the shared map of live, reachable PTY sessions."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from termstream.pty.backend import ChildKiller, PtyWriter
from termstream.pty.errors import (
    InputError,
    PTYError,
    SessionNotFoundError,
    SignalError,
    StatePoisonedError,
)

logger = logging.getLogger(__name__)


class PoisonableLock:
    """A mutex that refuses further use after a critical section blew up.

    An unexpected exception escaping ``hold()`` leaves the guarded state in
    an unknown shape, so the lock is marked poisoned and every later
    ``hold()`` raises ``StatePoisonedError``. ``PTYError``s are ordinary
    results and do not poison.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._poisoned = False

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._lock:
            if self._poisoned:
                raise StatePoisonedError()
            try:
                yield
            except PTYError:
                raise
            except BaseException:
                self._poisoned = True
                raise


@dataclass(eq=False)
class SessionControl:
    """The externally-actionable surface of one live session.

    ``writer`` and ``killer`` are each guarded by their own lock so a slow
    write never blocks a stop. ``stop_requested`` is an Event, readable and
    settable without either lock.
    """

    entry_id: str
    killer: ChildKiller
    writer: PtyWriter
    session_id: str = ""
    command: str = ""
    cwd: str | None = None
    pid: int = 0
    started_at: float = field(default_factory=time.monotonic)
    stop_requested: threading.Event = field(default_factory=threading.Event)
    _writer_lock: PoisonableLock = field(default_factory=PoisonableLock, repr=False)
    _killer_lock: PoisonableLock = field(default_factory=PoisonableLock, repr=False)
    _closed: bool = field(default=False, repr=False)

    def write(self, data: bytes) -> None:
        """Write ``data`` verbatim and flush."""
        with self._writer_lock.hold():
            try:
                self.writer.write(data)
                self.writer.flush()
            except OSError as e:
                raise InputError(str(e)) from e

    def kill(self) -> None:
        with self._killer_lock.hold():
            try:
                self.killer.kill()
            except OSError as e:
                raise SignalError(str(e)) from e

    def request_stop(self) -> None:
        """Mark the session as user-stopped, then kill it."""
        self.stop_requested.set()
        self.kill()

    @property
    def stopped(self) -> bool:
        return self.stop_requested.is_set()

    @property
    def alive(self) -> bool:
        return not self._closed

    def close(self) -> None:
        """Release the input side once the session has exited."""
        with self._writer_lock.hold():
            if self._closed:
                return
            self._closed = True
            try:
                self.writer.close()
            except OSError as e:
                logger.debug("Error closing writer for %s: %s", self.entry_id, e)

    def describe(self) -> dict[str, object]:
        return {
            "entry_id": self.entry_id,
            "session_id": self.session_id,
            "command": self.command,
            "cwd": self.cwd,
            "pid": self.pid,
            "alive": self.alive,
            "stopped": self.stopped,
        }


class SessionRegistry:
    """Thread-safe map from entry id to ``SessionControl``.

    One lock guards the whole map; every operation is O(1) and held briefly.
    An id is present iff its session is reachable for write/stop.
    """

    def __init__(self) -> None:
        self._controls: dict[str, SessionControl] = {}
        self._lock = PoisonableLock()

    def insert(self, entry_id: str, control: SessionControl) -> None:
        """Register ``control``, replacing any previous entry for the id."""
        with self._lock.hold():
            previous = self._controls.get(entry_id)
            self._controls[entry_id] = control
        if previous is not None and previous is not control:
            logger.warning("Session id %s re-registered; previous entry unreachable", entry_id)

    def get(self, entry_id: str) -> SessionControl:
        with self._lock.hold():
            control = self._controls.get(entry_id)
        if control is None:
            raise SessionNotFoundError()
        return control

    def remove(self, entry_id: str) -> SessionControl | None:
        """Remove and return the entry; absent ids return None."""
        with self._lock.hold():
            return self._controls.pop(entry_id, None)

    def discard(self, entry_id: str, control: SessionControl) -> bool:
        """Remove the entry only if it still maps to ``control``."""
        with self._lock.hold():
            if self._controls.get(entry_id) is not control:
                return False
            del self._controls[entry_id]
            return True

    def snapshot(self) -> list[SessionControl]:
        with self._lock.hold():
            return list(self._controls.values())

    def ids(self) -> list[str]:
        with self._lock.hold():
            return sorted(self._controls)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock.hold():
            return entry_id in self._controls

    def __len__(self) -> int:
        with self._lock.hold():
            return len(self._controls)
