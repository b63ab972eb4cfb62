"""PTY backends — allocate a pseudo-terminal and attach a child to it.

The manager only talks to the small protocols defined here, so the native
POSIX backend (stdlib ``pty``) and the Windows backend (``pywinpty``) are
interchangeable, and tests can substitute fakes.

Backends raise plain exceptions (``OSError`` and friends); translating them
into ``PTYError`` subclasses is the spawn pipeline's job.
"""

from __future__ import annotations

import functools
import logging
import os
import select
import signal
import struct
import subprocess
import threading
from typing import Protocol

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class PtyReader(Protocol):
    def read(self, size: int) -> bytes: ...

    def interrupt(self) -> None: ...

    def close(self) -> None: ...


class PtyWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


class ChildKiller(Protocol):
    def kill(self) -> None: ...


class PtyChild(Protocol):
    pid: int

    def wait(self) -> int: ...

    def clone_killer(self) -> ChildKiller: ...


class PtyPair(Protocol):
    def spawn(
        self, argv: list[str], cwd: str | None, env: dict[str, str]
    ) -> PtyChild: ...

    def clone_reader(self) -> PtyReader: ...

    def take_writer(self) -> PtyWriter: ...

    def close(self) -> None: ...


class PtySystem(Protocol):
    def openpty(self, rows: int, cols: int) -> PtyPair: ...


# ---------------------------------------------------------------------------
# POSIX
# ---------------------------------------------------------------------------


class FdReader:
    """Blocking reader over a duplicated master fd.

    ``read`` waits in short ``select`` slices so that ``interrupt()`` from
    another thread can end it; an interrupted read returns ``b""``.
    """

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._interrupted = threading.Event()
        self._closed = False

    def read(self, size: int) -> bytes:
        while not self._interrupted.is_set():
            ready, _, _ = select.select([self._fd], [], [], _POLL_INTERVAL)
            if ready:
                try:
                    return os.read(self._fd, size)
                except OSError:
                    # EIO: every slave fd is closed, the child is gone.
                    return b""
        return b""

    def interrupt(self) -> None:
        self._interrupted.set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            os.close(self._fd)
        except OSError:
            pass


class FdWriter:
    """Writer over a duplicated master fd."""

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._closed = False

    def write(self, data: bytes) -> None:
        if self._closed:
            raise OSError("PTY writer is closed")
        view = memoryview(data)
        while view:
            written = os.write(self._fd, view)
            view = view[written:]

    def flush(self) -> None:
        # os.write is unbuffered.
        if self._closed:
            raise OSError("PTY writer is closed")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            os.close(self._fd)
        except OSError:
            pass


class ProcessGroupKiller:
    """SIGKILLs the child's whole process group.

    A group that is already gone counts as killed. Once the child has been
    reaped its pgid may belong to someone else, so nothing is signalled.
    """

    def __init__(self, proc: subprocess.Popen) -> None:
        self._proc = proc
        # start_new_session makes the child a group leader: pgid == pid.
        self._pgid = proc.pid

    def kill(self) -> None:
        if self._proc.poll() is not None:
            logger.debug("Child %d already reaped, not signalling", self._pgid)
            return
        try:
            os.killpg(self._pgid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)


class PosixChild:
    def __init__(self, proc: subprocess.Popen) -> None:
        self._proc = proc
        self.pid = proc.pid

    def wait(self) -> int:
        code = self._proc.wait()
        # Killed by a signal (negative returncode) has no exit code of its own.
        return code if code >= 0 else 1

    def clone_killer(self) -> ChildKiller:
        return ProcessGroupKiller(self._proc)


class PosixPtyPair:
    def __init__(self, master_fd: int, slave_fd: int) -> None:
        self._master_fd = master_fd
        self._slave_fd = slave_fd

    def spawn(self, argv: list[str], cwd: str | None, env: dict[str, str]) -> PtyChild:
        import fcntl
        import termios

        if self._slave_fd < 0:
            raise OSError("PTY slave already consumed")
        try:
            proc = subprocess.Popen(
                argv,
                stdin=self._slave_fd,
                stdout=self._slave_fd,
                stderr=self._slave_fd,
                start_new_session=True,  # own process group for kill()
                # Runs after setsid() with the slave on fd 0: make it the
                # controlling terminal so ^C, ^Z and job control work.
                preexec_fn=functools.partial(fcntl.ioctl, 0, termios.TIOCSCTTY, 0),
                cwd=cwd,
                env=env,
            )
        finally:
            # The child keeps its own copies; the master only sees EOF once
            # every slave fd is closed.
            os.close(self._slave_fd)
            self._slave_fd = -1
        return PosixChild(proc)

    def clone_reader(self) -> PtyReader:
        return FdReader(os.dup(self._master_fd))

    def take_writer(self) -> PtyWriter:
        return FdWriter(os.dup(self._master_fd))

    def close(self) -> None:
        for fd in (self._master_fd, self._slave_fd):
            if fd >= 0:
                try:
                    os.close(fd)
                except OSError:
                    pass
        self._master_fd = self._slave_fd = -1


class PosixPtySystem:
    """Native pseudo-terminals via the standard library."""

    def openpty(self, rows: int, cols: int) -> PtyPair:
        import fcntl
        import pty
        import termios

        master_fd, slave_fd = pty.openpty()
        try:
            winsize = struct.pack("HHHH", rows, cols, 0, 0)
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsize)
        except OSError:
            os.close(master_fd)
            os.close(slave_fd)
            raise
        return PosixPtyPair(master_fd, slave_fd)


# ---------------------------------------------------------------------------
# Windows (pywinpty)
# ---------------------------------------------------------------------------


class WinptyReader:
    def __init__(self, process: object) -> None:
        self._process = process
        self._interrupted = threading.Event()

    def read(self, size: int) -> bytes:
        if self._interrupted.is_set():
            return b""
        try:
            chunk = self._process.read(size)
        except EOFError:
            return b""
        if isinstance(chunk, bytes):
            return chunk
        return str(chunk).encode("utf-8")

    def interrupt(self) -> None:
        self._interrupted.set()

    def close(self) -> None:
        self.interrupt()


class WinptyWriter:
    def __init__(self, process: object) -> None:
        self._process = process

    def write(self, data: bytes) -> None:
        self._process.write(data.decode("utf-8", errors="replace"))

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class WinptyKiller:
    def __init__(self, process: object) -> None:
        self._process = process

    def kill(self) -> None:
        if self._process.isalive():
            self._process.terminate(force=True)


class WinptyChild:
    def __init__(self, process: object) -> None:
        self._process = process
        self.pid = process.pid

    def wait(self) -> int:
        code = self._process.wait()
        return int(code) if code is not None else 1

    def clone_killer(self) -> ChildKiller:
        return WinptyKiller(self._process)


class WinptyPair:
    """A ConPTY is only allocated together with its child, so spawn does both."""

    def __init__(self, rows: int, cols: int) -> None:
        self._dimensions = (rows, cols)
        self._process: object | None = None

    def spawn(self, argv: list[str], cwd: str | None, env: dict[str, str]) -> PtyChild:
        from winpty import PtyProcess

        self._process = PtyProcess.spawn(
            subprocess.list2cmdline(argv),
            cwd=cwd,
            env=env,
            dimensions=self._dimensions,
        )
        return WinptyChild(self._process)

    def clone_reader(self) -> PtyReader:
        if self._process is None:
            raise OSError("PTY has no child attached")
        return WinptyReader(self._process)

    def take_writer(self) -> PtyWriter:
        if self._process is None:
            raise OSError("PTY has no child attached")
        return WinptyWriter(self._process)

    def close(self) -> None:
        # The ConPTY lives as long as its PtyProcess.
        pass


class WinptyPtySystem:
    def openpty(self, rows: int, cols: int) -> PtyPair:
        try:
            import winpty  # noqa: F401
        except ImportError as exc:
            raise OSError(
                "pywinpty backend is unavailable; install termstream[windows]"
            ) from exc
        return WinptyPair(rows, cols)


def native_pty_system() -> PtySystem:
    """The pseudo-terminal backend for the running platform."""
    if os.name == "nt":
        return WinptyPtySystem()
    return PosixPtySystem()
