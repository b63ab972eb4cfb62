"""Output relay — moves PTY output onto the event loop, in order."""

from __future__ import annotations

import asyncio
import codecs
import concurrent.futures
import logging
import threading
from typing import Callable

from termstream.pty.backend import PtyReader

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096
DEFAULT_QUEUE_CAPACITY = 128

_HANDOFF_POLL = 0.25


class OutputRelay:
    """Blocking reader thread + bounded queue + forwarding task.

    The PTY read is not awaitable, so a daemon thread reads up to
    ``chunk_size`` bytes at a time, decodes them (invalid UTF-8 is
    replaced, never fatal) and hands each chunk to a queue of at most
    ``capacity`` items. A task on the event loop drains the queue and calls
    ``on_chunk`` once per chunk, preserving arrival order.

    The relay ends when the PTY reports EOF or an error, when ``stop()`` is
    called, or when the forwarding side has gone away. It never signals the
    end of output itself.
    """

    def __init__(
        self,
        reader: PtyReader,
        on_chunk: Callable[[str], None],
        *,
        name: str = "",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
    ) -> None:
        self._reader = reader
        self._on_chunk = on_chunk
        self._name = name
        self._chunk_size = chunk_size
        self._capacity = capacity
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[str | None] | None = None
        self._forwarder: asyncio.Task | None = None
        self._thread: threading.Thread | None = None
        self._receiver_gone = threading.Event()

    def start(self) -> None:
        """Start reading. Must be called from the event loop thread."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._capacity)
        self._forwarder = asyncio.create_task(
            self._forward(), name=f"pty-forward-{self._name}"
        )
        self._thread = threading.Thread(
            target=self._read_loop, name=f"pty-reader-{self._name}", daemon=True
        )
        self._thread.start()

    # -- reader thread ------------------------------------------------------

    def _read_loop(self) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                try:
                    data = self._reader.read(self._chunk_size)
                except OSError as e:
                    logger.debug("PTY reader %s ended: %s", self._name, e)
                    break
                if not data:
                    break
                text = decoder.decode(data)
                if text and not self._hand_off(text):
                    return
            tail = decoder.decode(b"", final=True)
            if tail:
                self._hand_off(tail)
        except Exception:
            logger.exception("PTY reader %s crashed", self._name)
        finally:
            self._reader.close()
            self._hand_off(None)

    def _hand_off(self, item: str | None) -> bool:
        """Block until the forwarder accepts ``item``.

        Returns False if the receiving side is gone.
        """
        if self._receiver_gone.is_set() or self._loop is None or self._queue is None:
            return False
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        except RuntimeError:
            # Event loop closed.
            self._receiver_gone.set()
            return False
        while True:
            try:
                future.result(timeout=_HANDOFF_POLL)
                return True
            except concurrent.futures.TimeoutError:
                if self._receiver_gone.is_set() or self._loop.is_closed():
                    future.cancel()
                    return False
            except concurrent.futures.CancelledError:
                return False

    # -- event loop ---------------------------------------------------------

    async def _forward(self) -> None:
        assert self._queue is not None
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                try:
                    self._on_chunk(chunk)
                except Exception:
                    logger.exception("Error forwarding output for %s", self._name)
        finally:
            self._receiver_gone.set()

    async def wait_drained(self, timeout: float | None = None) -> bool:
        """Wait until every chunk read so far has been forwarded.

        Returns False if that did not happen within ``timeout``.
        """
        if self._forwarder is None:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(self._forwarder), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        except asyncio.CancelledError:
            if not self._forwarder.cancelled():
                raise
        return True

    def stop(self) -> None:
        """Stop reading and forwarding; pending chunks are dropped."""
        self._receiver_gone.set()
        self._reader.interrupt()
        if self._forwarder is not None and not self._forwarder.done():
            self._forwarder.cancel()

    @property
    def done(self) -> bool:
        return self._forwarder is not None and self._forwarder.done()
