"""Exit watcher — finalizes a session once its child terminates."""

from __future__ import annotations

import asyncio
import logging
import time

from termstream.pty.backend import PtyChild
from termstream.pty.errors import StatePoisonedError
from termstream.pty.events import EventSink, ExitEvent
from termstream.pty.registry import SessionControl, SessionRegistry
from termstream.pty.relay import OutputRelay

logger = logging.getLogger(__name__)


async def wait_exit_code(child: PtyChild) -> int:
    """Block (off the event loop) until the child exits.

    Any failure to obtain a status is reported as exit code 1.
    """
    try:
        return await asyncio.to_thread(child.wait)
    except Exception as e:
        logger.debug("Failed to wait for pid %s: %s", child.pid, e)
        return 1


async def watch_exit(
    child: PtyChild,
    control: SessionControl,
    registry: SessionRegistry,
    relay: OutputRelay,
    sink: EventSink,
    channel: str,
    *,
    drain_timeout: float = 2.0,
) -> ExitEvent:
    """Wait for the child, deregister the session, then emit ``exit``.

    The registry entry is removed before the event goes out, so anyone who
    has seen ``exit`` gets ``SessionNotFound`` from write/stop. Remaining
    output is drained first so ``exit`` is the last event on the channel.
    """
    exit_code = await wait_exit_code(child)
    # A stop() that lands after the child is gone must not count.
    stopped = control.stopped

    if not await relay.wait_drained(drain_timeout):
        # Something else (e.g. a background grandchild) still holds the slave.
        logger.warning(
            "Output of %s not drained after %.1fs, dropping the rest",
            control.entry_id,
            drain_timeout,
        )
    relay.stop()

    try:
        registry.discard(control.entry_id, control)
    except StatePoisonedError:
        logger.exception("Could not deregister session %s", control.entry_id)
    try:
        control.close()
    except StatePoisonedError:
        logger.debug("Writer lock poisoned for %s", control.entry_id)

    duration_ms = int((time.monotonic() - control.started_at) * 1000)
    event = ExitEvent(exit_code=exit_code, stopped=stopped, duration_ms=duration_ms)
    logger.info(
        "PTY session %s exited (code=%d stopped=%s duration=%dms)",
        control.entry_id,
        exit_code,
        stopped,
        duration_ms,
    )
    sink.send(channel, event)
    return event
