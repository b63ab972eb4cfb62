"""PTY Manager — spawns, tracks and terminates PTY sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import suppress
from typing import TYPE_CHECKING, Any

from termstream.pty.backend import ChildKiller, PtyChild, PtySystem, native_pty_system
from termstream.pty.command import build_argv, build_env, default_shell
from termstream.pty.errors import (
    CloneReaderError,
    InputError,
    OpenPtyError,
    PTYError,
    SpawnError,
    StatePoisonedError,
    TakeWriterError,
)
from termstream.pty.events import DEFAULT_CHANNEL_PREFIX, EventSink, InitEvent, StdoutEvent, event_name
from termstream.pty.registry import SessionControl, SessionRegistry
from termstream.pty.relay import OutputRelay
from termstream.pty.watcher import watch_exit

if TYPE_CHECKING:
    from termstream.config import PTYConfig

logger = logging.getLogger(__name__)


class PTYManager:
    """Manages the lifecycle of concurrent PTY sessions.

    Every session goes through here. The manager ensures:
    - A session is reachable for write/stop from the moment ``start``
      returns until just before its ``exit`` event is published
    - Output is relayed in order as ``stdout`` events on the session channel
    - Exactly one ``exit`` event per session, always the last one
    - ``stop_all`` leaves no child process behind at shutdown
    """

    def __init__(
        self,
        sink: EventSink,
        config: PTYConfig | None = None,
        *,
        pty_system: PtySystem | None = None,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
    ) -> None:
        if config is None:
            from termstream.config import PTYConfig

            config = PTYConfig()
        self._sink = sink
        self._config = config
        self._pty_system = pty_system or native_pty_system()
        self._channel_prefix = channel_prefix
        self._registry = SessionRegistry()
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def channel_for(self, entry_id: str) -> str:
        return event_name(entry_id, self._channel_prefix)

    async def start(
        self,
        session_id: str,
        entry_id: str,
        command: str,
        cwd: str | None = None,
        shell: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Spawn ``command`` in a new PTY and start streaming it.

        Returns once the session is registered and ``init`` has been sent;
        output and the final ``exit`` arrive later on the session channel.

        Raises:
            OpenPtyError, SpawnError, CloneReaderError, TakeWriterError:
                nothing was registered and no event was sent.
            StatePoisonedError: the registry is unusable.
        """
        cfg = self._config
        try:
            pair = self._pty_system.openpty(cfg.rows, cfg.cols)
        except Exception as e:
            raise OpenPtyError(str(e)) from e

        shell_to_use = shell or default_shell(cfg.default_posix_shell)
        argv = build_argv(shell_to_use, command)
        child_env = build_env(env, term=cfg.term)

        try:
            try:
                child = pair.spawn(argv, cwd, child_env)
            except Exception as e:
                raise SpawnError(str(e)) from e

            # Take the kill handle before anything else can fail, so a
            # half-built session can always be torn down.
            killer = child.clone_killer()
            try:
                reader = pair.clone_reader()
            except Exception as e:
                await _abandon(child, killer)
                raise CloneReaderError(str(e)) from e
            try:
                writer = pair.take_writer()
            except Exception as e:
                reader.close()
                await _abandon(child, killer)
                raise TakeWriterError(str(e)) from e
        finally:
            # Reader and writer hold their own handles.
            pair.close()

        control = SessionControl(
            entry_id=entry_id,
            killer=killer,
            writer=writer,
            session_id=session_id,
            command=command,
            cwd=cwd,
            pid=child.pid,
        )
        try:
            self._registry.insert(entry_id, control)
        except StatePoisonedError:
            reader.close()
            writer.close()
            await _abandon(child, killer)
            raise

        channel = self.channel_for(entry_id)
        self._sink.send(channel, InitEvent(run_id=entry_id, cwd=cwd))
        logger.info(
            "PTY session %s started: pid=%d shell=%s cmd=%s",
            entry_id,
            child.pid,
            shell_to_use,
            command,
        )

        sink = self._sink

        def _on_chunk(chunk: str) -> None:
            sink.send(channel, StdoutEvent(chunk=chunk))

        relay = OutputRelay(
            reader,
            _on_chunk,
            name=entry_id,
            chunk_size=cfg.read_chunk_size,
            capacity=cfg.queue_capacity,
        )
        relay.start()

        task = asyncio.create_task(
            watch_exit(
                child,
                control,
                self._registry,
                relay,
                self._sink,
                channel,
                drain_timeout=cfg.drain_timeout,
            ),
            name=f"pty-exit-{entry_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def write_input(self, entry_id: str, data: str) -> None:
        """Send ``data`` to the session's terminal exactly as given.

        Raises:
            SessionNotFoundError: no such live session.
            InputError: the write failed.
        """
        control = self._registry.get(entry_id)
        try:
            payload = data.encode("utf-8")
        except UnicodeEncodeError as e:
            # Lone surrogates, e.g. from a JSON "\ud800" escape.
            raise InputError(str(e)) from e
        control.write(payload)

    def stop(self, entry_id: str) -> None:
        """Kill a session; its ``exit`` event will report ``stopped=True``.

        The session stays registered until its exit watcher finishes.

        Raises:
            SessionNotFoundError: no such live session.
            SignalError: the kill failed.
        """
        control = self._registry.get(entry_id)
        control.request_stop()
        logger.info("Stop requested for PTY session %s", entry_id)

    def stop_all(self) -> None:
        """Kill every registered session. Called on shutdown.

        Best effort: per-session failures are logged and skipped.
        """
        try:
            controls = self._registry.snapshot()
        except StatePoisonedError:
            logger.error("Session registry poisoned; cannot stop sessions")
            return
        for control in controls:
            try:
                control.request_stop()
            except PTYError as e:
                logger.debug("Failed to stop %s: %s", control.entry_id, e)
        if controls:
            logger.info("Stopped %d PTY session(s)", len(controls))

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all registered sessions."""
        return [control.describe() for control in self._registry.snapshot()]

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait for every exit watcher to finish.

        Returns False if some were still running after ``timeout``.
        """
        pending = set(self._tasks)
        if not pending:
            return True
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        return not still_running

    def __len__(self) -> int:
        return len(self._registry)


async def _abandon(child: PtyChild, killer: ChildKiller) -> None:
    """Kill and reap a child whose session could not be set up."""
    logger.warning("Tearing down half-started PTY child pid=%d", child.pid)
    with suppress(Exception):
        killer.kill()
    with suppress(Exception):
        await asyncio.to_thread(child.wait)
