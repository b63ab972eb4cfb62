"""Wire protocol — decouples PTY sessions from the UI.

Sessions publish events on a named channel; the UI subscribes to the wire
(optionally to a single channel) and renders them. The same manager can
feed a CLI pipe, a desktop bridge or a test harness.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Any

from termstream.pty.events import TerminalStreamEvent


class EventType(enum.Enum):
    INIT = "init"
    STDOUT = "stdout"
    EXIT = "exit"


@dataclass(frozen=True)
class WireEvent:
    """An event on the wire, scoped to one channel."""

    channel: str
    event: TerminalStreamEvent

    @property
    def type(self) -> EventType:
        return EventType(self.event.type)

    @property
    def data(self) -> dict[str, Any]:
        return self.event.to_payload()


class Wire:
    """Async message bus: PTY sessions -> UI subscribers.

    Multi-producer, multi-consumer broadcast. ``send`` must be called from
    the event loop thread that owns the subscriber queues.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[str | None, asyncio.Queue[WireEvent | None]]] = []
        self._closed: bool = False

    def send(self, channel: str, event: TerminalStreamEvent) -> None:
        """Send an event to every subscriber listening on ``channel``.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        item = WireEvent(channel=channel, event=event)
        for wanted, q in self._subscribers:
            if wanted is None or wanted == channel:
                q.put_nowait(item)

    def subscribe(self, channel: str | None = None) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from.

        With ``channel`` set, only that channel's events are delivered.
        """
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append((channel, q))
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        self._subscribers = [(c, s) for c, s in self._subscribers if s is not q]

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for _, q in self._subscribers:
            q.put_nowait(None)
