"""Terminal stream events published for each PTY session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

DEFAULT_CHANNEL_PREFIX = "pty-stream-"


@dataclass(frozen=True)
class InitEvent:
    """Emitted exactly once, right after the child is spawned."""

    type: Literal["init"] = "init"
    run_id: str = ""
    cwd: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "runId": self.run_id}
        if self.cwd is not None:
            payload["cwd"] = self.cwd
        return payload


@dataclass(frozen=True)
class StdoutEvent:
    """A chunk of (lossily decoded) terminal output."""

    type: Literal["stdout"] = "stdout"
    chunk: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "chunk": self.chunk}


@dataclass(frozen=True)
class ExitEvent:
    """Terminal event for a session; nothing follows it on the channel.

    ``timed_out`` is always False: sessions never run under a timeout.
    """

    type: Literal["exit"] = "exit"
    exit_code: int = 0
    timed_out: bool = False
    stopped: bool = False
    duration_ms: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
            "stopped": self.stopped,
            "durationMs": self.duration_ms,
        }


TerminalStreamEvent = InitEvent | StdoutEvent | ExitEvent


class EventSink(Protocol):
    """Anything that can publish a named event (e.g. ``Wire``)."""

    def send(self, channel: str, event: TerminalStreamEvent) -> None: ...


def event_name(entry_id: str, prefix: str = DEFAULT_CHANNEL_PREFIX) -> str:
    """Channel name for a session's events."""
    return f"{prefix}{entry_id}"
