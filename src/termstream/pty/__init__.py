"""PTY session management — pseudo-terminal sessions streamed as events.

Each session runs a shell command attached to a real PTY. Output is
relayed as ``stdout`` events, input is written verbatim, and sessions are
stopped individually or all at once on shutdown.
"""

from termstream.pty.errors import (
    CloneReaderError,
    InputError,
    OpenPtyError,
    PTYError,
    SessionNotFoundError,
    SignalError,
    SpawnError,
    StatePoisonedError,
    TakeWriterError,
)
from termstream.pty.events import (
    EventSink,
    ExitEvent,
    InitEvent,
    StdoutEvent,
    TerminalStreamEvent,
    event_name,
)
from termstream.pty.manager import PTYManager
from termstream.pty.registry import SessionControl, SessionRegistry

__all__ = [
    "CloneReaderError",
    "EventSink",
    "ExitEvent",
    "InitEvent",
    "InputError",
    "OpenPtyError",
    "PTYError",
    "PTYManager",
    "SessionControl",
    "SessionNotFoundError",
    "SessionRegistry",
    "SignalError",
    "SpawnError",
    "StatePoisonedError",
    "StdoutEvent",
    "TakeWriterError",
    "TerminalStreamEvent",
    "event_name",
]
