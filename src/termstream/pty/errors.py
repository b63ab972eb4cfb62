"""PTY error types.

Every failure the command surface can report is a ``PTYError`` subclass.
``str(exc)`` is the human-readable message handed back to the host UI.
"""

from __future__ import annotations


class PTYError(Exception):
    """Base class for all PTY session errors."""

    template: str = "PTY error: {detail}"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(self.template.format(detail=detail))


class OpenPtyError(PTYError):
    template = "Failed to allocate PTY: {detail}"


class SpawnError(PTYError):
    template = "Failed to spawn PTY child process: {detail}"


class CloneReaderError(PTYError):
    template = "Failed to clone PTY reader: {detail}"


class TakeWriterError(PTYError):
    template = "Failed to create PTY writer: {detail}"


class StatePoisonedError(PTYError):
    template = "Internal PTY state lock poisoned"


class SessionNotFoundError(PTYError):
    template = "Terminal session not found"


class SignalError(PTYError):
    template = "Failed to send signal to terminal: {detail}"


class InputError(PTYError):
    template = "Failed to write terminal input: {detail}"
