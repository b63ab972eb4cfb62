"""Host command surface — the string-error boundary a UI bridge calls into.

``TerminalHost`` bundles the wire and the PTY manager, converts every
``PTYError`` into a ``CommandResponse`` carrying a human-readable message,
and owns the shutdown hook that kills all sessions before the process exits.
"""

from __future__ import annotations

import atexit
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from termstream.config import TermstreamConfig
from termstream.pty.backend import PtySystem
from termstream.pty.errors import PTYError
from termstream.pty.manager import PTYManager
from termstream.session.wire import Wire

logger = logging.getLogger(__name__)


class CommandResponse(BaseModel):
    """Result of a host command: success, or an error string."""

    ok: bool = True
    error: str | None = None

    @classmethod
    def success(cls) -> CommandResponse:
        return cls()

    @classmethod
    def failure(cls, message: str) -> CommandResponse:
        return cls(ok=False, error=message)


class _CommandParams(BaseModel):
    # UI bridges send camelCase keys (entryId); snake_case works too.
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class RunTerminalStreamParams(_CommandParams):
    session_id: str = Field(description="Caller's session identifier.")
    entry_id: str = Field(description="Identifier the session's events are scoped to.")
    command: str = Field(description="Shell command line to run.")
    cwd: str | None = Field(default=None, description="Working directory.")
    shell: str | None = Field(default=None, description="Shell program override.")
    env: dict[str, str] | None = Field(
        default=None, description="Extra environment variables for the child."
    )


class WriteTerminalInputParams(_CommandParams):
    entry_id: str
    data: str = Field(description="Bytes to send, verbatim; no newline is added.")


class StopTerminalStreamParams(_CommandParams):
    entry_id: str


class TerminalHost:
    """Application state shared by every command handler."""

    def __init__(
        self,
        config: TermstreamConfig | None = None,
        wire: Wire | None = None,
        *,
        pty_system: PtySystem | None = None,
    ) -> None:
        self.config = config or TermstreamConfig()
        self.wire = wire or Wire()
        self.pty_manager = PTYManager(
            self.wire,
            self.config.pty,
            pty_system=pty_system,
            channel_prefix=self.config.events.channel_prefix,
        )
        self._hook_installed = False
        self._commands: dict[
            str, tuple[type[_CommandParams], Callable[..., Awaitable[CommandResponse]]]
        ] = {
            "run_terminal_stream": (RunTerminalStreamParams, self._run),
            "write_terminal_input": (WriteTerminalInputParams, self._write),
            "stop_terminal_stream": (StopTerminalStreamParams, self._stop),
        }

    def channel_for(self, entry_id: str) -> str:
        return self.pty_manager.channel_for(entry_id)

    # -- commands -----------------------------------------------------------

    async def run_terminal_stream(
        self,
        session_id: str,
        entry_id: str,
        command: str,
        cwd: str | None = None,
        shell: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResponse:
        try:
            await self.pty_manager.start(session_id, entry_id, command, cwd, shell, env)
        except PTYError as e:
            logger.warning("run_terminal_stream %s failed: %s", entry_id, e)
            return CommandResponse.failure(str(e))
        return CommandResponse.success()

    def write_terminal_input(self, entry_id: str, data: str) -> CommandResponse:
        try:
            self.pty_manager.write_input(entry_id, data)
        except PTYError as e:
            return CommandResponse.failure(str(e))
        return CommandResponse.success()

    def stop_terminal_stream(self, entry_id: str) -> CommandResponse:
        try:
            self.pty_manager.stop(entry_id)
        except PTYError as e:
            return CommandResponse.failure(str(e))
        return CommandResponse.success()

    async def invoke(self, name: str, args: dict[str, Any] | None = None) -> CommandResponse:
        """Dispatch a command by name, validating its arguments."""
        entry = self._commands.get(name)
        if entry is None:
            return CommandResponse.failure(f"Unknown command: {name}")
        param_model, handler = entry
        try:
            params = param_model.model_validate(args or {})
        except ValidationError as e:
            return CommandResponse.failure(f"Invalid arguments for {name}: {e}")
        return await handler(params)

    async def _run(self, params: RunTerminalStreamParams) -> CommandResponse:
        return await self.run_terminal_stream(
            params.session_id,
            params.entry_id,
            params.command,
            cwd=params.cwd,
            shell=params.shell,
            env=params.env,
        )

    async def _write(self, params: WriteTerminalInputParams) -> CommandResponse:
        return self.write_terminal_input(params.entry_id, params.data)

    async def _stop(self, params: StopTerminalStreamParams) -> CommandResponse:
        return self.stop_terminal_stream(params.entry_id)

    # -- lifecycle ----------------------------------------------------------

    def shutdown(self) -> None:
        """Kill every session. Synchronous; safe to call more than once."""
        self.pty_manager.stop_all()

    def install_shutdown_hook(self) -> None:
        """Run ``shutdown()`` at interpreter exit."""
        if self._hook_installed:
            return
        atexit.register(self.shutdown)
        self._hook_installed = True
