"""Configuration — Pydantic models for termstream settings."""

from __future__ import annotations

import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

from termstream.pty.command import DEFAULT_POSIX_SHELL, DEFAULT_TERM
from termstream.pty.events import DEFAULT_CHANNEL_PREFIX
from termstream.pty.relay import DEFAULT_CHUNK_SIZE, DEFAULT_QUEUE_CAPACITY


class PTYConfig(BaseModel):
    """Pseudo-terminal and relay settings."""

    rows: int = Field(default=24, gt=0, description="Initial terminal rows")
    cols: int = Field(default=80, gt=0, description="Initial terminal columns")
    term: str = Field(
        default=DEFAULT_TERM,
        description="TERM value forced into every child environment",
    )
    default_posix_shell: str = Field(
        default=DEFAULT_POSIX_SHELL,
        description="Shell used on POSIX when neither the caller nor $SHELL names one",
    )
    read_chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE, gt=0, description="Max bytes per PTY read"
    )
    queue_capacity: int = Field(
        default=DEFAULT_QUEUE_CAPACITY,
        gt=0,
        description="Output chunks buffered between reader thread and forwarder",
    )
    drain_timeout: float = Field(
        default=2.0,
        ge=0,
        description=(
            "Seconds to wait, after the child exits, for remaining output "
            "before the exit event is sent."
        ),
    )


class EventsConfig(BaseModel):
    """Event channel naming."""

    channel_prefix: str = Field(
        default=DEFAULT_CHANNEL_PREFIX,
        description="Per-session channel name is this prefix + entry id",
    )


class TermstreamConfig(BaseModel):
    """Top-level termstream configuration."""

    pty: PTYConfig = Field(default_factory=PTYConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    log_level: str = Field(default="INFO")

    @classmethod
    def load(cls, config_path: str | None = None) -> TermstreamConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMSTREAM_SHELL          - Fallback POSIX shell
            TERMSTREAM_TERM           - TERM forced into child environments
            TERMSTREAM_ROWS           - Initial terminal rows
            TERMSTREAM_COLS           - Initial terminal columns
            TERMSTREAM_DRAIN_TIMEOUT  - Seconds to drain output after exit
            TERMSTREAM_LOG_LEVEL      - Logging level (DEBUG/INFO/WARNING/ERROR)
        """
        # Load .env file if present; its values win over stale shell exports.
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        pty_data = config_data.get("pty", {})

        env_shell = os.environ.get("TERMSTREAM_SHELL")
        if env_shell:
            pty_data["default_posix_shell"] = env_shell

        env_term = os.environ.get("TERMSTREAM_TERM")
        if env_term:
            pty_data["term"] = env_term

        env_rows = os.environ.get("TERMSTREAM_ROWS")
        if env_rows:
            pty_data["rows"] = int(env_rows)

        env_cols = os.environ.get("TERMSTREAM_COLS")
        if env_cols:
            pty_data["cols"] = int(env_cols)

        env_drain = os.environ.get("TERMSTREAM_DRAIN_TIMEOUT")
        if env_drain:
            pty_data["drain_timeout"] = float(env_drain)

        if pty_data:
            config_data["pty"] = pty_data

        env_log_level = os.environ.get("TERMSTREAM_LOG_LEVEL")
        if env_log_level:
            config_data["log_level"] = env_log_level.upper()

        return cls.model_validate(config_data)
