"""CLI entry point for termstream."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
import threading
import uuid
from contextlib import suppress

import typer

from termstream.config import TermstreamConfig
from termstream.host import TerminalHost
from termstream.pty.events import ExitEvent, StdoutEvent
from termstream.session.wire import Wire

app = typer.Typer(
    name="termstream",
    help="Run shell commands in pseudo-terminals and stream their output.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    # stderr, so event output on stdout stays clean.
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


def _forward_stdin(
    loop: asyncio.AbstractEventLoop, host: TerminalHost, entry_id: str
) -> None:
    """Pump our stdin into the session, line by line (reader thread)."""
    for line in sys.stdin:
        if loop.is_closed():
            return
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(host.write_terminal_input, entry_id, line)


async def _run_session(
    command: str,
    cwd: str | None,
    shell: str | None,
    env: dict[str, str],
    as_json: bool,
    forward_stdin: bool,
    config: TermstreamConfig,
) -> int:
    wire = Wire()
    host = TerminalHost(config, wire)
    host.install_shutdown_hook()

    entry_id = uuid.uuid4().hex[:8]
    queue = wire.subscribe(host.channel_for(entry_id))

    response = await host.run_terminal_stream(
        entry_id, entry_id, command, cwd=cwd, shell=shell, env=env or None
    )
    if not response.ok:
        typer.echo(f"Error: {response.error}", err=True)
        return 1

    loop = asyncio.get_running_loop()
    with suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, host.stop_terminal_stream, entry_id)

    if forward_stdin:
        threading.Thread(
            target=_forward_stdin,
            args=(loop, host, entry_id),
            name="termstream-stdin",
            daemon=True,
        ).start()

    exit_code = 1
    while True:
        item = await queue.get()
        if item is None:
            break
        event = item.event
        if as_json:
            print(json.dumps({"channel": item.channel, **event.to_payload()}), flush=True)
        elif isinstance(event, StdoutEvent):
            sys.stdout.write(event.chunk)
            sys.stdout.flush()
        if isinstance(event, ExitEvent):
            exit_code = event.exit_code
            if event.stopped and not as_json:
                typer.echo("\n[stopped]", err=True)
            break

    with suppress(NotImplementedError):
        loop.remove_signal_handler(signal.SIGINT)
    wire.unsubscribe(queue)
    wire.close()
    await host.pty_manager.wait_closed(timeout=5.0)
    return exit_code


@app.command()
def run(
    command: str = typer.Argument(help="Shell command line to run in a PTY."),
    cwd: str | None = typer.Option(None, "--cwd", "-C", help="Working directory."),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell program (default: $SHELL / cmd.exe)."
    ),
    env: list[str] = typer.Option(
        [], "--env", "-e", help="Extra environment variable, KEY=VALUE (repeatable)."
    ),
    as_json: bool = typer.Option(
        False, "--json", "-j", help="Print every event as a JSON line."
    ),
    stdin: bool = typer.Option(
        True, "--stdin/--no-stdin", help="Forward our stdin to the session."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run COMMAND in a pseudo-terminal and stream its output."""
    config = TermstreamConfig.load(config_file)
    setup_logging(verbose, config.log_level)
    extra_env = _parse_env(env)

    exit_code = asyncio.run(
        _run_session(command, cwd, shell, extra_env, as_json, stdin, config)
    )
    raise typer.Exit(exit_code)


@app.command("config")
def show_config(
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Print the effective configuration as JSON."""
    config = TermstreamConfig.load(config_file)
    typer.echo(config.model_dump_json(indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
