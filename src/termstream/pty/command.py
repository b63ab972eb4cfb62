"""Shell command construction for PTY sessions."""

from __future__ import annotations

import os
from collections.abc import Mapping

DEFAULT_TERM = "xterm-256color"
DEFAULT_POSIX_SHELL = "/bin/zsh"
WINDOWS_SHELL = "cmd.exe"


def is_windows() -> bool:
    return os.name == "nt"


def default_shell(fallback: str = DEFAULT_POSIX_SHELL) -> str:
    """``cmd.exe`` on Windows, otherwise the user's ``$SHELL``."""
    if is_windows():
        return WINDOWS_SHELL
    return os.environ.get("SHELL") or fallback


def build_argv(shell: str, command: str, *, windows: bool | None = None) -> list[str]:
    """Argument vector running ``command`` once through ``shell``.

    POSIX shells run it as a login, non-interactive command string
    (``-lc``); ``cmd.exe`` gets ``/d /s /c``.
    """
    if windows is None:
        windows = is_windows()
    if windows:
        return [shell, "/d", "/s", "/c", command]
    return [shell, "-lc", command]


def build_env(
    extra: Mapping[str, str] | None = None,
    *,
    term: str = DEFAULT_TERM,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Child environment: ``base`` (default: ours) + ``extra``, TERM forced."""
    env = dict(os.environ if base is None else base)
    if extra:
        env.update({str(k): str(v) for k, v in extra.items()})
    env["TERM"] = term
    return env
