"""Tests for termstream.pty.command (shell resolution, argv, environment)."""

from __future__ import annotations

from termstream.pty import command
from termstream.pty.command import build_argv, build_env, default_shell


class TestDefaultShell:
    def test_uses_shell_env(self, monkeypatch) -> None:
        monkeypatch.setattr(command, "is_windows", lambda: False)
        monkeypatch.setenv("SHELL", "/usr/bin/fish")
        assert default_shell() == "/usr/bin/fish"

    def test_fallback_when_unset(self, monkeypatch) -> None:
        monkeypatch.setattr(command, "is_windows", lambda: False)
        monkeypatch.delenv("SHELL", raising=False)
        assert default_shell() == "/bin/zsh"
        assert default_shell("/bin/sh") == "/bin/sh"

    def test_windows(self, monkeypatch) -> None:
        monkeypatch.setattr(command, "is_windows", lambda: True)
        monkeypatch.setenv("SHELL", "/usr/bin/fish")
        assert default_shell() == "cmd.exe"


class TestBuildArgv:
    def test_posix(self) -> None:
        assert build_argv("/bin/bash", "echo hi", windows=False) == [
            "/bin/bash",
            "-lc",
            "echo hi",
        ]

    def test_windows(self) -> None:
        assert build_argv("cmd.exe", "dir", windows=True) == [
            "cmd.exe",
            "/d",
            "/s",
            "/c",
            "dir",
        ]

    def test_command_is_a_single_argument(self) -> None:
        argv = build_argv("/bin/sh", "a; b && c | d", windows=False)
        assert argv[-1] == "a; b && c | d"
        assert len(argv) == 3

    def test_platform_default(self, monkeypatch) -> None:
        monkeypatch.setattr(command, "is_windows", lambda: False)
        assert build_argv("/bin/sh", "x")[1] == "-lc"


class TestBuildEnv:
    def test_merges_extra_over_base(self) -> None:
        env = build_env({"A": "2", "B": "3"}, base={"A": "1", "PATH": "/bin"})
        assert env["A"] == "2"
        assert env["B"] == "3"
        assert env["PATH"] == "/bin"

    def test_term_always_forced(self) -> None:
        env = build_env({"TERM": "dumb"}, base={"TERM": "vt100"})
        assert env["TERM"] == "xterm-256color"

    def test_custom_term(self) -> None:
        assert build_env(base={}, term="screen-256color")["TERM"] == "screen-256color"

    def test_inherits_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("TERMSTREAM_TEST_VAR", "yes")
        assert build_env()["TERMSTREAM_TEST_VAR"] == "yes"

    def test_does_not_mutate_base(self) -> None:
        base = {"A": "1"}
        build_env({"A": "2"}, base=base)
        assert base == {"A": "1"}
