"""Tests for shell detection and shell-history append."""

import pytest

from shellgate.gate.shell import (
    Shell,
    append_to_shell_history,
    detect_shell,
    format_history_entry,
    history_file,
)


class TestDetectShell:
    def test_from_environment(self):
        shell = detect_shell(environ={"SHELL": "/usr/bin/zsh"})

        assert shell == Shell("zsh", "/usr/bin/zsh", "-c")

    def test_override_wins(self):
        shell = detect_shell("/usr/local/bin/fish", environ={"SHELL": "/bin/bash"})

        assert shell.name == "fish"

    def test_powershell_flag(self):
        shell = detect_shell("C:/Program Files/PowerShell/pwsh.exe", environ={})

        assert shell.name == "pwsh"
        assert shell.arg == "-Command"

    def test_unknown_shell_falls_back(self):
        assert detect_shell(environ={"SHELL": "/usr/bin/xonsh"}) == Shell("sh", "/bin/sh", "-c")

    def test_no_shell_variable(self):
        assert detect_shell(environ={}).cmd == "/bin/sh"

    def test_argv(self):
        assert Shell("bash", "/bin/bash", "-c").argv("ls") == ["/bin/bash", "-c", "ls"]


class TestHistoryFile:
    def test_bash_default(self, tmp_path):
        assert history_file("bash", {"HOME": str(tmp_path)}) == tmp_path / ".bash_history"

    def test_histfile_override(self, tmp_path):
        path = tmp_path / "hist"

        assert history_file("zsh", {"HOME": str(tmp_path), "HISTFILE": str(path)}) == path

    def test_fish_xdg(self, tmp_path):
        environ = {"HOME": str(tmp_path), "XDG_DATA_HOME": str(tmp_path / "data")}

        assert history_file("fish", environ) == tmp_path / "data" / "fish" / "fish_history"

    def test_unsupported(self, tmp_path):
        assert history_file("sh", {"HOME": str(tmp_path)}) is None


class TestFormatHistoryEntry:
    @pytest.mark.parametrize(
        "shell, expected",
        [
            ("bash", "make test\n"),
            ("zsh", ": 1700000000:0;make test\n"),
            ("fish", "- cmd: make test\n  when: 1700000000\n"),
            ("sh", None),
        ],
    )
    def test_formats(self, shell, expected):
        assert format_history_entry(shell, "make test", 1700000000) == expected

    def test_fish_escapes_newlines(self):
        entry = format_history_entry("fish", "echo a\necho b", 1)

        assert entry.startswith("- cmd: echo a\\necho b\n")


class TestAppendToShellHistory:
    def test_appends(self, tmp_path):
        environ = {"HOME": str(tmp_path)}
        shell = Shell("zsh", "/bin/zsh", "-c")

        assert append_to_shell_history(shell, "ls", environ, clock=lambda: 42)
        assert append_to_shell_history(shell, "pwd", environ, clock=lambda: 43)

        content = (tmp_path / ".zsh_history").read_text()
        assert content == ": 42:0;ls\n: 43:0;pwd\n"

    def test_unsupported_shell(self, tmp_path):
        assert not append_to_shell_history(Shell("sh", "/bin/sh", "-c"), "ls", {"HOME": str(tmp_path)})

    def test_write_failure_is_not_raised(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        environ = {"HOME": str(tmp_path), "HISTFILE": str(blocker / "history")}

        assert not append_to_shell_history(Shell("bash", "/bin/bash", "-c"), "ls", environ)
