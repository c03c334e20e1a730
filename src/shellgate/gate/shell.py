"""Host shell detection and shell-history append."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from shellgate.logging import Loggers

logger = Loggers.executor()

DEFAULT_SHELL = "/bin/sh"

# Shell name -> flag that takes a command string
SHELL_COMMAND_FLAGS: dict[str, str] = {
    "sh": "-c",
    "bash": "-c",
    "zsh": "-c",
    "fish": "-c",
    "dash": "-c",
    "ksh": "-c",
    "mksh": "-c",
    "nu": "-c",
    "pwsh": "-Command",
    "powershell": "-Command",
}


@dataclass(frozen=True)
class Shell:
    """A host shell that can run one command string.

    Attributes:
        name: Shell name (basename of the executable).
        cmd: Executable path.
        arg: Flag that introduces the command string.
    """

    name: str
    cmd: str
    arg: str

    def argv(self, command: str) -> list[str]:
        return [self.cmd, self.arg, command]


def detect_shell(
    override: str | None = None, environ: Mapping[str, str] | None = None
) -> Shell:
    """Pick the host shell from an explicit path or ``$SHELL``.

    Unknown shells fall back to ``/bin/sh``.
    """
    environ = os.environ if environ is None else environ
    path = override or environ.get("SHELL") or DEFAULT_SHELL
    name = Path(path).name
    if name.endswith(".exe"):
        name = name[: -len(".exe")]

    flag = SHELL_COMMAND_FLAGS.get(name)
    if flag is None:
        logger.debug("unknown_shell", shell=path, fallback=DEFAULT_SHELL)
        return Shell("sh", DEFAULT_SHELL, "-c")
    return Shell(name, path, flag)


def history_file(shell_name: str, environ: Mapping[str, str] | None = None) -> Path | None:
    """Return the history file for a shell, or None if it is not supported."""
    environ = os.environ if environ is None else environ
    home = Path(environ.get("HOME") or Path.home())

    if shell_name in ("bash", "zsh"):
        histfile = environ.get("HISTFILE")
        if histfile:
            return Path(histfile).expanduser()
        return home / f".{shell_name}_history"
    if shell_name == "fish":
        data_home = environ.get("XDG_DATA_HOME")
        base = Path(data_home) if data_home else home / ".local" / "share"
        return base / "fish" / "fish_history"
    return None


def format_history_entry(shell_name: str, command: str, timestamp: int) -> str | None:
    """Render one history entry in the shell's own file format."""
    if shell_name == "bash":
        return f"{command}\n"
    if shell_name == "zsh":
        # Extended history: ": <start>:<elapsed>;<command>"
        return f": {timestamp}:0;{command}\n"
    if shell_name == "fish":
        escaped = command.replace("\\", "\\\\").replace("\n", "\\n")
        return f"- cmd: {escaped}\n  when: {timestamp}\n"
    return None


def append_to_shell_history(
    shell: Shell,
    command: str,
    environ: Mapping[str, str] | None = None,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Append a command to the shell's history file.

    Failures are logged and never raised.

    Returns:
        True if an entry was written.
    """
    path = history_file(shell.name, environ)
    entry = format_history_entry(shell.name, command, int(clock()))
    if path is None or entry is None:
        logger.debug("shell_history_unsupported", shell=shell.name)
        return False

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError as e:
        logger.warning("shell_history_write_failed", path=str(path), error=str(e))
        return False

    logger.debug("shell_history_appended", path=str(path))
    return True
