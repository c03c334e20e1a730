"""Execution adapter: runs an approved command on its target.

- Host commands run through the detected shell (``<shell> -c <command>``)
- Container commands run through distrobox/docker/podman ``sh -c``
- Output is streamed line by line and captured up to a byte limit
- The child gets its own session so cancellation can kill the whole group
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Callable

from shellgate.errors import ExecutionCancelled, ExecutionError
from shellgate.gate.models import Backend, ExecutionResult, ExecutionTarget
from shellgate.gate.shell import Shell, detect_shell
from shellgate.logging import Loggers

logger = Loggers.executor()

# Receives (stream name, text) for every line of output
OutputCallback = Callable[[str, str], None]

POLL_INTERVAL_SECONDS = 0.05
READER_JOIN_SECONDS = 2.0


@dataclass
class ExecutionLimits:
    """Limits applied to a single execution.

    Attributes:
        timeout_seconds: Wall-clock limit; None means no limit.
        max_output_bytes: Captured bytes kept per stream.
        kill_grace_seconds: Time between SIGTERM and SIGKILL.
    """

    timeout_seconds: float | None = None
    max_output_bytes: int = 1_000_000
    kill_grace_seconds: float = 2.0


@dataclass
class _Capture:
    limit: int
    chunks: list[str] = field(default_factory=list)
    size: int = 0
    truncated: bool = False
    callback_error: str | None = None

    def add(self, text: str) -> None:
        if self.truncated:
            return
        encoded = text.encode("utf-8", errors="replace")
        room = self.limit - self.size
        if len(encoded) <= room:
            self.chunks.append(text)
            self.size += len(encoded)
            return
        self.chunks.append(encoded[:room].decode("utf-8", errors="ignore"))
        self.chunks.append(f"\n... [OUTPUT TRUNCATED - exceeded {self.limit} bytes]")
        self.size = self.limit
        self.truncated = True

    def text(self) -> str:
        return "".join(self.chunks)


class ExecutionAdapter:
    """Runs commands on the host or inside a container."""

    def __init__(self, shell: Shell | None = None, limits: ExecutionLimits | None = None):
        """Initialize the adapter.

        Args:
            shell: Host shell. Detected from ``$SHELL`` if not given.
            limits: Execution limits.
        """
        self.shell = shell or detect_shell()
        self.limits = limits or ExecutionLimits()
        self._callback_lock = threading.Lock()

    def build_argv(self, command: str, target: ExecutionTarget) -> list[str]:
        """Argv that runs the command on the target.

        The command text is passed as a single argv element and never
        re-quoted.
        """
        if target.backend == Backend.HOST:
            return self.shell.argv(command)
        if target.backend == Backend.DISTROBOX:
            return ["distrobox", "enter", target.name, "--", "sh", "-c", command]
        if target.backend in (Backend.DOCKER, Backend.PODMAN):
            return [target.backend.value, "exec", target.name, "sh", "-c", command]
        raise ValueError(f"Unknown backend: {target.backend}")

    def run(
        self,
        command: str,
        target: ExecutionTarget,
        on_output: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run a command and wait for it.

        Args:
            command: Command text.
            target: Where to run it.
            on_output: Called with ("stdout" | "stderr", line) as output
                arrives. Calls are serialized.
            cancel_event: Set to cancel the running command.

        Returns:
            ExecutionResult with exit code and captured output.

        Raises:
            ExecutionError: If the process could not be started.
            ExecutionCancelled: On cancel, Ctrl-C or timeout; carries the
                partial output.
        """
        argv = self.build_argv(command, target)
        logger.debug("execution_starting", argv=argv, target=target.describe())

        start = time.monotonic()
        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutionError(f"Could not start {argv[0]}: {e}") from e

        captures = {
            "stdout": _Capture(self.limits.max_output_bytes),
            "stderr": _Capture(self.limits.max_output_bytes),
        }
        readers = [
            threading.Thread(
                target=self._pump,
                args=(stream, name, captures[name], on_output),
                daemon=True,
            )
            for name, stream in (("stdout", process.stdout), ("stderr", process.stderr))
        ]
        for reader in readers:
            reader.start()

        reason = self._wait(process, start, cancel_event)
        if reason is not None:
            self._terminate(process)

        for reader in readers:
            reader.join(READER_JOIN_SECONDS)

        result = ExecutionResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=captures["stdout"].text(),
            stderr=captures["stderr"].text(),
            duration_ms=int((time.monotonic() - start) * 1000),
            truncated=captures["stdout"].truncated or captures["stderr"].truncated,
            output_error=captures["stdout"].callback_error or captures["stderr"].callback_error,
        )

        if reason is not None:
            logger.warning("execution_cancelled", reason=reason, duration_ms=result.duration_ms)
            raise ExecutionCancelled(reason, result)

        logger.info(
            "execution_finished",
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            truncated=result.truncated,
        )
        return result

    def _wait(
        self,
        process: subprocess.Popen,
        start: float,
        cancel_event: threading.Event | None,
    ) -> str | None:
        """Wait for exit. Returns a cancellation reason, or None on normal exit."""
        timeout = self.limits.timeout_seconds
        try:
            while True:
                try:
                    process.wait(timeout=POLL_INTERVAL_SECONDS)
                    return None
                except subprocess.TimeoutExpired:
                    pass
                if cancel_event is not None and cancel_event.is_set():
                    return "Command cancelled"
                if timeout is not None and time.monotonic() - start >= timeout:
                    return f"Command timeout after {timeout} seconds"
        except KeyboardInterrupt:
            return "Command interrupted"

    def _terminate(self, process: subprocess.Popen) -> None:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        try:
            os.killpg(process.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        try:
            process.wait(timeout=self.limits.kill_grace_seconds)
            return
        except subprocess.TimeoutExpired:
            pass
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        process.wait()

    def _pump(
        self,
        stream: IO[str],
        name: str,
        capture: _Capture,
        on_output: OutputCallback | None,
    ) -> None:
        with stream:
            for line in stream:
                capture.add(line)
                if on_output is None or capture.callback_error is not None:
                    continue
                try:
                    with self._callback_lock:
                        on_output(name, line)
                except Exception as e:
                    # Keep draining so the child never sees a closed pipe
                    capture.callback_error = f"{type(e).__name__}: {e}"
                    logger.warning("output_callback_failed", stream=name, error=capture.callback_error)
