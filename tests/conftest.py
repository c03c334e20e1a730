"""Shared test fixtures and utilities for shellgate tests.

Provides:
- Isolated settings (temporary HOME and working directory, no SHELLGATE_* env)
- SpyAdapter standing in for the execution adapter
- ScriptedInput feeding answers to the confirmation prompt
- FakeProbe standing in for the container runtime
- make_gate factory wiring a ShellGate from these pieces
"""

import io
import os
from pathlib import Path
from typing import Callable, Iterator

import pytest
import structlog
from rich.console import Console

from shellgate.errors import ExecutionCancelled
from shellgate.gate.audit import AuditConfig, AuditLogger
from shellgate.gate.catalog import PatternCatalog
from shellgate.gate.confirmation import ConfirmationManager
from shellgate.gate.context import ContextResolver, ProbeResult
from shellgate.gate.gate import ShellGate
from shellgate.gate.models import (
    EvaluationContext,
    ExecutionResult,
    ExecutionTarget,
    SafetyMode,
)
from shellgate.gate.shell import Shell


class SpyAdapter:
    """Records run() calls instead of executing anything."""

    def __init__(self, result: ExecutionResult | None = None, error: Exception | None = None):
        self.shell = Shell("bash", "/bin/bash", "-c")
        self.result = result or ExecutionResult(exit_code=0, stdout="ok\n")
        self.error = error
        self.calls: list[tuple[str, ExecutionTarget]] = []

    def run(self, command, target, on_output=None, cancel_event=None) -> ExecutionResult:
        self.calls.append((command, target))
        if self.error is not None:
            raise self.error
        if on_output is not None and self.result.stdout:
            on_output("stdout", self.result.stdout)
        return self.result


class ScriptedInput:
    """Answers confirmation prompts from a list.

    Items may be strings or exception instances (raised when reached).
    Running out of answers behaves like EOF.
    """

    def __init__(self, *answers: "str | BaseException"):
        self.answers = list(answers)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer


class FakeProbe:
    """Container runtime stand-in keyed by backend.

    Args:
        containers: Mapping of container name to (running, user).
        distroboxes: Names of existing distrobox containers.
        installed: Whether the runtime binaries exist.
    """

    def __init__(
        self,
        containers: dict[str, tuple[bool, str]] | None = None,
        distroboxes: list[str] | None = None,
        installed: bool = True,
    ):
        self.containers = containers or {}
        self.distroboxes = distroboxes or []
        self.installed = installed
        self.calls: list[list[str]] = []

    def __call__(self, argv: list[str]) -> ProbeResult | None:
        self.calls.append(argv)
        if not self.installed:
            return None

        if argv[:2] == ["distrobox", "list"]:
            lines = ["ID           | NAME   | STATUS         | IMAGE"]
            lines += [f"abc123       | {name} | Up 2 hours     | fedora:40" for name in self.distroboxes]
            return ProbeResult(0, "\n".join(lines) + "\n")

        if argv[1] == "inspect":
            name = argv[-1]
            if name not in self.containers:
                return ProbeResult(1, "", f"Error: No such container: {name}")
            running, user = self.containers[name]
            if "{{.State.Running}}" in argv:
                return ProbeResult(0, "true\n" if running else "false\n")
            return ProbeResult(0, f"{user}\n")

        return ProbeResult(127, "", "unexpected probe")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Run every test with a temporary HOME and working directory."""
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    for name in list(os.environ):
        if name.startswith("SHELLGATE_") or name == "HISTFILE":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    yield home
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def quiet_console() -> Console:
    """Console writing to an in-memory buffer."""
    return Console(file=io.StringIO(), force_terminal=False, width=120)


@pytest.fixture
def spy_adapter() -> SpyAdapter:
    return SpyAdapter()


@pytest.fixture
def audit_logger(tmp_path: Path) -> AuditLogger:
    return AuditLogger(AuditConfig(log_dir=str(tmp_path / "audit")), session_id="test0001")


@pytest.fixture
def make_gate(
    spy_adapter: SpyAdapter, quiet_console: Console, audit_logger: AuditLogger
) -> Callable[..., ShellGate]:
    """Factory for gates wired with test doubles.

    The returned gate exposes the scripted input as ``gate.scripted_input``.
    """

    def _make(
        mode: SafetyMode = SafetyMode.CONFIRM,
        target: ExecutionTarget | None = None,
        answers: tuple = (),
        probe: FakeProbe | None = None,
        euid: int = 1000,
        dry_run: bool = False,
        catalog: PatternCatalog | None = None,
    ) -> ShellGate:
        scripted = ScriptedInput(*answers)
        gate = ShellGate(
            EvaluationContext(
                mode=mode,
                target=target or ExecutionTarget.host(),
                catalog=catalog if catalog is not None else PatternCatalog(),
            ),
            resolver=ContextResolver(probe=probe or FakeProbe(), geteuid=lambda: euid),
            executor=spy_adapter,
            confirmation=ConfirmationManager(console=quiet_console, input_func=scripted),
            audit=audit_logger,
            dry_run=dry_run,
        )
        gate.scripted_input = scripted
        return gate

    return _make


@pytest.fixture
def cancelled_adapter() -> SpyAdapter:
    partial = ExecutionResult(exit_code=-15, stdout="partial\n")
    return SpyAdapter(error=ExecutionCancelled("Command interrupted", partial))
