"""Context resolver: execution target, reachability and privilege.

Annotates each request with where it will run, whether that target is
reachable, whether the effective user is root there, and whether the
command invokes a privilege-escalation wrapper.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from typing import Callable

from shellgate.errors import ConfigurationError
from shellgate.gate.models import (
    Backend,
    ExecutionTarget,
    RequestContext,
    TargetStatus,
)
from shellgate.gate.tokenizer import CommandTokenizer
from shellgate.logging import Loggers

logger = Loggers.gate()

PROBE_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a container runtime probe."""

    returncode: int
    stdout: str = ""
    stderr: str = ""


# Runs argv and returns its result, or None if the binary could not be run
ProbeRunner = Callable[[list[str]], "ProbeResult | None"]


def run_probe(argv: list[str]) -> ProbeResult | None:
    """Run a probe command with a timeout, capturing output."""
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except OSError as e:
        logger.debug("probe_not_runnable", argv=argv, error=str(e))
        return None
    except subprocess.TimeoutExpired:
        logger.warning("probe_timeout", argv=argv, timeout=PROBE_TIMEOUT_SECONDS)
        return None
    return ProbeResult(completed.returncode, completed.stdout, completed.stderr)


def resolve_target(
    distrobox: str | None = None,
    docker: str | None = None,
    podman: str | None = None,
) -> ExecutionTarget:
    """Pick the execution target from the container options.

    Raises:
        ConfigurationError: If more than one container option is set.
    """
    chosen = [
        (backend, name)
        for backend, name in (
            (Backend.DISTROBOX, distrobox),
            (Backend.DOCKER, docker),
            (Backend.PODMAN, podman),
        )
        if name
    ]
    if len(chosen) > 1:
        names = ", ".join(f"{b.value}={n}" for b, n in chosen)
        raise ConfigurationError(f"Only one execution target may be selected (got {names})")
    if not chosen:
        return ExecutionTarget.host()
    backend, name = chosen[0]
    return ExecutionTarget.container(backend, name)


def uses_sudo(command: str, tokenizer: CommandTokenizer | None = None) -> bool:
    """True if any segment starts with a privilege-escalation invocation."""
    tokenized = (tokenizer or CommandTokenizer()).tokenize(command)
    return any(segment.escalation for segment in tokenized.segments)


class ContextResolver:
    """Resolves per-request context for a fixed execution target.

    Container probes go through an injectable runner so tests never touch
    a real container runtime.
    """

    def __init__(
        self,
        probe: ProbeRunner | None = None,
        geteuid: Callable[[], int] | None = None,
        tokenizer: CommandTokenizer | None = None,
    ):
        self._probe = probe or run_probe
        self._geteuid = geteuid or os.geteuid
        self._tokenizer = tokenizer or CommandTokenizer()
        self._root_cache: dict[ExecutionTarget, bool] = {}

    def check_target(self, target: ExecutionTarget) -> TargetStatus:
        """Check whether the target exists and can run commands."""
        if target.backend == Backend.HOST:
            return TargetStatus(True, "host")
        if target.backend == Backend.DISTROBOX:
            return self._check_distrobox(target.name)
        if target.backend in (Backend.DOCKER, Backend.PODMAN):
            return self._check_engine(target.backend.value, target.name)
        raise ValueError(f"Unknown backend: {target.backend}")

    def _check_distrobox(self, name: str) -> TargetStatus:
        result = self._probe(["distrobox", "list", "--no-color"])
        if result is None:
            return TargetStatus(False, "distrobox is not installed")
        if result.returncode != 0:
            return TargetStatus(False, f"distrobox list failed: {result.stderr.strip()}")

        # ID | NAME | STATUS | IMAGE
        for line in result.stdout.splitlines()[1:]:
            columns = [c.strip() for c in line.split("|")]
            if len(columns) >= 3 and columns[1] == name:
                return TargetStatus(True, columns[2])
        return TargetStatus(False, f"distrobox container '{name}' does not exist")

    def _check_engine(self, engine: str, name: str) -> TargetStatus:
        result = self._probe(
            [engine, "inspect", "--type", "container", "--format", "{{.State.Running}}", name]
        )
        if result is None:
            return TargetStatus(False, f"{engine} is not installed")
        if result.returncode != 0:
            return TargetStatus(False, f"{engine} container '{name}' does not exist")
        if result.stdout.strip().lower() != "true":
            return TargetStatus(False, f"{engine} container '{name}' is not running")
        return TargetStatus(True, "running")

    def runs_as_root(self, target: ExecutionTarget) -> bool:
        """Whether commands on the target run as uid 0."""
        if target.backend in (Backend.HOST, Backend.DISTROBOX):
            # distrobox enters as the invoking host user
            return self._geteuid() == 0
        if target in self._root_cache:
            return self._root_cache[target]

        result = self._probe(
            [target.backend.value, "inspect", "--type", "container", "--format", "{{.Config.User}}", target.name]
        )
        if result is None or result.returncode != 0:
            # Unknown identity is treated as root
            is_root = True
        else:
            user = result.stdout.strip().split(":", 1)[0]
            is_root = user in ("", "root", "0")
        self._root_cache[target] = is_root
        return is_root

    def annotate(self, command: str, target: ExecutionTarget) -> RequestContext:
        """Annotate a request. Privilege is only probed on reachable targets."""
        status = self.check_target(target)
        if not status.available:
            logger.info("target_unavailable", target=target.describe(), detail=status.detail)
            return RequestContext(target=target, status=status)

        return RequestContext(
            target=target,
            status=status,
            uses_root=self.runs_as_root(target),
            uses_sudo=uses_sudo(command, self._tokenizer),
        )
