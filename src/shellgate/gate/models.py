"""Data models for the command safety gate.

Provides enums and dataclasses for targets, pattern rules, classifications,
decisions and execution results.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shellgate.gate.catalog import PatternCatalog


@total_ordering
class Severity(Enum):
    """Severity of a dangerous command shape."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


@total_ordering
class SafetyMode(Enum):
    """Safety mode selected at invocation, ordered by permissiveness."""

    CONFIRM = "confirm"  # Default
    SAFE_YOLO = "safe_yolo"  # -y
    ROOT_YOLO = "root_yolo"  # -yy
    FULL_YOLO = "full_yolo"  # -yyy

    @property
    def rank(self) -> int:
        return _MODE_RANK[self]

    def __lt__(self, other: "SafetyMode") -> bool:
        if not isinstance(other, SafetyMode):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def from_yolo_count(cls, count: int) -> "SafetyMode":
        """Map the number of ``-y`` flags to a mode.

        Raises:
            ValueError: If more than three ``-y`` flags were given.
        """
        modes = [cls.CONFIRM, cls.SAFE_YOLO, cls.ROOT_YOLO, cls.FULL_YOLO]
        if count < 0 or count >= len(modes):
            raise ValueError(f"-y may be given at most 3 times (got {count})")
        return modes[count]


_MODE_RANK = {
    SafetyMode.CONFIRM: 0,
    SafetyMode.SAFE_YOLO: 1,
    SafetyMode.ROOT_YOLO: 2,
    SafetyMode.FULL_YOLO: 3,
}


class RuleCategory(Enum):
    """Category of a dangerous command shape."""

    FILESYSTEM_DESTRUCTION = "filesystem-destruction"
    DISK_DEVICE_ACCESS = "disk-device-access"
    FILESYSTEM_FORMATTING = "filesystem-formatting"
    FORK_BOMB = "fork-bomb"
    PRIVILEGE_ESCALATION = "privilege-escalation"
    PERMISSION_CHANGE = "permission-change"
    CONTAINER_ESCAPE = "container-escape"
    NETWORK_EXFILTRATION = "network-exfiltration"
    REMOTE_CODE_EXECUTION = "remote-code-execution"
    OBFUSCATED_EXECUTION = "obfuscated-execution"
    SYSTEM_CONTROL = "system-control"
    HISTORY_REWRITE = "history-rewrite"
    TARGET = "target"  # Used for target-unavailable rejections


class MatcherKind(Enum):
    """How a rule pattern is matched."""

    LITERAL = "literal"  # Token-bounded substring
    GLOB = "glob"  # fnmatch over the whole scope text
    REGEX = "regex"  # re.search


class MatchScope(Enum):
    """Which text a rule is matched against."""

    SEGMENT = "segment"  # Segment body, privilege wrapper stripped
    INVOCATION = "invocation"  # Segment as typed, wrapper included
    COMMAND = "command"  # Whole normalized command


class Backend(Enum):
    """Where a command runs."""

    HOST = "host"
    DISTROBOX = "distrobox"
    DOCKER = "docker"
    PODMAN = "podman"


@dataclass(frozen=True)
class ExecutionTarget:
    """Execution target: the host, or a named container."""

    backend: Backend = Backend.HOST
    name: str | None = None

    def __post_init__(self) -> None:
        if self.backend == Backend.HOST and self.name is not None:
            raise ValueError("host target takes no container name")
        if self.backend != Backend.HOST and not self.name:
            raise ValueError(f"{self.backend.value} target needs a container name")

    @classmethod
    def host(cls) -> "ExecutionTarget":
        return cls()

    @classmethod
    def container(cls, backend: Backend, name: str) -> "ExecutionTarget":
        return cls(backend=backend, name=name)

    @property
    def is_container(self) -> bool:
        return self.backend != Backend.HOST

    def describe(self) -> str:
        if not self.is_container:
            return "host"
        return f"{self.backend.value}:{self.name}"


@dataclass(frozen=True)
class PatternRule:
    """Declarative signature of a dangerous command shape."""

    id: str
    pattern: str
    category: RuleCategory
    severity: Severity
    matcher: MatcherKind = MatcherKind.REGEX
    scope: MatchScope = MatchScope.SEGMENT
    container_only: bool = False
    description: str = ""
    _compiled: re.Pattern[str] | None = field(
        default=None, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        if self.matcher == MatcherKind.REGEX:
            # Invalid patterns surface as re.error at catalog build time
            object.__setattr__(self, "_compiled", re.compile(self.pattern, re.IGNORECASE))

    @property
    def compiled(self) -> re.Pattern[str] | None:
        return self._compiled

    def applies_to(self, target: ExecutionTarget) -> bool:
        return target.is_container or not self.container_only

    def label(self) -> str:
        return self.description or self.id


@dataclass(frozen=True)
class Classification:
    """Result of classifying a command. Pure function output."""

    matched_rules: frozenset[PatternRule] = frozenset()
    uses_root: bool = False
    uses_sudo: bool = False
    highest_severity: Severity | None = None

    @property
    def is_privileged(self) -> bool:
        return self.uses_root or self.uses_sudo

    @property
    def rules(self) -> list[PatternRule]:
        """Matched rules, most severe first, then by id."""
        return sorted(self.matched_rules, key=lambda r: (-r.severity.rank, r.id))

    @property
    def top_rule(self) -> PatternRule | None:
        rules = self.rules
        return rules[0] if rules else None

    @property
    def categories(self) -> list[RuleCategory]:
        seen: list[RuleCategory] = []
        for rule in self.rules:
            if rule.category not in seen:
                seen.append(rule.category)
        return seen


class DecisionKind(Enum):
    """Outcome of the policy gate."""

    ALLOW = "allow"
    ALLOW_WITH_WARNING = "allow_with_warning"
    PROMPT_USER = "prompt_user"
    BLOCK = "block"


@dataclass(frozen=True)
class Decision:
    """Policy decision for one evaluation."""

    kind: DecisionKind
    reason: str = ""
    urgent: bool = False
    category: RuleCategory | None = None
    severity: Severity | None = None

    @property
    def is_blocked(self) -> bool:
        return self.kind == DecisionKind.BLOCK

    @property
    def needs_confirmation(self) -> bool:
        return self.kind == DecisionKind.PROMPT_USER

    @property
    def may_execute(self) -> bool:
        return self.kind in (DecisionKind.ALLOW, DecisionKind.ALLOW_WITH_WARNING)


class ApprovalOutcome(Enum):
    """User's answer to a confirmation prompt."""

    APPROVED = "approved"
    REJECTED = "rejected"
    APPROVED_FOR_SESSION = "approved_for_session"

    @property
    def approved(self) -> bool:
        return self != ApprovalOutcome.REJECTED


@dataclass(frozen=True)
class TargetStatus:
    """Reachability of an execution target."""

    available: bool
    detail: str = ""


@dataclass(frozen=True)
class RequestContext:
    """Per-request annotations produced by the context resolver."""

    target: ExecutionTarget
    status: TargetStatus
    uses_root: bool = False
    uses_sudo: bool = False


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable per-process settings threaded into every evaluation."""

    mode: SafetyMode
    target: ExecutionTarget
    catalog: "PatternCatalog"


@dataclass
class ExecutionResult:
    """Result of running a command.

    Attributes:
        exit_code: Exit status of the child (negative for signals).
        stdout: Captured standard output (may be truncated).
        stderr: Captured standard error (may be truncated).
        duration_ms: Wall time in milliseconds.
        truncated: Whether captured output was truncated.
        output_error: Why streaming to the output callback stopped, if it
            did. Captured output is unaffected.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    truncated: bool = False
    output_error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration": self.duration_ms / 1000,
            "truncated": self.truncated,
            "output_error": self.output_error,
        }


@dataclass(frozen=True)
class Rejection:
    """Structured refusal returned to the caller for display."""

    category: RuleCategory | None
    severity: Severity | None
    reason: str

    def to_dict(self) -> dict[str, str | None]:
        return {
            "category": self.category.value if self.category else None,
            "severity": self.severity.value if self.severity else None,
            "reason": self.reason,
        }
