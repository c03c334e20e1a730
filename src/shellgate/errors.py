"""Exception hierarchy for the command safety gate.

Every refusal carries a category and severity so callers can render a
specific explanation instead of a bare "denied".
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shellgate.constants import (
    EXIT_BLOCKED,
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_NOT_STARTED,
    EXIT_REJECTED,
    EXIT_TARGET_UNAVAILABLE,
)

if TYPE_CHECKING:
    from shellgate.gate.models import ExecutionResult, Rejection, RuleCategory, Severity


class ConfigurationError(Exception):
    """Raised when settings, CLI flags or rule definitions are invalid."""

    exit_code = EXIT_CONFIG_ERROR


class GateError(Exception):
    """Base class for gate refusals and execution errors."""

    exit_code = 1

    def __init__(
        self,
        reason: str,
        category: "RuleCategory | None" = None,
        severity: "Severity | None" = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.category = category
        self.severity = severity

    @classmethod
    def from_rejection(cls, rejection: "Rejection") -> "GateError":
        return cls(rejection.reason, rejection.category, rejection.severity)


class PolicyBlocked(GateError):
    """The policy refused the command. Terminal, never retried."""

    exit_code = EXIT_BLOCKED


class TargetUnavailable(GateError):
    """The container target is missing or not running."""

    exit_code = EXIT_TARGET_UNAVAILABLE


class UserRejected(GateError):
    """The user declined (or could not answer) the confirmation prompt."""

    exit_code = EXIT_REJECTED


class ExecutionError(GateError):
    """The command could not be started."""

    exit_code = EXIT_NOT_STARTED


class ExecutionCancelled(GateError):
    """Execution was interrupted; partial output is attached."""

    exit_code = EXIT_CANCELLED

    def __init__(self, reason: str, result: "ExecutionResult | None" = None):
        super().__init__(reason)
        self.result = result


class ExecutionFailed(GateError):
    """The command ran and exited with a non-zero status."""

    def __init__(self, result: "ExecutionResult"):
        super().__init__(f"Command exited with code {result.exit_code}")
        self.result = result
        self.exit_code = result.exit_code
