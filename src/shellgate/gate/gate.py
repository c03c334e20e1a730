"""Gate orchestrator: context -> classification -> policy -> confirmation -> execution.

Every request ends in exactly one audit entry. A BLOCK decision never
reaches the execution adapter; an allowed or approved command reaches it
exactly once.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from rich.console import Console

from shellgate.constants import (
    EXIT_BLOCKED,
    EXIT_CANCELLED,
    EXIT_NOT_STARTED,
    EXIT_REJECTED,
    EXIT_TARGET_UNAVAILABLE,
)
from shellgate.errors import (
    ExecutionCancelled,
    ExecutionError,
    ExecutionFailed,
    PolicyBlocked,
    TargetUnavailable,
    UserRejected,
)
from shellgate.gate.audit import AuditConfig, AuditLogger
from shellgate.gate.catalog import PatternCatalog
from shellgate.gate.classifier import RiskClassifier
from shellgate.gate.confirmation import ConfirmationManager
from shellgate.gate.context import ContextResolver, resolve_target
from shellgate.gate.executor import ExecutionAdapter, ExecutionLimits, OutputCallback
from shellgate.gate.models import (
    ApprovalOutcome,
    Backend,
    Classification,
    Decision,
    DecisionKind,
    EvaluationContext,
    ExecutionResult,
    Rejection,
    RequestContext,
    RuleCategory,
)
from shellgate.gate.policy import decide
from shellgate.gate.shell import Shell, append_to_shell_history, detect_shell
from shellgate.logging import Loggers

if TYPE_CHECKING:
    from shellgate.config import GateSettings

logger = Loggers.gate()


class GateStatus(Enum):
    """Final status of a submitted command."""

    EXECUTED = "executed"
    FAILED = "failed"
    BLOCKED = "blocked"
    TARGET_UNAVAILABLE = "target_unavailable"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class Evaluation:
    """Side-effect free evaluation of a command."""

    command: str
    context: RequestContext
    classification: Classification | None = None
    decision: Decision | None = None
    approved_for_session: bool = False

    @property
    def target_available(self) -> bool:
        return self.context.status.available

    def to_dict(self) -> dict[str, Any]:
        classification = self.classification
        return {
            "command": self.command,
            "target": self.context.target.describe(),
            "target_available": self.target_available,
            "target_detail": self.context.status.detail,
            "uses_root": self.context.uses_root,
            "uses_sudo": self.context.uses_sudo,
            "severity": (
                classification.highest_severity.value
                if classification and classification.highest_severity
                else None
            ),
            "rules": [
                {
                    "id": rule.id,
                    "category": rule.category.value,
                    "severity": rule.severity.value,
                    "description": rule.label(),
                }
                for rule in (classification.rules if classification else [])
            ],
            "decision": self.decision.kind.value if self.decision else None,
            "urgent": self.decision.urgent if self.decision else False,
            "reason": self.decision.reason if self.decision else self.context.status.detail,
            "approved_for_session": self.approved_for_session,
        }


@dataclass
class GateOutcome:
    """Outcome of submitting a command to the gate.

    Attributes:
        status: Final status.
        command: The submitted command.
        decision: Policy decision (None if the target was unavailable).
        classification: Classification (None if the target was unavailable).
        result: Execution result, complete or partial.
        rejection: Structured refusal for BLOCKED, REJECTED and
            TARGET_UNAVAILABLE.
        warning: Warning shown with an ALLOW_WITH_WARNING decision.
        error: Why execution could not start or was cancelled.
    """

    status: GateStatus
    command: str
    decision: Decision | None = None
    classification: Classification | None = None
    result: ExecutionResult | None = None
    rejection: Rejection | None = None
    warning: str | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.status == GateStatus.BLOCKED:
            return EXIT_BLOCKED
        if self.status == GateStatus.TARGET_UNAVAILABLE:
            return EXIT_TARGET_UNAVAILABLE
        if self.status == GateStatus.REJECTED:
            return EXIT_REJECTED
        if self.status == GateStatus.CANCELLED:
            return EXIT_CANCELLED
        if self.status == GateStatus.DRY_RUN:
            return 0
        if self.result is None:
            return EXIT_NOT_STARTED
        return self.result.exit_code

    def raise_for_status(self) -> None:
        """Raise the matching GateError unless the command executed cleanly."""
        if self.status in (GateStatus.EXECUTED, GateStatus.DRY_RUN):
            return
        if self.status == GateStatus.BLOCKED:
            raise PolicyBlocked.from_rejection(self.rejection)
        if self.status == GateStatus.TARGET_UNAVAILABLE:
            raise TargetUnavailable.from_rejection(self.rejection)
        if self.status == GateStatus.REJECTED:
            raise UserRejected.from_rejection(self.rejection)
        if self.status == GateStatus.CANCELLED:
            raise ExecutionCancelled(self.error or "Command cancelled", self.result)
        if self.result is None:
            raise ExecutionError(self.error or "Command could not be started")
        raise ExecutionFailed(self.result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "command": self.command,
            "exit_code": self.exit_code,
            "decision": self.decision.kind.value if self.decision else None,
            "rejection": self.rejection.to_dict() if self.rejection else None,
            "warning": self.warning,
            "error": self.error,
            "result": self.result.to_dict() if self.result else None,
        }


class ShellGate:
    """The command safety gate.

    One request is in flight per gate. Construct with :func:`create_gate`
    for the standard wiring, or pass collaborators directly.

    Example:
        gate = create_gate(load_settings())
        outcome = gate.submit("ls -la")
        outcome.raise_for_status()
    """

    def __init__(
        self,
        context: EvaluationContext,
        resolver: ContextResolver | None = None,
        executor: ExecutionAdapter | None = None,
        confirmation: ConfirmationManager | None = None,
        audit: AuditLogger | None = None,
        dry_run: bool = False,
        save_shell_history: bool = False,
    ):
        self.context = context
        self.resolver = resolver or ContextResolver()
        self.executor = executor or ExecutionAdapter()
        self.confirmation = confirmation or ConfirmationManager()
        self.audit = audit or AuditLogger(AuditConfig(enabled=False))
        self.dry_run = dry_run
        self.save_shell_history = save_shell_history
        self._classifier = RiskClassifier(context.catalog)

    def evaluate(self, command: str) -> Evaluation:
        """Resolve context, classify and decide. Never prompts or executes."""
        target = self.context.target
        request = self.resolver.annotate(command, target)
        if not request.status.available:
            return Evaluation(command=command, context=request)

        classification = self._classifier.classify(
            command, target, uses_root=request.uses_root, uses_sudo=request.uses_sudo
        )
        decision = decide(classification, self.context.mode)
        return Evaluation(
            command=command,
            context=request,
            classification=classification,
            decision=decision,
            approved_for_session=self.confirmation.is_approved_for_session(
                command, target, classification
            ),
        )

    def submit(
        self,
        command: str,
        on_output: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> GateOutcome:
        """Evaluate a command and, if allowed or approved, execute it.

        Args:
            command: Command text, passed verbatim to the target.
            on_output: Receives streamed (stream, line) output.
            cancel_event: Set to cancel a pending prompt or running command.

        Returns:
            GateOutcome describing what happened.
        """
        evaluation = self.evaluate(command)
        target = self.context.target

        if not evaluation.target_available:
            detail = evaluation.context.status.detail
            rejection = Rejection(
                category=RuleCategory.TARGET,
                severity=None,
                reason=f"Target {target.describe()} is unavailable: {detail}",
            )
            return self._finish(GateOutcome(GateStatus.TARGET_UNAVAILABLE, command, rejection=rejection))

        decision = evaluation.decision
        classification = evaluation.classification
        logger.info(
            "decision",
            decision=decision.kind.value,
            severity=decision.severity.value if decision.severity else None,
            category=decision.category.value if decision.category else None,
            rules=[rule.id for rule in classification.rules],
            mode=self.context.mode.value,
            target=target.describe(),
        )
        outcome = GateOutcome(
            GateStatus.DRY_RUN, command, decision=decision, classification=classification
        )

        if self.dry_run:
            return self._finish(outcome)

        if decision.kind == DecisionKind.BLOCK:
            outcome.status = GateStatus.BLOCKED
            outcome.rejection = Rejection(decision.category, decision.severity, decision.reason)
            logger.warning("command_blocked", reason=decision.reason)
            return self._finish(outcome)

        user_response = None
        if decision.kind == DecisionKind.PROMPT_USER:
            if evaluation.approved_for_session:
                user_response = "session"
            else:
                if cancel_event is not None and cancel_event.is_set():
                    answer = ApprovalOutcome.REJECTED
                else:
                    answer = self.confirmation.resolve(command, decision, classification, target)
                user_response = answer.value
                if not answer.approved:
                    outcome.status = GateStatus.REJECTED
                    outcome.rejection = Rejection(
                        decision.category, decision.severity, f"Rejected by user: {decision.reason}"
                    )
                    return self._finish(outcome, user_response)

        if decision.kind == DecisionKind.ALLOW_WITH_WARNING:
            outcome.warning = decision.reason
            logger.warning("command_allowed_with_warning", reason=decision.reason)

        self._execute(outcome, on_output, cancel_event)
        return self._finish(outcome, user_response)

    def _execute(
        self,
        outcome: GateOutcome,
        on_output: OutputCallback | None,
        cancel_event: threading.Event | None,
    ) -> None:
        target = self.context.target
        try:
            result = self.executor.run(
                outcome.command, target, on_output=on_output, cancel_event=cancel_event
            )
        except ExecutionCancelled as e:
            outcome.status = GateStatus.CANCELLED
            outcome.result = e.result
            outcome.error = e.reason
            return
        except ExecutionError as e:
            outcome.status = GateStatus.FAILED
            outcome.error = e.reason
            logger.error("execution_not_started", error=e.reason)
            return

        outcome.result = result
        outcome.status = GateStatus.EXECUTED if result.success else GateStatus.FAILED

        if result.success and self.save_shell_history and target.backend == Backend.HOST:
            append_to_shell_history(self.executor.shell, outcome.command)

    def _finish(self, outcome: GateOutcome, user_response: str | None = None) -> GateOutcome:
        rejection = outcome.rejection
        self.audit.log_evaluation(
            command=outcome.command,
            target=self.context.target,
            mode=self.context.mode,
            status=outcome.status.value,
            decision=outcome.decision,
            classification=outcome.classification,
            user_response=user_response,
            reason=rejection.reason if rejection else outcome.error,
            result=outcome.result,
            working_dir=os.getcwd(),
        )
        return outcome


def create_gate(
    settings: "GateSettings",
    console: Console | None = None,
    input_func: Callable[[str], str] | None = None,
    shell: Shell | None = None,
) -> ShellGate:
    """Wire a ShellGate from settings.

    Raises:
        ConfigurationError: On conflicting targets or invalid rules.
    """
    target = resolve_target(settings.distrobox, settings.docker, settings.podman)
    catalog = PatternCatalog.from_settings(settings)
    context = EvaluationContext(mode=settings.safety_mode, target=target, catalog=catalog)

    executor = ExecutionAdapter(
        shell=shell or detect_shell(settings.shell),
        limits=ExecutionLimits(
            timeout_seconds=settings.timeout_seconds,
            max_output_bytes=settings.max_output_bytes,
        ),
    )
    audit = AuditLogger(
        AuditConfig(
            enabled=settings.audit_enabled,
            log_dir=settings.audit_dir,
            retention_days=settings.audit_retention_days,
        )
    )
    audit.cleanup_old_logs()
    return ShellGate(
        context,
        executor=executor,
        confirmation=ConfirmationManager(console=console, input_func=input_func),
        audit=audit,
        dry_run=settings.dry_run,
        save_shell_history=settings.save_shell_history,
    )

