"""Confirmation subsystem: interactive approval of risky commands.

The prompt is the gate's only suspension point. It fails closed: empty
input, EOF and Ctrl-C all reject.
"""

from __future__ import annotations

import hashlib
from typing import Callable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from shellgate.gate.models import (
    ApprovalOutcome,
    Classification,
    Decision,
    ExecutionTarget,
)
from shellgate.gate.tokenizer import normalize_command
from shellgate.logging import Loggers

logger = Loggers.gate()

ANSWERS = {
    "y": ApprovalOutcome.APPROVED,
    "yes": ApprovalOutcome.APPROVED,
    "n": ApprovalOutcome.REJECTED,
    "no": ApprovalOutcome.REJECTED,
    "a": ApprovalOutcome.APPROVED_FOR_SESSION,
    "always": ApprovalOutcome.APPROVED_FOR_SESSION,
}

PROMPT = "Run this command? [y]es / [n]o / [a]lways this session: "


def fingerprint(
    command: str, target: ExecutionTarget, classification: Classification
) -> str:
    """Identity of an approval: target, normalized command and classification.

    A command with an extra flag, a different target or a different set of
    matched rules gets a different fingerprint.
    """
    rule_ids = ",".join(sorted(rule.id for rule in classification.matched_rules))
    severity = classification.highest_severity.value if classification.highest_severity else "none"
    material = "\x00".join(
        [
            target.describe(),
            normalize_command(command),
            rule_ids,
            severity,
            str(classification.uses_root),
            str(classification.uses_sudo),
        ]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class ConfirmationManager:
    """Asks the user to approve commands and remembers session approvals.

    Example:
        manager = ConfirmationManager()
        if not manager.is_approved_for_session(command, target, classification):
            outcome = manager.resolve(command, decision, classification, target)
    """

    def __init__(
        self,
        console: Console | None = None,
        input_func: Callable[[str], str] | None = None,
    ):
        """Initialize the confirmation manager.

        Args:
            console: Console the prompt is rendered on (stderr by default).
            input_func: Reads one answer given a prompt. Defaults to
                ``console.input``.
        """
        self.console = console or Console(stderr=True)
        self._input = input_func or self.console.input
        self._session_overrides: set[str] = set()

    @property
    def session_overrides(self) -> frozenset[str]:
        return frozenset(self._session_overrides)

    def is_approved_for_session(
        self, command: str, target: ExecutionTarget, classification: Classification
    ) -> bool:
        return fingerprint(command, target, classification) in self._session_overrides

    def clear_session(self) -> None:
        self._session_overrides.clear()

    def resolve(
        self,
        command: str,
        decision: Decision,
        classification: Classification,
        target: ExecutionTarget | None = None,
    ) -> ApprovalOutcome:
        """Prompt the user and return their answer.

        Args:
            command: The command awaiting approval.
            decision: The PROMPT_USER decision that triggered the prompt.
            classification: Classification shown to the user.
            target: Execution target (part of the session fingerprint).

        Returns:
            APPROVED, REJECTED or APPROVED_FOR_SESSION.
        """
        target = target or ExecutionTarget.host()
        self.console.print(self._render(command, decision, classification, target))

        outcome = self._ask()
        if outcome == ApprovalOutcome.APPROVED_FOR_SESSION:
            self._session_overrides.add(fingerprint(command, target, classification))

        logger.info(
            "confirmation_resolved",
            outcome=outcome.value,
            severity=decision.severity.value if decision.severity else None,
        )
        return outcome

    def _ask(self) -> ApprovalOutcome:
        while True:
            try:
                answer = self._input(PROMPT)
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                return ApprovalOutcome.REJECTED

            answer = answer.strip().lower()
            if not answer:
                return ApprovalOutcome.REJECTED
            if answer in ANSWERS:
                return ANSWERS[answer]
            self.console.print("[yellow]Please answer y, n or a.[/yellow]")

    def _render(
        self,
        command: str,
        decision: Decision,
        classification: Classification,
        target: ExecutionTarget,
    ) -> Panel:
        table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
        table.add_column("Key", style="bold cyan", no_wrap=True)
        table.add_column("Value")

        table.add_row("Command", escape(command))
        table.add_row("Target", target.describe())
        table.add_row("Reason", escape(decision.reason))
        if classification.uses_root:
            table.add_row("Privilege", "runs as root")
        elif classification.uses_sudo:
            table.add_row("Privilege", "uses sudo")

        for rule in classification.rules:
            table.add_row(
                "Rule",
                f"{rule.id} [dim]({rule.category.value}, {rule.severity.value})[/dim] "
                f"{escape(rule.label())}",
            )

        if decision.urgent:
            title = "[bold red]Dangerous command[/bold red]"
            border = "red"
        else:
            title = "[bold]Confirm command[/bold]"
            border = "yellow"
        return Panel(table, title=title, border_style=border)
