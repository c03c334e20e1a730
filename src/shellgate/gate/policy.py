"""Policy gate: (highest severity x safety mode) -> Decision.

The whole policy is one declarative table. Adding a mode or a severity
means adding a column or a row, not another branch.
"""

from dataclasses import dataclass

from shellgate.gate.models import (
    Classification,
    Decision,
    DecisionKind,
    SafetyMode,
    Severity,
)

ALLOW = DecisionKind.ALLOW
WARN = DecisionKind.ALLOW_WITH_WARNING
PROMPT = DecisionKind.PROMPT_USER
BLOCK = DecisionKind.BLOCK


@dataclass(frozen=True)
class Verdict:
    kind: DecisionKind
    urgent: bool = False


@dataclass(frozen=True)
class PolicyCell:
    """Verdict for one (severity, mode) cell.

    ``privileged`` replaces ``default`` when the command runs as root or
    through a privilege wrapper.
    """

    default: Verdict
    privileged: Verdict | None = None

    def verdict(self, is_privileged: bool) -> Verdict:
        if is_privileged and self.privileged is not None:
            return self.privileged
        return self.default


_LOW_OR_MEDIUM = {
    SafetyMode.CONFIRM: PolicyCell(Verdict(PROMPT)),
    SafetyMode.SAFE_YOLO: PolicyCell(Verdict(PROMPT)),
    SafetyMode.ROOT_YOLO: PolicyCell(Verdict(WARN)),
    SafetyMode.FULL_YOLO: PolicyCell(Verdict(ALLOW)),
}

DECISION_TABLE: dict[Severity | None, dict[SafetyMode, PolicyCell]] = {
    None: {
        SafetyMode.CONFIRM: PolicyCell(Verdict(ALLOW), privileged=Verdict(PROMPT)),
        SafetyMode.SAFE_YOLO: PolicyCell(Verdict(ALLOW), privileged=Verdict(WARN)),
        SafetyMode.ROOT_YOLO: PolicyCell(Verdict(ALLOW), privileged=Verdict(WARN)),
        SafetyMode.FULL_YOLO: PolicyCell(Verdict(ALLOW)),
    },
    Severity.LOW: _LOW_OR_MEDIUM,
    Severity.MEDIUM: _LOW_OR_MEDIUM,
    Severity.HIGH: {
        SafetyMode.CONFIRM: PolicyCell(Verdict(PROMPT)),
        SafetyMode.SAFE_YOLO: PolicyCell(Verdict(PROMPT, urgent=True)),
        SafetyMode.ROOT_YOLO: PolicyCell(Verdict(WARN)),
        SafetyMode.FULL_YOLO: PolicyCell(Verdict(ALLOW)),
    },
    Severity.CRITICAL: {
        SafetyMode.CONFIRM: PolicyCell(Verdict(PROMPT)),
        SafetyMode.SAFE_YOLO: PolicyCell(Verdict(PROMPT, urgent=True), privileged=Verdict(BLOCK)),
        SafetyMode.ROOT_YOLO: PolicyCell(Verdict(PROMPT, urgent=True)),
        SafetyMode.FULL_YOLO: PolicyCell(Verdict(ALLOW)),
    },
}


def decide(classification: Classification, mode: SafetyMode) -> Decision:
    """Look up the decision for a classification under a safety mode."""
    cell = DECISION_TABLE[classification.highest_severity][mode]
    verdict = cell.verdict(classification.is_privileged)
    top = classification.top_rule

    return Decision(
        kind=verdict.kind,
        reason=_reason(classification, mode, verdict.kind),
        urgent=verdict.urgent,
        category=top.category if top else None,
        severity=classification.highest_severity,
    )


def _reason(classification: Classification, mode: SafetyMode, kind: DecisionKind) -> str:
    top = classification.top_rule
    if top is not None:
        reason = f"{top.label()} [{top.id}]"
        extra = len(classification.matched_rules) - 1
        if extra > 0:
            reason += f" (+{extra} more)"
    elif classification.uses_root:
        reason = "Runs as root"
    elif classification.uses_sudo:
        reason = "Uses a privilege-escalation command"
    else:
        return "No dangerous pattern matched"

    if kind == BLOCK:
        reason += f"; blocked in {mode.value} mode with elevated privileges"
    return reason
