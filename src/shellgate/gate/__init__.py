"""Command safety gate with a layered pipeline.

- Tokenizer: quote-aware segments, obfuscation normalization
- Pattern Catalog: declarative dangerous-command signatures
- Context Resolver: target reachability, root identity, sudo usage
- Risk Classifier: catalog + context -> Classification
- Policy Gate: (severity x safety mode) decision table
- Confirmation: interactive approval with session overrides
- Execution Adapter: host shell or container exec, streaming, cancellation
- Audit Log: one JSONL entry per request

Usage:
    from shellgate.gate import create_gate
    from shellgate.config import load_settings

    gate = create_gate(load_settings(safety_mode="safe_yolo"))

    # Harmless command - executed
    outcome = gate.submit("ls -la")

    # Dangerous command - prompts, or blocked under -y when run as root
    outcome = gate.submit("rm -rf /")
    outcome.rejection  # category, severity and reason
"""

from shellgate.gate.audit import AuditConfig, AuditEntry, AuditLogger
from shellgate.gate.catalog import BUILTIN_RULES, PatternCatalog
from shellgate.gate.classifier import RiskClassifier, classify
from shellgate.gate.confirmation import ConfirmationManager, fingerprint
from shellgate.gate.context import ContextResolver, ProbeResult, resolve_target, uses_sudo
from shellgate.gate.executor import ExecutionAdapter, ExecutionLimits
from shellgate.gate.gate import Evaluation, GateOutcome, GateStatus, ShellGate, create_gate
from shellgate.gate.models import (
    ApprovalOutcome,
    Backend,
    Classification,
    Decision,
    DecisionKind,
    EvaluationContext,
    ExecutionResult,
    ExecutionTarget,
    MatcherKind,
    MatchScope,
    PatternRule,
    Rejection,
    RuleCategory,
    SafetyMode,
    Severity,
)
from shellgate.gate.policy import DECISION_TABLE, decide
from shellgate.gate.shell import Shell, append_to_shell_history, detect_shell
from shellgate.gate.tokenizer import CommandTokenizer, normalize_command

__all__ = [
    # Orchestration
    "ShellGate",
    "GateOutcome",
    "GateStatus",
    "Evaluation",
    "create_gate",
    # Models
    "ApprovalOutcome",
    "Backend",
    "Classification",
    "Decision",
    "DecisionKind",
    "EvaluationContext",
    "ExecutionResult",
    "ExecutionTarget",
    "MatcherKind",
    "MatchScope",
    "PatternRule",
    "Rejection",
    "RuleCategory",
    "SafetyMode",
    "Severity",
    # Layers
    "CommandTokenizer",
    "normalize_command",
    "BUILTIN_RULES",
    "PatternCatalog",
    "ContextResolver",
    "ProbeResult",
    "resolve_target",
    "uses_sudo",
    "RiskClassifier",
    "classify",
    "DECISION_TABLE",
    "decide",
    "ConfirmationManager",
    "fingerprint",
    "ExecutionAdapter",
    "ExecutionLimits",
    "Shell",
    "detect_shell",
    "append_to_shell_history",
    "AuditConfig",
    "AuditEntry",
    "AuditLogger",
]
