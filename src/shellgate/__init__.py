"""shellgate - a safety gate for shell commands proposed by an assistant.

Commands are classified against a catalog of dangerous shapes, decided on
by a (severity x safety mode) policy table, optionally confirmed by the
user, and only then executed on the host or inside a container.
"""

from shellgate.config import GateSettings, RuleSpec, load_settings
from shellgate.errors import (
    ConfigurationError,
    ExecutionCancelled,
    ExecutionError,
    ExecutionFailed,
    GateError,
    PolicyBlocked,
    TargetUnavailable,
    UserRejected,
)
from shellgate.gate import (
    GateOutcome,
    GateStatus,
    SafetyMode,
    ShellGate,
    create_gate,
)

__version__ = "0.1.0"

__all__ = [
    "GateSettings",
    "RuleSpec",
    "load_settings",
    "ConfigurationError",
    "ExecutionCancelled",
    "ExecutionError",
    "ExecutionFailed",
    "GateError",
    "PolicyBlocked",
    "TargetUnavailable",
    "UserRejected",
    "GateOutcome",
    "GateStatus",
    "SafetyMode",
    "ShellGate",
    "create_gate",
]
