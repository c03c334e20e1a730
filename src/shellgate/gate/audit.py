"""Audit log of every gate evaluation.

- One JSONL entry per request, whatever its outcome
- Daily files: ``shell_audit_YYYY-MM-DD.jsonl``
- Query interface for reviewing history
"""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator

from shellgate.gate.models import (
    Classification,
    Decision,
    ExecutionResult,
    ExecutionTarget,
    SafetyMode,
    Severity,
)
from shellgate.logging import Loggers

logger = Loggers.audit()


@dataclass
class AuditEntry:
    """A single audit log entry.

    Attributes:
        timestamp: When the request was evaluated (ISO format).
        session_id: Identifier shared by entries from one process.
        command: The command as submitted.
        target: Execution target description.
        mode: Safety mode in effect.
        status: Final gate status (executed, blocked, rejected, ...).
        decision: Policy decision kind, if the policy ran.
        severity: Highest matched severity.
        category: Category of the most severe matched rule.
        rule_ids: Ids of every matched rule.
        uses_root: Whether the target runs as root.
        uses_sudo: Whether the command used a privilege wrapper.
        user_response: Confirmation answer, if prompted.
        reason: Decision or rejection reason.
        exit_code: Exit code if executed.
        duration_ms: Execution duration in milliseconds.
        stdout_preview: First N chars of stdout.
        stderr_preview: First N chars of stderr.
        working_dir: Working directory of the request.
    """

    timestamp: str
    session_id: str
    command: str
    target: str
    mode: str
    status: str

    decision: str | None = None
    severity: str | None = None
    category: str | None = None
    rule_ids: list[str] = field(default_factory=list)
    uses_root: bool = False
    uses_sudo: bool = False
    user_response: str | None = None
    reason: str | None = None
    exit_code: int | None = None
    duration_ms: int | None = None
    stdout_preview: str = ""
    stderr_preview: str = ""
    working_dir: str | None = None

    @property
    def executed(self) -> bool:
        return self.exit_code is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {k: v for k, v in asdict(self).items() if v is not None and v != [] and v != ""}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEntry":
        """Create from dictionary."""
        return cls(
            timestamp=data.get("timestamp", ""),
            session_id=data.get("session_id", ""),
            command=data.get("command", ""),
            target=data.get("target", "host"),
            mode=data.get("mode", SafetyMode.CONFIRM.value),
            status=data.get("status", ""),
            decision=data.get("decision"),
            severity=data.get("severity"),
            category=data.get("category"),
            rule_ids=data.get("rule_ids", []),
            uses_root=data.get("uses_root", False),
            uses_sudo=data.get("uses_sudo", False),
            user_response=data.get("user_response"),
            reason=data.get("reason"),
            exit_code=data.get("exit_code"),
            duration_ms=data.get("duration_ms"),
            stdout_preview=data.get("stdout_preview", ""),
            stderr_preview=data.get("stderr_preview", ""),
            working_dir=data.get("working_dir"),
        )


@dataclass
class AuditConfig:
    """Configuration for audit logging.

    Attributes:
        enabled: Whether audit logging is enabled.
        log_dir: Directory for audit logs.
        retention_days: How long to keep logs.
        max_preview_length: Maximum length for stdout/stderr previews.
    """

    enabled: bool = True
    log_dir: str = "~/.local/share/shellgate/audit"
    retention_days: int = 30
    max_preview_length: int = 500

    def get_log_dir(self) -> Path:
        """Get resolved log directory path."""
        return Path(self.log_dir).expanduser()


class AuditLogger:
    """Writes audit entries in JSONL format with daily rotation.

    Write failures are logged as warnings and never fail a command.
    """

    def __init__(
        self,
        config: AuditConfig | None = None,
        session_id: str | None = None,
    ):
        """Initialize the audit logger.

        Args:
            config: Audit configuration.
            session_id: Session identifier for grouping entries.
        """
        self.config = config or AuditConfig()
        self.session_id = session_id or str(uuid.uuid4())[:8]

    def _get_log_file(self, date: datetime | None = None) -> Path:
        """Get the log file path for a given date."""
        if date is None:
            date = datetime.now()
        filename = f"shell_audit_{date.strftime('%Y-%m-%d')}.jsonl"
        return self.config.get_log_dir() / filename

    def log(self, entry: AuditEntry) -> None:
        """Append an entry to today's log file."""
        if not self.config.enabled:
            return

        log_file = self._get_log_file()
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
        except OSError as e:
            logger.warning("audit_write_failed", path=str(log_file), error=str(e))

    def log_evaluation(
        self,
        command: str,
        target: ExecutionTarget,
        mode: SafetyMode,
        status: str,
        decision: Decision | None = None,
        classification: Classification | None = None,
        user_response: str | None = None,
        reason: str | None = None,
        result: ExecutionResult | None = None,
        working_dir: str | Path | None = None,
    ) -> AuditEntry:
        """Log the outcome of one gate request.

        Args:
            command: The submitted command.
            target: Execution target.
            mode: Safety mode in effect.
            status: Final gate status value.
            decision: Policy decision, if the policy ran.
            classification: Classification, if the classifier ran.
            user_response: Confirmation answer, if prompted.
            reason: Rejection or decision reason.
            result: Execution result (complete or partial).
            working_dir: Working directory.

        Returns:
            The created AuditEntry.
        """
        max_len = self.config.max_preview_length
        top = classification.top_rule if classification else None

        entry = AuditEntry(
            timestamp=datetime.now().isoformat(),
            session_id=self.session_id,
            command=command,
            target=target.describe(),
            mode=mode.value,
            status=status,
            decision=decision.kind.value if decision else None,
            severity=(
                classification.highest_severity.value
                if classification and classification.highest_severity
                else None
            ),
            category=top.category.value if top else None,
            rule_ids=[rule.id for rule in classification.rules] if classification else [],
            uses_root=classification.uses_root if classification else False,
            uses_sudo=classification.uses_sudo if classification else False,
            user_response=user_response,
            reason=reason or (decision.reason if decision else None),
            exit_code=result.exit_code if result else None,
            duration_ms=result.duration_ms if result else None,
            stdout_preview=result.stdout[:max_len] if result else "",
            stderr_preview=result.stderr[:max_len] if result else "",
            working_dir=str(working_dir) if working_dir else None,
        )

        self.log(entry)
        return entry

    def query(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        command_pattern: str | None = None,
        status: str | None = None,
        severity: Severity | None = None,
        executed_only: bool = False,
        session_id: str | None = None,
        limit: int = 100,
    ) -> Iterator[AuditEntry]:
        """Query audit log entries.

        Args:
            start_date: Start of date range (default: a week before end_date).
            end_date: End of date range (default: now).
            command_pattern: Substring to match in commands.
            status: Filter by gate status value.
            severity: Filter by highest severity.
            executed_only: Only return executed commands.
            session_id: Filter by session ID.
            limit: Maximum entries to return.

        Yields:
            Matching AuditEntry objects.
        """
        log_dir = self.config.get_log_dir()
        if not log_dir.exists():
            return

        if end_date is None:
            end_date = datetime.now()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        current = start_date
        count = 0

        while current.date() <= end_date.date() and count < limit:
            log_file = self._get_log_file(current)

            if log_file.exists():
                try:
                    with open(log_file, encoding="utf-8") as f:
                        for line in f:
                            if count >= limit:
                                return

                            try:
                                entry = AuditEntry.from_dict(json.loads(line.strip()))
                            except json.JSONDecodeError:
                                continue  # Skip malformed lines

                            if command_pattern and command_pattern not in entry.command:
                                continue
                            if status and entry.status != status:
                                continue
                            if severity and entry.severity != severity.value:
                                continue
                            if executed_only and not entry.executed:
                                continue
                            if session_id and entry.session_id != session_id:
                                continue

                            yield entry
                            count += 1
                except OSError as e:
                    logger.warning("audit_read_failed", path=str(log_file), error=str(e))

            current += timedelta(days=1)

    def cleanup_old_logs(self) -> int:
        """Remove logs older than the retention period.

        Does nothing when auditing is disabled.

        Returns:
            Number of files removed.
        """
        if not self.config.enabled:
            return 0
        log_dir = self.config.get_log_dir()
        if not log_dir.exists():
            return 0

        cutoff = datetime.now() - timedelta(days=self.config.retention_days)
        removed = 0

        for log_file in log_dir.glob("shell_audit_*.jsonl"):
            try:
                date_str = log_file.stem.replace("shell_audit_", "")
                file_date = datetime.strptime(date_str, "%Y-%m-%d")

                if file_date < cutoff:
                    log_file.unlink()
                    removed += 1
            except (ValueError, OSError):
                continue  # Skip files with unexpected format

        if removed:
            logger.info("audit_logs_removed", count=removed, retention_days=self.config.retention_days)
        return removed

